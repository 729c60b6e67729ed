"""
Adaptive compression selection for staged objects.

Decides per content node whether the object is kept compressed in the
zstd pool or raw in the plain pool, based on the measured ratio.
"""

import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import zstandard as zstd

from base_classes import Node
from resilience_patterns import (
    CompressionAttempt, LinkResult, Placement, Reason, Selection
)
from stash_configs import StasherConfig
from staging.stages.hashing import is_identifier
from staging.stages.linking import entry_exists, place_object

logger = logging.getLogger(__name__)


class Compressor(ABC):
    """Writes a zstd frame of ``src`` to ``dst``"""

    name = "compressor"

    @abstractmethod
    def compress(self, src: Path, dst: Path, level: int) -> CompressionAttempt:
        pass


class ExternalZstdCompressor(Compressor):
    """Runs the ``zstd`` executable as a child process"""

    name = "zstd"

    def __init__(self, binary: str = 'zstd', timeout: Optional[float] = 600.0):
        self.binary = binary
        self.timeout = timeout

    def command(self, src: Path, dst: Path, level: int) -> List[str]:
        cmd = [self.binary, '-q']
        if level < 0:
            cmd.append(f'--fast={-level}')
        else:
            if level > 19:
                cmd.append('--ultra')
            cmd.append(f'-{level}')
        cmd.extend(['-o', str(dst), str(src)])
        return cmd

    def compress(self, src: Path, dst: Path, level: int) -> CompressionAttempt:
        start = time.time()
        cmd = self.command(src, dst, level)
        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError:
            return CompressionAttempt(False, dst, f"{self.binary} not found",
                                      time.time() - start)
        except subprocess.TimeoutExpired:
            return CompressionAttempt(False, dst, f"timed out after {self.timeout}s",
                                      time.time() - start)
        except OSError as e:
            return CompressionAttempt(False, dst, str(e), time.time() - start)

        if proc.returncode != 0:
            stderr = proc.stderr.decode('utf-8', 'replace').strip()
            return CompressionAttempt(False, dst,
                                      f"exit status {proc.returncode}: {stderr}",
                                      time.time() - start)
        return CompressionAttempt(True, dst, duration=time.time() - start)


class ZstandardCompressor(Compressor):
    """Compresses in-process with the zstandard library"""

    name = "zstandard"

    def __init__(self, threads: int = 0):
        self.threads = threads

    def compress(self, src: Path, dst: Path, level: int) -> CompressionAttempt:
        start = time.time()
        cctx = zstd.ZstdCompressor(level=level, threads=self.threads)
        try:
            with open(src, 'rb') as ifh, open(dst, 'xb') as ofh:
                cctx.copy_stream(ifh, ofh)
        except (OSError, zstd.ZstdError) as e:
            return CompressionAttempt(False, dst, str(e), time.time() - start)
        return CompressionAttempt(True, dst, duration=time.time() - start)


def make_compressor(config: StasherConfig) -> Compressor:
    """Pick the compressor backend named in the configuration"""
    if config.compressor == 'zstandard':
        return ZstandardCompressor()
    return ExternalZstdCompressor(config.zstd_binary, config.ztimeout)


class CompressionSelector:
    """
    Finalizes staged objects into the raw or the compressed pool.

    ``select`` is handed to the Tree as its second-pass callback and runs
    once per distinct content node. Compression is only an optimization:
    every failure path ends with the raw object linked into the pool.
    """

    def __init__(self,
                 config: StasherConfig,
                 compressor: Optional[Compressor] = None,
                 monitor=None):
        self.config = config
        self.compressor = compressor or make_compressor(config)
        self.monitor = monitor

        logger.debug(f"Initialized CompressionSelector with zsize={config.zsize}, "
                     f"zrate={config.zrate}, zlevel={config.zlevel}, "
                     f"compressor={self.compressor.name}")

    def pool_path(self, identifier: str) -> Path:
        return self.config.pool / identifier

    def zpool_path(self, identifier: str) -> Path:
        return self.config.zpool / f"{identifier}{self.config.zsuffix}"

    def staged_path(self, identifier: str) -> Path:
        return self.config.tpool / identifier

    def select(self, node: Node) -> Selection:
        """Decide and materialize the storage form of ``node``"""
        selection = self._select(node)
        if selection.placement is Placement.COMPRESSED:
            node.zstd = True
        if self.monitor is not None:
            self.monitor.record_selection(selection)
        logger.debug(f"{selection.identifier}: {selection.placement.value} "
                     f"({selection.reason.value})")
        return selection

    __call__ = select

    def _select(self, node: Node) -> Selection:
        identifier = node.value
        if not is_identifier(identifier):
            return Selection(str(identifier), Placement.SKIPPED, Reason.INVALID_IDENTIFIER)

        path = self.pool_path(identifier)
        tpath = self.staged_path(identifier)
        zpath = self.zpool_path(identifier) if self.config.compression_enabled else None

        if zpath is not None and entry_exists(zpath):
            return Selection(identifier, Placement.COMPRESSED,
                             Reason.ALREADY_COMPRESSED,
                             stored_size=_size_of(zpath) or 0)
        if entry_exists(path):
            return Selection(identifier, Placement.RAW, Reason.ALREADY_RAW)
        if zpath is None:
            return self._finalize_raw(identifier, tpath, path,
                                      Reason.COMPRESSION_DISABLED)

        try:
            original_size = tpath.stat().st_size
        except OSError as e:
            logger.warning(f"Staged object {identifier} unavailable: {e}")
            return self._finalize_raw(identifier, tpath, path, Reason.MISSING_STAGED)

        if original_size < self.config.zsize:
            return self._finalize_raw(identifier, tpath, path,
                                      Reason.BELOW_THRESHOLD, original_size)

        attempt = self.compressor.compress(tpath, zpath, self.config.zlevel)
        compressed_size = _size_of(zpath) if attempt.ok else None
        if compressed_size is None:
            logger.warning(f"Compression of {identifier} failed: "
                           f"{attempt.error or 'no output produced'}")
            _discard(zpath)
            return self._finalize_raw(identifier, tpath, path,
                                      Reason.COMPRESSOR_FAILED, original_size)

        if compressed_size < original_size * self.config.zrate:
            return Selection(identifier, Placement.COMPRESSED, Reason.RATIO_ACCEPTED,
                             original_size=original_size, stored_size=compressed_size)

        selection = self._finalize_raw(identifier, tpath, path,
                                       Reason.RATIO_REJECTED, original_size)
        _discard(zpath)
        return selection

    def _finalize_raw(self, identifier: str, tpath: Path, path: Path,
                      reason: Reason, original_size: int = 0) -> Selection:
        link: LinkResult = place_object(tpath, path, self.config.copy_fallback)
        return Selection(identifier, Placement.RAW, reason,
                         original_size=original_size,
                         stored_size=original_size if link.placed else 0,
                         link=link)


def _size_of(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size
    except OSError:
        return None


def _discard(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning(f"Cannot remove {path}: {e}")
