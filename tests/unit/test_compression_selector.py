"""
Unit tests for compression selection
====================================

Tests for staging/stages/compression.py including:
- Identifier guard
- Idempotent short-circuits
- Size threshold and ratio policy
- Compressor failure fallback
- zstandard and external zstd backends
"""

import errno
import os
import shutil
import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import zstandard as zstd

from base_classes import Node
from resilience_patterns import CompressionAttempt, Placement, Reason
from stash_configs import StasherConfig
from staging.stages.compression import (
    CompressionSelector, Compressor, ExternalZstdCompressor,
    ZstandardCompressor, make_compressor
)
from staging.stages.hashing import ContentHasher


@pytest.fixture
def config(tmp_path):
    pool = tmp_path / "pool"
    zpool = tmp_path / "zpool"
    tpool = tmp_path / "tpool"
    for d in (pool, zpool, tpool):
        d.mkdir()
    return StasherConfig(pool=pool, zpool=zpool, tpool=tpool,
                         zsize=1024, zrate=0.9, compressor='zstandard')


def stage(config, data: bytes) -> Node:
    """Write ``data`` into the temporary pool and return its node"""
    scratch = config.tpool.parent / "scratch"
    scratch.write_bytes(data)
    identifier = ContentHasher().hash(scratch)
    os.replace(scratch, config.tpool / identifier)
    return Node(value=identifier, size=len(data))


class FailingCompressor(Compressor):
    name = "failing"

    def __init__(self, leave_partial: bool = False):
        self.leave_partial = leave_partial
        self.calls = 0

    def compress(self, src, dst, level):
        self.calls += 1
        if self.leave_partial:
            Path(dst).write_bytes(b"partial")
        return CompressionAttempt(False, dst, "boom")


class TestCompressionSelector:
    """Test CompressionSelector decisions"""

    def test_invalid_identifier_skipped(self, config):
        """Test directory-like nodes are skipped"""
        selector = CompressionSelector(config)
        node = Node(value="not-an-identifier")

        selection = selector.select(node)

        assert selection.placement is Placement.SKIPPED
        assert selection.reason is Reason.INVALID_IDENTIFIER
        assert node.zstd is False
        assert os.listdir(config.pool) == []

    def test_below_threshold_finalized_raw(self, config):
        """Test small objects are linked raw and never compressed"""
        compressor = Mock(spec=Compressor)
        selector = CompressionSelector(config, compressor=compressor)
        node = stage(config, b"hello")

        selection = selector.select(node)

        assert selection.placement is Placement.RAW
        assert selection.reason is Reason.BELOW_THRESHOLD
        assert node.zstd is False
        assert (config.pool / node.value).read_bytes() == b"hello"
        assert os.listdir(config.zpool) == []
        compressor.compress.assert_not_called()

    def test_raw_object_is_hard_link_of_staged(self, config):
        """Test raw finalization links rather than copies"""
        selector = CompressionSelector(config)
        node = stage(config, b"hello")

        selector.select(node)

        staged = config.tpool / node.value
        assert os.stat(config.pool / node.value).st_ino == os.stat(staged).st_ino

    def test_compressible_object_accepted(self, config):
        """Test repetitive data lands in zpool only"""
        data = b"A" * (256 * 1024)
        selector = CompressionSelector(config)
        node = stage(config, data)

        selection = selector.select(node)

        zpath = config.zpool / node.value
        assert selection.placement is Placement.COMPRESSED
        assert selection.reason is Reason.RATIO_ACCEPTED
        assert node.zstd is True
        assert zpath.stat().st_size < len(data) * config.zrate
        assert not (config.pool / node.value).exists()
        assert zstd.ZstdDecompressor().decompressobj().decompress(zpath.read_bytes()) == data
        assert selection.saved_bytes == len(data) - zpath.stat().st_size

    def test_incompressible_object_rejected(self, config):
        """Test random data stays raw and the zstd output is deleted"""
        data = os.urandom(64 * 1024)
        selector = CompressionSelector(config)
        node = stage(config, data)

        selection = selector.select(node)

        assert selection.placement is Placement.RAW
        assert selection.reason is Reason.RATIO_REJECTED
        assert node.zstd is False
        assert (config.pool / node.value).read_bytes() == data
        assert os.listdir(config.zpool) == []

    def test_ratio_is_strict(self, config):
        """Test compressed size equal to zrate * original is rejected"""
        data = b"B" * 2000

        class ExactCompressor(Compressor):
            def compress(self, src, dst, level):
                Path(dst).write_bytes(b"z" * 1800)  # exactly 0.9 * 2000
                return CompressionAttempt(True, dst)

        selector = CompressionSelector(config, compressor=ExactCompressor())
        node = stage(config, data)

        assert selector.select(node).reason is Reason.RATIO_REJECTED
        assert node.zstd is False

    def test_compressor_failure_falls_back(self, config):
        """Test a failing compressor leaves the object raw"""
        compressor = FailingCompressor(leave_partial=True)
        selector = CompressionSelector(config, compressor=compressor)
        data = b"C" * 4096
        node = stage(config, data)

        selection = selector.select(node)

        assert compressor.calls == 1
        assert selection.placement is Placement.RAW
        assert selection.reason is Reason.COMPRESSOR_FAILED
        assert (config.pool / node.value).read_bytes() == data
        assert os.listdir(config.zpool) == []

    def test_missing_staged_object(self, config):
        """Test an object that never reached staging does not abort"""
        selector = CompressionSelector(config)
        node = Node(value="a" * 64)

        selection = selector.select(node)

        assert selection.placement is Placement.RAW
        assert selection.reason is Reason.MISSING_STAGED
        assert not selection.link.placed
        assert node.zstd is False

    def test_existing_zpool_short_circuit(self, config):
        """Test an existing compressed object is reused"""
        compressor = Mock(spec=Compressor)
        selector = CompressionSelector(config, compressor=compressor)
        node = stage(config, b"D" * 4096)
        (config.zpool / node.value).write_bytes(b"previous run")

        selection = selector.select(node)

        assert selection.reason is Reason.ALREADY_COMPRESSED
        assert node.zstd is True
        assert not (config.pool / node.value).exists()
        compressor.compress.assert_not_called()

    def test_existing_pool_short_circuit(self, config):
        """Test an object already stored raw is never also compressed"""
        compressor = Mock(spec=Compressor)
        selector = CompressionSelector(config, compressor=compressor)
        node = stage(config, b"E" * 4096)
        shutil.copy(config.tpool / node.value, config.pool / node.value)

        selection = selector.select(node)

        assert selection.reason is Reason.ALREADY_RAW
        assert node.zstd is False
        assert os.listdir(config.zpool) == []
        compressor.compress.assert_not_called()

    @pytest.mark.parametrize("denied", ["zpool", "pool"])
    def test_unsearchable_pool_is_best_effort(self, config, mocker, denied):
        """Test a permission error checking a pool entry does not abort"""
        node = stage(config, b"P" * 8192)
        blocked = str(getattr(config, denied))
        real_stat = os.stat
        denials = []

        def fake_stat(target, *args, **kwargs):
            if str(target).startswith(blocked) and not denials:
                denials.append(target)
                raise PermissionError(errno.EACCES, "Permission denied", str(target))
            return real_stat(target, *args, **kwargs)

        mocker.patch("staging.stages.linking.os.stat", side_effect=fake_stat)
        selection = CompressionSelector(config).select(node)

        assert len(denials) == 1
        assert selection.placement is Placement.COMPRESSED
        stored = os.listdir(config.pool) + os.listdir(config.zpool)
        assert stored == [node.value]

    @pytest.mark.parametrize("data", [b"F" * 8192, b"tiny"])
    def test_select_is_idempotent(self, config, data):
        """Test selecting twice yields the same flag and one object"""
        selector = CompressionSelector(config)
        node = stage(config, data)

        first = selector.select(node)
        second = selector.select(node)

        assert first.placement is second.placement
        assert node.zstd is (first.placement is Placement.COMPRESSED)
        stored = os.listdir(config.pool) + os.listdir(config.zpool)
        assert stored == [node.value]

    def test_compression_disabled_without_zpool(self, config):
        """Test no zpool means every object is finalized raw"""
        raw_only = StasherConfig(pool=config.pool, tpool=config.tpool,
                                 zsize=0, compressor='zstandard')
        selector = CompressionSelector(raw_only)
        node = stage(config, b"G" * 8192)

        selection = selector.select(node)

        assert selection.reason is Reason.COMPRESSION_DISABLED
        assert (config.pool / node.value).exists()

    def test_zsuffix(self, config):
        """Test compressed objects carry the configured suffix"""
        suffixed = StasherConfig(pool=config.pool, zpool=config.zpool,
                                 tpool=config.tpool, zsize=0, zsuffix='.zst',
                                 compressor='zstandard')
        selector = CompressionSelector(suffixed)
        node = stage(config, b"H" * 8192)

        selector.select(node)

        assert os.listdir(config.zpool) == [node.value + '.zst']

    def test_monitor_records_selection(self, config):
        """Test each decision is reported to the monitor"""
        monitor = Mock()
        selector = CompressionSelector(config, monitor=monitor)
        node = stage(config, b"hello")

        selection = selector.select(node)

        monitor.record_selection.assert_called_once_with(selection)


class TestZstandardCompressor:
    """Test the in-process zstd backend"""

    def test_round_trip(self, tmp_path):
        src = tmp_path / "src"
        dst = tmp_path / "dst.zst"
        src.write_bytes(b"round trip " * 1000)

        attempt = ZstandardCompressor().compress(src, dst, 3)

        assert attempt.ok
        with open(dst, 'rb') as f:
            restored = zstd.ZstdDecompressor().stream_reader(f).read()
        assert restored == src.read_bytes()

    def test_refuses_to_overwrite(self, tmp_path):
        """Test compressed objects are write-once"""
        src = tmp_path / "src"
        dst = tmp_path / "dst.zst"
        src.write_bytes(b"data")
        dst.write_bytes(b"existing")

        attempt = ZstandardCompressor().compress(src, dst, 3)

        assert not attempt.ok
        assert dst.read_bytes() == b"existing"

    def test_missing_source(self, tmp_path):
        attempt = ZstandardCompressor().compress(tmp_path / "missing",
                                                 tmp_path / "dst", 3)
        assert not attempt.ok


class TestExternalZstdCompressor:
    """Test the zstd executable backend"""

    def test_command(self):
        compressor = ExternalZstdCompressor()
        cmd = compressor.command(Path("/t/in"), Path("/z/out"), 3)
        assert cmd == ['zstd', '-q', '-3', '-o', '/z/out', '/t/in']

    def test_command_ultra_and_fast_levels(self):
        compressor = ExternalZstdCompressor('/usr/bin/zstd')
        assert compressor.command(Path("i"), Path("o"), 22)[1:4] == ['-q', '--ultra', '-22']
        assert compressor.command(Path("i"), Path("o"), -5)[2] == '--fast=5'

    def test_missing_binary(self, tmp_path):
        """Test a missing executable is reported, not raised"""
        src = tmp_path / "src"
        src.write_bytes(b"data")
        compressor = ExternalZstdCompressor(str(tmp_path / "no-such-zstd"))

        attempt = compressor.compress(src, tmp_path / "dst", 3)

        assert not attempt.ok
        assert "not found" in attempt.error

    def test_timeout_is_failure(self, tmp_path):
        compressor = ExternalZstdCompressor(timeout=0.01)
        with patch("staging.stages.compression.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="zstd", timeout=0.01)):
            attempt = compressor.compress(tmp_path / "src", tmp_path / "dst", 3)

        assert not attempt.ok
        assert "timed out" in attempt.error

    def test_nonzero_exit_is_failure(self, tmp_path):
        compressor = ExternalZstdCompressor()
        completed = subprocess.CompletedProcess(args=[], returncode=1,
                                                stderr=b"zstd: error 1")
        with patch("staging.stages.compression.subprocess.run",
                   return_value=completed) as run:
            attempt = compressor.compress(tmp_path / "src", tmp_path / "dst", 7)

        assert not attempt.ok
        assert "exit status 1" in attempt.error
        assert run.call_args.kwargs['timeout'] == compressor.timeout

    @pytest.mark.skipif(shutil.which("zstd") is None, reason="zstd executable not installed")
    def test_real_zstd(self, tmp_path):
        src = tmp_path / "src"
        dst = tmp_path / "dst.zst"
        src.write_bytes(b"external " * 4096)

        attempt = ExternalZstdCompressor().compress(src, dst, 3)

        assert attempt.ok
        with open(dst, 'rb') as f:
            assert zstd.ZstdDecompressor().stream_reader(f).read() == src.read_bytes()

    def test_selector_falls_back_when_binary_missing(self, config, tmp_path):
        """Test the whole selector degrades to raw without zstd"""
        cli_config = StasherConfig(pool=config.pool, zpool=config.zpool,
                                   tpool=config.tpool, zsize=0,
                                   zstd_binary=str(tmp_path / "no-such-zstd"))
        selector = CompressionSelector(cli_config)
        node = stage(config, b"I" * 8192)

        selection = selector.select(node)

        assert selection.reason is Reason.COMPRESSOR_FAILED
        assert (config.pool / node.value).exists()


class TestMakeCompressor:
    def test_default_is_external(self, config):
        cli = StasherConfig(pool=config.pool, zstd_binary='/opt/zstd', ztimeout=5)
        compressor = make_compressor(cli)
        assert isinstance(compressor, ExternalZstdCompressor)
        assert compressor.binary == '/opt/zstd'
        assert compressor.timeout == 5

    def test_zstandard(self, config):
        assert isinstance(make_compressor(config), ZstandardCompressor)
