"""
Best-effort placement of objects under their pool names.
"""

import errno
import logging
import os
import secrets
import shutil
from pathlib import Path

from resilience_patterns import LinkResult, LinkStatus

logger = logging.getLogger(__name__)


def entry_exists(path: Path) -> bool:
    """
    Whether a pool entry is present.

    Only a missing entry reads as absent without a warning. Any other stat
    error is logged and also reported as absent, leaving the caller on its
    best-effort path.
    """
    try:
        os.stat(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Cannot check {path}: {e}")
        return False


def place_object(source: Path, target: Path, copy_fallback: bool = True) -> LinkResult:
    """
    Make ``target`` name the same bytes as ``source``.

    A hard link is tried first. An existing ``target`` counts as placed, so
    two callers racing on one identifier both succeed and only one entry is
    created. Across devices the bytes are copied once to a private name and
    published with the same link-or-exists step.
    """
    try:
        os.link(source, target)
        return LinkResult(LinkStatus.LINKED, target)
    except FileExistsError:
        return LinkResult(LinkStatus.EXISTS, target)
    except OSError as e:
        if e.errno == errno.EXDEV and copy_fallback:
            return _copy_then_publish(source, target)
        logger.warning(f"Cannot link {source} -> {target}: {e}")
        return LinkResult(LinkStatus.FAILED, target, e)


def _copy_then_publish(source: Path, target: Path) -> LinkResult:
    scratch = target.with_name(f".{target.name}.{secrets.token_hex(8)}.tmp")
    try:
        shutil.copyfile(source, scratch)
        try:
            os.link(scratch, target)
            status = LinkStatus.COPIED
        except FileExistsError:
            status = LinkStatus.EXISTS
        logger.debug(f"Copied {source} -> {target} across devices")
        return LinkResult(status, target)
    except OSError as e:
        logger.warning(f"Cannot copy {source} -> {target}: {e}")
        return LinkResult(LinkStatus.FAILED, target, e)
    finally:
        try:
            scratch.unlink()
        except FileNotFoundError:
            pass
