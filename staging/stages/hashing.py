"""
Content hashing for content-addressable pools.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import Union

from base_classes import IDENTIFIER_LENGTH
from resilience_patterns import UnreadableContentError

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r'[0-9a-f]{%d}' % IDENTIFIER_LENGTH)


def is_identifier(value: object) -> bool:
    """True for a lowercase hex sha256 digest"""
    return isinstance(value, str) and _IDENTIFIER_RE.fullmatch(value) is not None


class ContentHasher:
    """
    Computes the content identifier of a file.

    The identifier is the lowercase hex sha256 digest of the file's bytes,
    read in fixed-size blocks so large files never sit in memory.
    """

    def __init__(self, block_size: int = 1024 * 1024):
        if block_size <= 0:
            raise ValueError("Block size must be positive")
        self.block_size = block_size

    def hash(self, path: Union[str, Path]) -> str:
        """
        Hash the file at ``path``.

        Raises:
            UnreadableContentError: if the file cannot be opened or read
        """
        digest = hashlib.sha256()
        try:
            with open(path, 'rb') as f:
                for block in iter(lambda: f.read(self.block_size), b''):
                    digest.update(block)
        except OSError as e:
            logger.error(f"Cannot hash {path}: {e}")
            raise UnreadableContentError(Path(path), cause=e) from e
        return digest.hexdigest()

    __call__ = hash
