"""
Stages of a staging run: hashing, stashing, compression selection and the
temporary pool lifecycle.
"""

from .hashing import ContentHasher, is_identifier
from .stash import StashStore
from .compression import (
    CompressionSelector, ExternalZstdCompressor, ZstandardCompressor, make_compressor
)
from .lifecycle import StagingLifecycle

__all__ = [
    'ContentHasher',
    'is_identifier',
    'StashStore',
    'CompressionSelector',
    'ExternalZstdCompressor',
    'ZstandardCompressor',
    'make_compressor',
    'StagingLifecycle',
]
