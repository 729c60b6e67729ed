"""
Content-addressable staging and adaptive compression modules.
"""

from .stages.stash import StashStore
from .stages.compression import CompressionSelector
from .stages.lifecycle import StagingLifecycle
from .workers.parallel import ParallelProcessor

__all__ = [
    'StashStore',
    'CompressionSelector',
    'StagingLifecycle',
    'ParallelProcessor',
]
