"""
Worker components for running the staging passes in parallel.
"""

from .parallel import ParallelProcessor

__all__ = [
    'ParallelProcessor',
]
