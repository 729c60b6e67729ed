"""
Base Classes for the CAS Staging Layer
======================================

Contains the tree node structure and the abstract Tree collaborator whose
callback contracts the staging and compression stages plug into.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Length of a hex-encoded sha256 digest
IDENTIFIER_LENGTH = 64

StashFn = Callable[[Path], str]
SelectFn = Callable[['Node'], object]


@dataclass(eq=False)
class Node:
    """Node of the metadata tree.

    Content nodes carry the identifier of their bytes in ``value``; directory
    nodes keep ``value`` empty and hold their entries in ``children``.
    """
    value: str = ""
    zstd: bool = False
    size: int = 0
    children: Optional[Dict[str, 'Node']] = None

    @property
    def is_dir(self) -> bool:
        return self.children is not None

    @classmethod
    def directory(cls) -> 'Node':
        return cls(children={})


class Tree(ABC):
    """Abstract Tree collaborator.

    Walks a source root calling a stash callback per regular file, then lets a
    second pass visit each distinct content node exactly once, then serializes.
    """

    @abstractmethod
    def build(self, root: Path, stash_fn: StashFn,
              executor: Optional[Executor] = None) -> None:
        pass

    def bundle(self, bsize: int, asize: int, tpool: Path) -> None:
        """Merge small files into bundles. Trees without bundling ignore it."""
        logger.warning(f"{type(self).__name__} does not bundle small files; "
                       f"ignoring bsize={bsize} asize={asize}")

    @abstractmethod
    def walk(self, select_fn: SelectFn) -> None:
        pass

    @abstractmethod
    def save(self, meta_path: Path) -> None:
        pass
