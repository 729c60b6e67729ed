"""
Metadata Tree
=============

Minimal Tree collaborator: walks a source root, records one node per
distinct content identifier, and saves the tree as a JSON metadata file.
"""

import json
import logging
import os
import stat
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from base_classes import Node, SelectFn, StashFn, Tree

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class MetadataTree(Tree):
    """
    Directory tree whose files point at shared content nodes.

    Files with identical bytes map to the same Node object, so the second
    pass sees each identifier once and the flag it sets is visible from
    every path holding that content.
    """

    def __init__(self):
        self.root = Node.directory()
        self.objects: Dict[str, Node] = {}
        self.file_count = 0

    def build(self, root: Path, stash_fn: StashFn,
              executor: Optional[Executor] = None) -> None:
        """
        Walk ``root`` and call ``stash_fn`` for every regular file.

        Errors raised by ``stash_fn`` propagate unchanged.
        """
        root = Path(root)
        files = self._collect_files(root)
        logger.info(f"Found {len(files)} files under {root}")

        paths = [path for _, path, _ in files]
        if executor is None:
            identifiers = [stash_fn(path) for path in paths]
        else:
            identifiers = list(executor.map(stash_fn, paths))

        for (parts, _, size), identifier in zip(files, identifiers):
            node = self.objects.get(identifier)
            if node is None:
                node = Node(value=identifier, size=size)
                self.objects[identifier] = node
            self._directory_for(parts[:-1]).children[parts[-1]] = node
        self.file_count = len(files)

        logger.info(f"Built tree with {self.file_count} files, "
                    f"{len(self.objects)} distinct objects")

    def _collect_files(self, root: Path) -> List[Tuple[Tuple[str, ...], Path, int]]:
        files = []

        def on_error(error: OSError):
            logger.warning(f"Cannot list {error.filename}: {error}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            current = Path(dirpath)
            rel = current.relative_to(root).parts
            self._directory_for(rel)
            for name in sorted(filenames):
                path = current / name
                try:
                    st = path.lstat()
                except OSError as e:
                    logger.warning(f"Cannot stat {path}: {e}")
                    continue
                if not stat.S_ISREG(st.st_mode):
                    logger.debug(f"Skipping non-regular file {path}")
                    continue
                files.append((rel + (name,), path, st.st_size))
        return files

    def _directory_for(self, parts: Tuple[str, ...]) -> Node:
        node = self.root
        for part in parts:
            node = node.children.setdefault(part, Node.directory())
        return node

    def walk(self, select_fn: SelectFn) -> None:
        """Call ``select_fn`` once per distinct content node"""
        for node in list(self.objects.values()):
            select_fn(node)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': FORMAT_VERSION,
            'files': self.file_count,
            'objects': len(self.objects),
            'root': _encode(self.root),
        }

    def save(self, meta_path: Path) -> None:
        """Write the tree to ``meta_path`` atomically"""
        meta_path = Path(meta_path)
        temp_file = meta_path.with_name(meta_path.name + '.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2, sort_keys=True)
            temp_file.replace(meta_path)
        except OSError as e:
            logger.error(f"I/O error saving metadata to {meta_path}: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise
        logger.info(f"Saved metadata to {meta_path}")


def _encode(node: Node) -> Dict[str, Any]:
    if node.is_dir:
        return {
            'type': 'dir',
            'entries': {name: _encode(child) for name, child in node.children.items()},
        }
    return {
        'type': 'file',
        'value': node.value,
        'size': node.size,
        'zstd': node.zstd,
    }
