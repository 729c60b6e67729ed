#!/usr/bin/env python3
"""
CAFS Convert
============

Ingests a directory tree into a content-addressable store. Every file is
hashed and staged once per distinct content; after the tree is built each
object is finalized raw into the pool, or compressed into the zstd pool when
that saves enough space.

Usage:
    cafs-convert root meta [pool]
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from tqdm import tqdm

from base_classes import Node, Tree
from metadata_tree import MetadataTree
from resilience_patterns import ConfigError, NonRetryableError, Placement, Selection
from stash_configs import PRESETS, COMPRESSORS, StasherConfig, load_config
from stash_monitoring import StashMonitor
from staging.stages.compression import CompressionSelector
from staging.stages.lifecycle import StagingLifecycle
from staging.stages.stash import StashStore
from staging.workers.parallel import ParallelProcessor

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """Outcome of one conversion run"""
    tree: Tree
    meta_path: Path
    selections: List[Selection] = field(default_factory=list)
    monitor: Optional[StashMonitor] = None

    @property
    def compressed(self) -> int:
        return sum(1 for s in self.selections if s.placement is Placement.COMPRESSED)


class CafsConverter:
    """Main orchestrator for one staging run"""

    def __init__(self,
                 config: StasherConfig,
                 tree_factory: Callable[[], Tree] = MetadataTree,
                 monitor: Optional[StashMonitor] = None,
                 show_progress: bool = False):
        self.config = config
        self.tree_factory = tree_factory
        self.monitor = monitor or StashMonitor()
        self.show_progress = show_progress

        self.stash_store = StashStore(config, monitor=self.monitor)
        self.selector = CompressionSelector(config, monitor=self.monitor)
        self.lifecycle = StagingLifecycle(config.tpool)

    def run(self, root: Path, meta_path: Path) -> ConversionResult:
        """
        Build the tree of ``root``, finalize every object and save metadata.

        Raises:
            UnreadableContentError: if a source file cannot be hashed; the
                temporary pool is removed before the error propagates
        """
        root = Path(root)
        meta_path = Path(meta_path)
        tree = self.tree_factory()
        result = ConversionResult(tree=tree, meta_path=meta_path, monitor=self.monitor)

        with ParallelProcessor(self.config.workers) as processor:
            if not self.config.staging_enabled:
                logger.info("No pool configured, computing identifiers only")
                with self.monitor.stage('stash'):
                    tree.build(root, self.stash_store.stash, processor.executor)
            else:
                self.lifecycle.begin()
                try:
                    with self.monitor.stage('stash'):
                        tree.build(root, self.stash_store.stash, processor.executor)
                    if self.config.bsize > 0:
                        with self.monitor.stage('bundle'):
                            tree.bundle(self.config.bsize, self.config.asize,
                                        self.config.tpool)
                    with self.monitor.stage('select'):
                        result.selections = self._select_all(tree, processor)
                finally:
                    with self.monitor.stage('cleanup'):
                        self.lifecycle.end()

        with self.monitor.stage('save'):
            tree.save(meta_path)

        logger.info(f"Converted {root}: {len(result.selections)} objects, "
                    f"{result.compressed} compressed")
        return result

    def _select_all(self, tree: Tree, processor: ParallelProcessor) -> List[Selection]:
        nodes: List[Node] = []
        tree.walk(nodes.append)

        with tqdm(total=len(nodes), desc="Finalizing objects", unit="objects",
                  disable=not self.show_progress) as pbar:
            def select(node: Node) -> Selection:
                selection = self.selector.select(node)
                pbar.update(1)
                return selection

            return processor.map(select, nodes)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="cafs-convert",
        description="Ingest a directory tree into a content-addressable store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cafs-convert src meta.json                    # pools from the config file
  cafs-convert src meta.json /cas/pool          # raw pool only, no compression
  cafs-convert src meta.json /cas/pool --zpool /cas/zpool --zsize 1024
        """
    )
    parser.add_argument('root', type=Path, help='Directory tree to ingest')
    parser.add_argument('meta', type=Path, help='Metadata file to write')
    parser.add_argument('pool', type=Path, nargs='?',
                        help='Raw object pool (skips the config file)')

    parser.add_argument('--config', type=Path,
                        help='JSON config file (default: $CAFS_CONFIG or '
                             '~/.config/cafs/config.json)')
    parser.add_argument('--preset', choices=sorted(PRESETS),
                        help='Start from a preset instead of a config file')
    parser.add_argument('--zpool', type=Path, help='Compressed object pool')
    parser.add_argument('--tpool', type=Path, help='Temporary staging pool')
    parser.add_argument('--zsize', type=int,
                        help='Minimum size in bytes before compression is tried')
    parser.add_argument('--zrate', type=float,
                        help='Keep compressed only if smaller than zrate * original')
    parser.add_argument('--zlevel', type=int, help='zstd compression level')
    parser.add_argument('--compressor', choices=COMPRESSORS,
                        help='zstd executable or the zstandard library')
    parser.add_argument('--workers', type=int, help='Parallel workers')
    parser.add_argument('--progress', action='store_true', help='Show a progress bar')
    parser.add_argument('--stats', action='store_true', help='Print a run report')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)
    if not args.root.is_dir():
        parser.error(f"root is not a directory: {args.root}")
    if args.preset and args.pool is None:
        parser.error("--preset requires a pool")
    return args


def resolve_config(args: argparse.Namespace) -> StasherConfig:
    """Combine the config file or preset with command line overrides"""
    if args.preset:
        config = PRESETS[args.preset](args.pool, args.zpool)
    elif args.config:
        config = load_config(args.config)
    elif args.pool is not None:
        config = StasherConfig()
    else:
        try:
            config = load_config()
        except ConfigError as e:
            if not isinstance(e.cause, FileNotFoundError):
                raise
            logger.warning(f"{e}; computing identifiers only")
            config = StasherConfig()

    return config.with_overrides(
        pool=args.pool,
        zpool=args.zpool,
        tpool=args.tpool,
        zsize=args.zsize,
        zrate=args.zrate,
        zlevel=args.zlevel,
        compressor=args.compressor,
        workers=args.workers,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = resolve_config(args)
        converter = CafsConverter(config, show_progress=args.progress)
        result = converter.run(args.root, args.meta)
    except NonRetryableError as e:
        logger.error(f"Conversion aborted: {e}")
        return 1
    except OSError as e:
        logger.error(f"Conversion failed: {e}")
        return 1

    if args.stats:
        print(result.monitor.get_report())
    return 0


if __name__ == "__main__":
    sys.exit(main())
