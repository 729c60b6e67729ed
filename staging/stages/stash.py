"""
Stash store: per-file callback that hashes a file and stages its content.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from resilience_patterns import LinkResult, LinkStatus
from stash_configs import StasherConfig
from staging.stages.hashing import ContentHasher
from staging.stages.linking import entry_exists, place_object

logger = logging.getLogger(__name__)


class StashStore:
    """
    Stages each distinct content exactly once in the temporary pool.

    ``stash`` is handed to the Tree as its per-file callback. Staged entries
    are hard links named by identifier, so a second file with the same bytes
    finds the name taken and nothing is copied.
    """

    def __init__(self,
                 config: StasherConfig,
                 hasher: Optional[ContentHasher] = None,
                 monitor=None):
        self.config = config
        self.hasher = hasher or ContentHasher()
        self.monitor = monitor

    @property
    def enabled(self) -> bool:
        return self.config.staging_enabled

    def staged_path(self, identifier: str) -> Path:
        return self.config.tpool / identifier

    def stash(self, path: Union[str, Path]) -> str:
        """
        Return the identifier of ``path`` and make sure its content is staged.

        Raises:
            UnreadableContentError: if ``path`` cannot be hashed
        """
        path = Path(path)
        identifier = self.hasher.hash(path)
        result = self.stage(path, identifier)
        if self.monitor is not None:
            self.monitor.record_stash(path, result)
        return identifier

    __call__ = stash

    def stage(self, path: Path, identifier: str) -> LinkResult:
        """Link ``path`` into the temporary pool unless already staged"""
        if not self.enabled:
            return LinkResult(LinkStatus.DISABLED)

        tpath = self.staged_path(identifier)
        if entry_exists(tpath):
            logger.debug(f"{path} deduplicated to staged {identifier}")
            return LinkResult(LinkStatus.EXISTS, tpath)

        result = place_object(path, tpath, self.config.copy_fallback)
        if result.placed:
            logger.debug(f"Staged {path} as {identifier} ({result.status.value})")
        return result
