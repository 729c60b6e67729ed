"""
Staging lifecycle: creates the temporary pool before ingestion and removes
it once the compression pass is over.
"""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class StagingLifecycle:
    """Brackets a run with creation and removal of the temporary pool"""

    def __init__(self, tpool: Path):
        self.tpool = Path(tpool)

    def begin(self) -> None:
        """Create the temporary pool. Safe when it already exists."""
        self.tpool.mkdir(parents=True, exist_ok=True)
        logger.info(f"Staging pool ready at {self.tpool}")

    def end(self) -> bool:
        """Remove the temporary pool. Returns False if anything was left behind."""
        try:
            shutil.rmtree(self.tpool)
        except FileNotFoundError:
            logger.debug(f"Staging pool {self.tpool} already absent")
        except OSError as e:
            logger.warning(f"Could not fully remove staging pool {self.tpool}: {e}")
            return False
        else:
            logger.info(f"Removed staging pool {self.tpool}")
        return True

    def __enter__(self) -> 'StagingLifecycle':
        self.begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end()
        return False
