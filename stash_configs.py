"""
Stasher Configurations
======================

Run configuration for the staging and compression passes, the JSON
configuration file loader, and pre-configured presets.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from resilience_patterns import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TPOOL = Path("/tmp/merkling")
DEFAULT_ZLEVEL = 3
DEFAULT_CONFIG_PATH = Path("~/.config/cafs/config.json")
CONFIG_ENV_VAR = "CAFS_CONFIG"

COMPRESSORS = ('zstd', 'zstandard')

_PATH_FIELDS = ('pool', 'zpool', 'tpool')


@dataclass(frozen=True)
class StasherConfig:
    """Configuration for one staging run"""

    # Pools
    pool: Optional[Path] = None
    zpool: Optional[Path] = None
    tpool: Path = DEFAULT_TPOOL
    zsuffix: str = ""

    # Compression policy
    zsize: int = 4096       # objects smaller than this are never compressed
    zrate: float = 0.9      # accept when compressed < zrate * original
    zlevel: int = DEFAULT_ZLEVEL

    # Bundling thresholds, consumed by the Tree only
    bsize: int = 0
    asize: int = 0

    # Compressor
    compressor: str = 'zstd'
    zstd_binary: str = 'zstd'
    ztimeout: Optional[float] = 600.0

    # Execution
    workers: int = 1
    copy_fallback: bool = True

    def __post_init__(self) -> None:
        """Validate configuration parameters"""
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))
        if self.zlevel == 0:
            object.__setattr__(self, 'zlevel', DEFAULT_ZLEVEL)

        if self.zsize < 0:
            raise ValueError("zsize cannot be negative")
        if not 0.0 < self.zrate <= 1.0:
            raise ValueError("zrate must be in (0, 1]")
        if self.zlevel < -7 or self.zlevel > 22:
            raise ValueError("zlevel must be between -7 and 22")
        if self.bsize < 0 or self.asize < 0:
            raise ValueError("bsize and asize cannot be negative")
        if self.compressor not in COMPRESSORS:
            raise ValueError(f"Invalid compressor: {self.compressor}")
        if self.ztimeout is not None and self.ztimeout <= 0:
            raise ValueError("ztimeout must be positive")
        if self.workers <= 0:
            raise ValueError("workers must be positive")
        if '/' in self.zsuffix or os.sep in self.zsuffix:
            raise ValueError("zsuffix cannot contain a path separator")

    @property
    def staging_enabled(self) -> bool:
        """Without a pool the run only computes identifiers"""
        return self.pool is not None

    @property
    def compression_enabled(self) -> bool:
        return self.staging_enabled and self.zpool is not None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any],
                     source: Optional[Path] = None) -> 'StasherConfig':
        """Build a config from a decoded configuration file"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}",
                              source=source)
        values = {k: v for k, v in data.items() if v is not None and v != ""}
        try:
            return cls(**values)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}", cause=e, source=source)

    def with_overrides(self, **overrides: Any) -> 'StasherConfig':
        """Return a copy with the non-None overrides applied"""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        try:
            return replace(self, **changes)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}", cause=e)

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = str(value) if isinstance(value, Path) else value
        return result


def default_config_path() -> Path:
    """Location of the configuration file, honoring $CAFS_CONFIG"""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: Optional[Path] = None) -> StasherConfig:
    """
    Load a StasherConfig from a JSON file.

    Args:
        path: Config file to read; defaults to default_config_path()

    Returns:
        The validated configuration

    Raises:
        ConfigError: if the file is missing, unreadable or invalid
    """
    config_path = Path(path).expanduser() if path else default_config_path()
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}", cause=e,
                          source=config_path)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot load config file {config_path}", cause=e,
                          source=config_path)

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object", source=config_path)

    config = StasherConfig.from_mapping(data, source=config_path)
    logger.debug(f"Loaded configuration from {config_path}")
    return config


class ConfigPresets:
    """Pre-configured settings for common use cases"""

    @staticmethod
    def default(pool: Path, zpool: Optional[Path] = None) -> StasherConfig:
        """Balanced: level 3, compress objects of 4KB and up saving 10%"""
        return StasherConfig(pool=pool, zpool=zpool)

    @staticmethod
    def archival(pool: Path, zpool: Path) -> StasherConfig:
        """
        Optimized for cold storage
        - Strong compression level
        - Accept smaller savings
        """
        return StasherConfig(
            pool=pool,
            zpool=zpool,
            zsize=1024,
            zrate=0.95,
            zlevel=19,
            ztimeout=3600.0,
        )

    @staticmethod
    def fast(pool: Path, zpool: Path) -> StasherConfig:
        """
        Optimized for ingestion speed
        - Fastest level, only large objects
        - Keep raw unless savings are substantial
        - One compressor per CPU
        """
        return StasherConfig(
            pool=pool,
            zpool=zpool,
            zsize=64 * 1024,
            zrate=0.75,
            zlevel=1,
            workers=os.cpu_count() or 1,
        )


PRESETS = {
    'default': ConfigPresets.default,
    'archival': ConfigPresets.archival,
    'fast': ConfigPresets.fast,
}
