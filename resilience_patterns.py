"""
Resilience Patterns for the CAS Staging Layer
=============================================

Error classes and explicit result types for the staging and compression
passes. Only an unreadable source file is fatal; every other failure is a
best-effort operation whose result carries the fallback that was taken.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class NonRetryableError(Exception):
    """Base class for errors that must abort the run"""

    def __init__(self, message: str, cause: Optional[Exception] = None,
                 error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """
        Initialize a non-retryable error.

        Args:
            message: Error description
            cause: Original exception that caused this error
            error_code: Specific error code for categorization
            details: Additional error context
        """
        super().__init__(message)
        self.cause = cause
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        if self.cause:
            return f"{base_msg} (caused by {type(self.cause).__name__}: {self.cause})"
        return base_msg


class UnreadableContentError(NonRetryableError):
    """A source file could not be opened or read while hashing it"""

    def __init__(self, path: Path, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot read source file: {path}",
            cause=cause,
            error_code="UNREADABLE_SOURCE",
            details={'path': str(path)}
        )
        self.path = Path(path)


class ConfigError(NonRetryableError):
    """Configuration could not be loaded or failed validation"""

    def __init__(self, message: str, cause: Optional[Exception] = None,
                 source: Optional[Path] = None):
        super().__init__(
            message,
            cause=cause,
            error_code="INVALID_CONFIG",
            details={'source': str(source) if source else None}
        )
        self.source = source


class LinkStatus(Enum):
    """Outcome of placing an object under a pool name"""
    LINKED = "linked"        # new hard link created
    COPIED = "copied"        # cross-device fallback, bytes copied once
    EXISTS = "exists"        # an entry with that name was already present
    DISABLED = "disabled"    # staging is off (manifest-only run)
    FAILED = "failed"        # best-effort failure, object not placed


@dataclass(frozen=True)
class LinkResult:
    """Result of a best-effort link into a pool"""
    status: LinkStatus
    target: Optional[Path] = None
    error: Optional[OSError] = None

    @property
    def placed(self) -> bool:
        """True when an entry exists under the target name afterwards"""
        return self.status in (LinkStatus.LINKED, LinkStatus.COPIED, LinkStatus.EXISTS)


@dataclass(frozen=True)
class CompressionAttempt:
    """Result of one compressor invocation"""
    ok: bool
    output: Path
    error: Optional[str] = None
    duration: float = 0.0


class Placement(Enum):
    """Final storage form chosen for a content node"""
    RAW = "raw"
    COMPRESSED = "compressed"
    SKIPPED = "skipped"


class Reason(Enum):
    """Why the selector chose a placement"""
    INVALID_IDENTIFIER = "invalid_identifier"
    ALREADY_COMPRESSED = "already_compressed"
    ALREADY_RAW = "already_raw"
    COMPRESSION_DISABLED = "compression_disabled"
    MISSING_STAGED = "missing_staged"
    BELOW_THRESHOLD = "below_threshold"
    COMPRESSOR_FAILED = "compressor_failed"
    RATIO_REJECTED = "ratio_rejected"
    RATIO_ACCEPTED = "ratio_accepted"


@dataclass(frozen=True)
class Selection:
    """Decision taken by the compression selector for one node"""
    identifier: str
    placement: Placement
    reason: Reason
    original_size: int = 0
    stored_size: int = 0
    link: Optional[LinkResult] = None

    @property
    def saved_bytes(self) -> int:
        if self.placement is Placement.COMPRESSED and self.original_size:
            return self.original_size - self.stored_size
        return 0
