"""Exception hierarchy shared by every component."""

from enum import Enum
from pathlib import Path
from typing import Optional


class FailureReason(str, Enum):
    """Why a file ended in the ``failed`` state."""

    UNREADABLE = "unreadable"
    UNSUPPORTED_FORMAT = "unsupported-format"
    CORRUPT = "corrupt"
    ZERO_BYTE = "zero-byte"
    DIMENSION_MISMATCH = "dimension-mismatch"
    FORMAT_MISMATCH = "format-mismatch"
    TOOL_FAILURE = "tool-failure"
    TIMEOUT = "timeout"
    COLLISION = "collision"
    DELETE_FAILED = "delete-failed"
    CANCELLED = "cancelled"


class SanitizerError(Exception):
    """Base class for all image-sanitizer errors."""


# Fatal: the whole run is aborted.


class FatalError(SanitizerError):
    """Aborts the whole run."""


class InvalidRootError(FatalError):
    """Root directory is missing, not a directory, or not accessible."""


class MissingToolError(FatalError):
    """A mandatory tool capability has no available implementation."""


class ScratchSpaceError(FatalError):
    """Scratch area cannot be created or lacks free space."""


# Recoverable: a single tool invocation failed and may be retried.


class ToolError(SanitizerError):
    """An external tool invocation failed."""

    def __init__(self, tool: str, message: str, returncode: Optional[int] = None):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.returncode = returncode


class ToolTimeout(ToolError):
    """An external tool invocation exceeded its timeout."""


class ToolUnavailable(ToolError):
    """The tool binary cannot be found."""


# Per-file terminal failures.


class FileFailure(SanitizerError):
    """Failure tied to one file, carrying a reportable reason."""

    retryable = False

    def __init__(self, path: Path, reason: FailureReason, message: str = ""):
        super().__init__(message or f"{reason.value}: {path}")
        self.path = path
        self.reason = reason


class FingerprintError(FileFailure):
    """The file cannot be fingerprinted."""

    def __init__(self, path: Path, reason: FailureReason, message: str = ""):
        super().__init__(path, reason, message)
        # An unreadable file may be a transient lock or a flaky share
        self.retryable = reason is FailureReason.UNREADABLE


class IntegrityError(FileFailure):
    """A candidate output failed verification."""


class ReplaceError(FileFailure):
    """The atomic replace protocol could not complete."""


class CollisionError(ReplaceError):
    """The destination name is already taken."""

    def __init__(self, path: Path, destination: Path):
        super().__init__(
            path,
            FailureReason.COLLISION,
            f"destination already exists: {destination}",
        )
        self.destination = destination


class Cancelled(SanitizerError):
    """Raised at a stage boundary once an interrupt was requested."""


def reason_for(exc: BaseException) -> FailureReason:
    """Map any exception escaping a stage to a reportable reason."""
    if isinstance(exc, FileFailure):
        return exc.reason
    if isinstance(exc, (ToolTimeout, TimeoutError)):
        return FailureReason.TIMEOUT
    if isinstance(exc, Cancelled):
        return FailureReason.CANCELLED
    if isinstance(exc, ToolError):
        return FailureReason.TOOL_FAILURE
    if isinstance(exc, OSError):
        return FailureReason.UNREADABLE
    return FailureReason.TOOL_FAILURE
