"""Exception taxonomy for the streaming pipeline.

Structural problems in the audio archive (bad folder names, unsupported
files) are logged and skipped, so they have no exception type here.
"""

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import GroupResult


class IdentifierError(ValueError):
    """A file path does not follow the archive naming convention."""


class PublishError(RuntimeError):
    """The encoder could not be started or exited with a non-zero code."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class OperationCancelled(Exception):
    """Raised when the shared shutdown signal is observed mid-operation."""


class GroupFailedError(RuntimeError):
    """A file in a group exhausted its retry budget."""


class StreamingFailed(RuntimeError):
    """One or more groups failed during a run."""

    def __init__(self, failed: List["GroupResult"]):
        names = ", ".join(r.identifier or f"#{r.index}" for r in failed)
        super().__init__(f"{len(failed)} stream(s) failed: {names}")
        self.failed = failed


class BroadcastWindowClosed(RuntimeError):
    """The configured end date has already passed."""
