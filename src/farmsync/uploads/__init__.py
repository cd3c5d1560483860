"""Upload completion tracking shared by coordinators and agents."""

from farmsync.uploads.cancellation import CancellationScopes, CancellationToken
from farmsync.uploads.registry import (
    UploadRegistry,
    UploadSnapshot,
    UploadState,
    WaitOutcome,
    WaitResult,
)
from farmsync.uploads.workspace import WorkspaceRef

__all__ = [
    "CancellationScopes",
    "CancellationToken",
    "UploadRegistry",
    "UploadSnapshot",
    "UploadState",
    "WaitOutcome",
    "WaitResult",
    "WorkspaceRef",
]
