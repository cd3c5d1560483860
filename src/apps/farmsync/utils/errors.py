"""Map farmsync errors onto stable CLI exit codes."""

from __future__ import annotations

from enum import IntEnum

from farmsync.errors import (
    CapabilityError,
    ConfigurationError,
    FarmSyncError,
    UploadCancelledError,
    UploadTimeoutError,
    WorkspaceNotFoundError,
)


class ExitCode(IntEnum):
    """Standardised exit codes for the farmsync CLI."""

    SUCCESS = 0
    VALIDATION = 1
    IO = 2
    CONFIG = 3
    EXTERNAL = 4
    RUNTIME = 5
    TIMEOUT = 6


_EXIT_CODES: tuple[tuple[type[FarmSyncError], ExitCode, str], ...] = (
    (ConfigurationError, ExitCode.CONFIG, "Configuration error"),
    (CapabilityError, ExitCode.VALIDATION, "Permission denied"),
    (WorkspaceNotFoundError, ExitCode.IO, "I/O error"),
    (UploadTimeoutError, ExitCode.TIMEOUT, "Upload timeout"),
    (UploadCancelledError, ExitCode.RUNTIME, "Upload cancelled"),
)


def exit_code_for(exc: FarmSyncError) -> ExitCode:
    for error_cls, code, _ in _EXIT_CODES:
        if isinstance(exc, error_cls):
            return code
    return ExitCode.EXTERNAL


def heading_for(exc: FarmSyncError) -> str:
    """Return a short label describing the error class."""

    for error_cls, _, label in _EXIT_CODES:
        if isinstance(exc, error_cls):
            return label
    return "Error"
