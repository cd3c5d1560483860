"""Error taxonomy shared by the transfer cache, upload registry and agents."""

from __future__ import annotations

from typing import Any, Mapping


class FarmSyncError(Exception):
    """Base class for predictable farmsync failures."""

    default_code = "farmsync.error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        hint: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or type(self).default_code
        self.hint = hint
        self.context: dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON friendly description used in agent replies."""

        return {
            "code": self.code,
            "message": self.message,
            "hint": self.hint,
            "context": {key: str(value) for key, value in self.context.items()},
        }


class ConfigurationError(FarmSyncError):
    """Raised when region, credentials or endpoint settings are unusable.

    Configuration errors point at a broken deployment and are never retried.
    """

    default_code = "config.invalid"


class CapabilityError(FarmSyncError, PermissionError):
    """Raised when an agent lacks the capability a request requires."""

    default_code = "agent.permission_denied"


class WorkspaceNotFoundError(FarmSyncError):
    """Raised when a request targets a workspace missing on the agent."""

    default_code = "workspace.not_found"


class UploadWaitError(FarmSyncError):
    """Base class for unsuccessful upload barrier waits."""

    default_code = "uploads.wait_failed"


class UploadTimeoutError(UploadWaitError, TimeoutError):
    """Raised when uploads did not finish before the wait deadline."""

    default_code = "uploads.timeout"


class UploadCancelledError(UploadWaitError):
    """Raised when a wait was cancelled because the build was aborted."""

    default_code = "uploads.cancelled"


class RemoteInvocationError(FarmSyncError):
    """Raised when an agent reports a failure without a known error code."""

    default_code = "remote.error"


ERRORS_BY_CODE: dict[str, type[FarmSyncError]] = {
    error.default_code: error
    for error in (
        FarmSyncError,
        ConfigurationError,
        CapabilityError,
        WorkspaceNotFoundError,
        UploadWaitError,
        UploadTimeoutError,
        UploadCancelledError,
        RemoteInvocationError,
    )
}


def error_from_payload(payload: Mapping[str, Any]) -> FarmSyncError:
    """Rebuild a typed error from an agent reply payload."""

    code = str(payload.get("code") or RemoteInvocationError.default_code)
    error_cls = ERRORS_BY_CODE.get(code, RemoteInvocationError)
    context = payload.get("context")
    return error_cls(
        str(payload.get("message") or "Agent reported an error."),
        code=code,
        hint=payload.get("hint"),
        context=context if isinstance(context, Mapping) else None,
    )


__all__ = [
    "CapabilityError",
    "ConfigurationError",
    "ERRORS_BY_CODE",
    "FarmSyncError",
    "RemoteInvocationError",
    "UploadCancelledError",
    "UploadTimeoutError",
    "UploadWaitError",
    "WorkspaceNotFoundError",
    "error_from_payload",
]
