"""Agent side execution of dispatched requests and the coordinator channel."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

import structlog
from boto3.s3.transfer import TransferConfig
from pydantic import ValidationError

from farmsync.aws.client import open_transfer_client, transfer_config
from farmsync.aws.regions import RegionResolver
from farmsync.aws.transfer_cache import TransferClientCache, TransferClientEntry
from farmsync.config import FarmSyncSettings, load_settings
from farmsync.errors import (
    CapabilityError,
    FarmSyncError,
    RemoteInvocationError,
    error_from_payload,
)
from farmsync.remote.requests import (
    CAPABILITY_AGENT,
    AgentRequest,
    CancelWaitRequest,
    DispatchMessage,
    DispatchReply,
    FinishUploadsRequest,
    S3Request,
    WaitForUploadsRequest,
)
from farmsync.uploads.cancellation import CancellationScopes
from farmsync.uploads.registry import UploadRegistry, WaitResult
from farmsync.uploads.workspace import WorkspaceRef

log = structlog.get_logger(__name__)


@dataclass
class AgentContext:
    """Everything a request may touch while running on an agent."""

    name: str
    registry: UploadRegistry
    transfer_cache: TransferClientCache
    capabilities: frozenset[str] = field(
        default_factory=lambda: frozenset({CAPABILITY_AGENT})
    )
    client_factory: Callable[[S3Request], TransferClientEntry] | None = None
    resolver: RegionResolver | None = None
    transfer_config: TransferConfig | None = None
    upload_timeout: float = 600.0
    cancellations: CancellationScopes = field(default_factory=CancellationScopes)

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: FarmSyncSettings | None = None,
        **overrides: Any,
    ) -> "AgentContext":
        settings = settings or load_settings()
        values: dict[str, Any] = {
            "registry": UploadRegistry(retention=settings.retention),
            "transfer_cache": TransferClientCache(),
            "resolver": settings.region_resolver(),
            "transfer_config": transfer_config(
                settings.multipart_threshold_mb, settings.max_concurrency
            ),
            "upload_timeout": settings.upload_timeout,
        }
        values.update(overrides)
        return cls(name=name, **values)

    def open_client(self, request: S3Request) -> TransferClientEntry:
        """Build a transfer client for *request*; used on cache misses only."""

        if self.client_factory is not None:
            return self.client_factory(request)
        return open_transfer_client(
            request.access_key,
            request.secret_key,
            request.use_role,
            request.region,
            request.proxy,
            request.custom_endpoint,
            resolver=self.resolver,
            config=self.transfer_config,
        )


class RoleChecker:
    """Verify an agent holds the capability a request requires."""

    def __init__(self, granted: Iterable[str]) -> None:
        self._granted = frozenset(role for role in granted if role)

    def check(self, request: AgentRequest, *, agent: str = "") -> None:
        required = request.required_capability
        if required and required not in self._granted:
            raise CapabilityError(
                f"Agent '{agent}' is missing the '{required}' capability "
                f"required by '{request.kind}'",
                context={"agent": agent, "required": required, "kind": request.kind},
            )


class AgentExecutor:
    """Decode dispatch messages, check capabilities and run the requests."""

    def __init__(self, context: AgentContext) -> None:
        self._context = context
        self._checker = RoleChecker(context.capabilities)

    @property
    def context(self) -> AgentContext:
        return self._context

    def execute(self, message: DispatchMessage) -> dict[str, Any] | None:
        request = message.request
        self._checker.check(request, agent=self._context.name)
        log.info(
            "agent.request.received",
            agent=self._context.name,
            kind=request.kind,
            workspace=str(message.workspace),
        )
        return request.invoke(self._context, message.workspace)

    def handle(self, raw: str | bytes) -> str:
        """Run the encoded message *raw* and return the encoded reply.

        farmsync errors become error replies; anything else (for example a
        network failure inside boto3) propagates to the channel unchanged.
        """

        try:
            message = DispatchMessage.decode(raw)
        except ValidationError as exc:
            error = RemoteInvocationError(
                f"Malformed dispatch message ({exc.error_count()} validation errors)",
                code="remote.malformed",
            )
            return DispatchReply(ok=False, error=error.to_payload()).encode()

        try:
            result = self.execute(message)
        except FarmSyncError as exc:
            log.warning(
                "agent.request.failed",
                agent=self._context.name,
                kind=message.request.kind,
                code=exc.code,
                error=exc.message,
            )
            return DispatchReply(ok=False, error=exc.to_payload()).encode()
        return DispatchReply(ok=True, result=result).encode()


class LocalChannel:
    """Coordinator side channel delivering messages to an in-process agent.

    Messages take the same JSON round trip a network transport would, so what
    arrives on the agent is exactly what a remote agent would see. Delivery is
    at most once: a failed call is reported, never retried.
    """

    def __init__(self, executor: AgentExecutor) -> None:
        self._executor = executor

    def call(
        self, workspace: WorkspaceRef, request: AgentRequest
    ) -> dict[str, Any] | None:
        raw = DispatchMessage(workspace=workspace, request=request).encode()
        reply = DispatchReply.decode(self._executor.handle(raw))
        if not reply.ok:
            raise error_from_payload(reply.error or {})
        return reply.result

    def finish_uploading(self, workspace: WorkspaceRef) -> None:
        self.call(workspace, FinishUploadsRequest())

    def wait_for_uploads(
        self, workspace: WorkspaceRef, timeout: float | None = None
    ) -> WaitResult:
        payload = self.call(workspace, WaitForUploadsRequest(timeout=timeout))
        return WaitForUploadsRequest.parse_result(workspace, payload or {})

    def cancel_wait(self, workspace: WorkspaceRef) -> bool:
        """Abort the agent's waits for *workspace*; ``False`` if none were running."""

        payload = self.call(workspace, CancelWaitRequest()) or {}
        return bool(payload.get("cancelled"))


__all__ = ["AgentContext", "AgentExecutor", "LocalChannel", "RoleChecker"]
