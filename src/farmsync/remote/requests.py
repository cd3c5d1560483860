"""Serializable units of work dispatched from a coordinator to an agent.

Requests are plain data. The coordinator builds one, wraps it in a
:class:`DispatchMessage` and sends the JSON form across the channel; the agent
decodes it, checks it holds :attr:`AgentRequest.required_capability` and calls
:meth:`AgentRequest.invoke` against its own registry and transfer cache.
"""

from __future__ import annotations

import fnmatch
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer
from s3transfer.subscribers import BaseSubscriber

from farmsync.aws.proxy import ProxyRule
from farmsync.aws.transfer_cache import ClientKey, TransferClientEntry
from farmsync.config import load_settings
from farmsync.errors import WorkspaceNotFoundError
from farmsync.uploads.registry import UploadRegistry, WaitOutcome, WaitResult
from farmsync.uploads.workspace import WorkspaceRef

if TYPE_CHECKING:  # pragma: no cover - import only used for typing
    from farmsync.remote.agent import AgentContext

log = structlog.get_logger(__name__)

CAPABILITY_AGENT = "agent.execute"


@lru_cache(maxsize=1)
def configured_endpoint() -> str | None:
    """Return the custom S3 endpoint configured for this process."""

    return load_settings().s3_endpoint


class AgentRequest(BaseModel):
    """Base class for work executed on the agent holding a workspace."""

    model_config = ConfigDict(frozen=True)

    required_capability: ClassVar[str] = CAPABILITY_AGENT

    kind: str

    def invoke(
        self, context: "AgentContext", workspace: WorkspaceRef
    ) -> dict[str, Any] | None:
        raise NotImplementedError


class S3Request(AgentRequest):
    """Request that needs an S3 transfer manager on the agent.

    ``custom_endpoint`` is captured from the coordinator's configuration when
    the request is built so every agent talks to the same store.
    """

    access_key: str | None = None
    secret_key: SecretStr | None = None
    use_role: bool = False
    region: str | None = None
    proxy: ProxyRule | None = None
    custom_endpoint: str | None = Field(default_factory=configured_endpoint)

    @field_serializer("secret_key", when_used="json")
    def _reveal_secret(self, value: SecretStr | None) -> str | None:
        # Only the wire form carries the credential; repr() stays masked.
        return value.get_secret_value() if value is not None else None

    def client_key(self) -> ClientKey:
        return ClientKey.create(self.region, self.access_key, self.secret_key, self.use_role)

    def transfer_client(self, context: "AgentContext") -> TransferClientEntry:
        """Return the agent's cached transfer client for these credentials."""

        return context.transfer_cache.get_or_create(
            self.client_key(), lambda: context.open_client(self)
        )


class FinishUploadsRequest(AgentRequest):
    """Signal that uploading finished for a workspace, releasing its waiters."""

    kind: Literal["finish_uploads"] = "finish_uploads"

    def invoke(
        self, context: "AgentContext", workspace: WorkspaceRef
    ) -> dict[str, Any] | None:
        context.registry.finish_uploading(workspace)
        return {"state": context.registry.snapshot(workspace).state.value}


class WaitForUploadsRequest(AgentRequest):
    """Block on the agent until a workspace's uploads are done."""

    kind: Literal["wait_for_uploads"] = "wait_for_uploads"
    timeout: float | None = Field(default=None, gt=0)

    def invoke(
        self, context: "AgentContext", workspace: WorkspaceRef
    ) -> dict[str, Any] | None:
        with context.cancellations.scope(workspace) as token:
            result = context.registry.wait_for_uploads(
                workspace, self.timeout or context.upload_timeout, token
            )
        return {
            "outcome": result.outcome.value,
            "elapsed": result.elapsed,
            "failed_uploads": list(result.failed_uploads),
        }

    @staticmethod
    def parse_result(workspace: WorkspaceRef, payload: dict[str, Any]) -> WaitResult:
        return WaitResult(
            outcome=WaitOutcome(payload["outcome"]),
            workspace=workspace,
            elapsed=float(payload.get("elapsed", 0.0)),
            failed_uploads=tuple(payload.get("failed_uploads", ())),
        )


class CancelWaitRequest(AgentRequest):
    """Abort the waits running for one workspace; other workspaces keep waiting."""

    kind: Literal["cancel_wait"] = "cancel_wait"

    def invoke(
        self, context: "AgentContext", workspace: WorkspaceRef
    ) -> dict[str, Any] | None:
        cancelled = context.cancellations.cancel(workspace)
        log.info("uploads.wait.cancel", workspace=str(workspace), cancelled=cancelled)
        return {"cancelled": cancelled}


class _RegistrySubscriber(BaseSubscriber):
    """Report a transfer's completion back into the upload registry."""

    def __init__(self, registry: UploadRegistry, workspace: WorkspaceRef, name: str) -> None:
        self._registry = registry
        self._workspace = workspace
        self._name = name

    def on_done(self, future: Any, **kwargs: Any) -> None:
        error: BaseException | None = None
        try:
            future.result()
        except Exception as exc:
            error = exc
        self._registry.complete_upload(self._workspace, self._name, error=error)


class UploadArtifactsRequest(S3Request):
    """Upload workspace files matching *include* to ``s3://bucket/prefix``.

    Every matching file is registered with the agent's registry before the
    first transfer starts, and each is completed when its transfer reports
    back. With ``wait`` the request blocks until every transfer finished and
    then signals ``finish_uploading``; transfer errors propagate to the
    coordinator.
    """

    kind: Literal["upload_artifacts"] = "upload_artifacts"
    bucket: str = Field(min_length=1)
    prefix: str = ""
    include: tuple[str, ...] = ("**/*",)
    exclude: tuple[str, ...] = ()
    wait: bool = False

    def collect(self, root: Path) -> list[Path]:
        matches: set[Path] = set()
        for pattern in self.include:
            for path in root.glob(pattern):
                if not path.is_file():
                    continue
                relative = path.relative_to(root).as_posix()
                if any(fnmatch.fnmatch(relative, skip) for skip in self.exclude):
                    continue
                matches.add(path)
        return sorted(matches)

    def object_key(self, root: Path, path: Path) -> str:
        relative = path.relative_to(root).as_posix()
        prefix = self.prefix.strip("/")
        return f"{prefix}/{relative}" if prefix else relative

    def invoke(
        self, context: "AgentContext", workspace: WorkspaceRef
    ) -> dict[str, Any] | None:
        root = workspace.local_path()
        if not root.is_dir():
            raise WorkspaceNotFoundError(
                f"Workspace '{root}' does not exist on agent '{context.name}'",
                context={"workspace": str(workspace), "agent": context.name},
            )

        entry = self.transfer_client(context)
        uploads = [(path, self.object_key(root, path)) for path in self.collect(root)]
        keys = [key for _, key in uploads]
        context.registry.register_uploads(workspace, keys)

        futures: list[Any] = []
        for index, (path, key) in enumerate(uploads):
            subscriber = _RegistrySubscriber(context.registry, workspace, key)
            try:
                future = entry.transfer_manager.upload(
                    str(path), self.bucket, key, subscribers=[subscriber]
                )
            except Exception as exc:
                # Nothing will report back for this or the remaining uploads.
                for _, pending in uploads[index:]:
                    context.registry.complete_upload(workspace, pending, error=exc)
                raise
            futures.append(future)

        log.info(
            "uploads.artifacts.started",
            workspace=str(workspace),
            bucket=self.bucket,
            files=len(keys),
        )

        if self.wait:
            for future in futures:
                future.result()
            context.registry.finish_uploading(workspace)

        return {"bucket": self.bucket, "keys": keys}


AnyAgentRequest = Annotated[
    Union[
        FinishUploadsRequest,
        WaitForUploadsRequest,
        CancelWaitRequest,
        UploadArtifactsRequest,
    ],
    Field(discriminator="kind"),
]


class DispatchMessage(BaseModel):
    """Envelope sent from the coordinator to an agent."""

    workspace: WorkspaceRef
    request: AnyAgentRequest

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, raw: str | bytes) -> "DispatchMessage":
        return cls.model_validate_json(raw)


class DispatchReply(BaseModel):
    """Envelope returned by the agent."""

    ok: bool
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, raw: str | bytes) -> "DispatchReply":
        return cls.model_validate_json(raw)


__all__ = [
    "AgentRequest",
    "AnyAgentRequest",
    "CAPABILITY_AGENT",
    "CancelWaitRequest",
    "DispatchMessage",
    "DispatchReply",
    "FinishUploadsRequest",
    "S3Request",
    "UploadArtifactsRequest",
    "WaitForUploadsRequest",
    "configured_endpoint",
]
