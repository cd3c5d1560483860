"""Requests dispatched to agents and the agent side executor."""

from farmsync.remote.agent import AgentContext, AgentExecutor, LocalChannel, RoleChecker
from farmsync.remote.requests import (
    CAPABILITY_AGENT,
    AgentRequest,
    CancelWaitRequest,
    DispatchMessage,
    DispatchReply,
    FinishUploadsRequest,
    S3Request,
    UploadArtifactsRequest,
    WaitForUploadsRequest,
)

__all__ = [
    "AgentContext",
    "AgentExecutor",
    "AgentRequest",
    "CAPABILITY_AGENT",
    "CancelWaitRequest",
    "DispatchMessage",
    "DispatchReply",
    "FinishUploadsRequest",
    "LocalChannel",
    "RoleChecker",
    "S3Request",
    "UploadArtifactsRequest",
    "WaitForUploadsRequest",
]
