"""Typer commands pushing a workspace to S3 through an in-process agent."""

from pathlib import Path
from typing import List, Optional
from uuid import uuid4

import structlog
import typer

from apps.farmsync.utils.errors import ExitCode
from farmsync.config import load_settings
from farmsync.errors import FarmSyncError
from farmsync.remote.agent import AgentContext, AgentExecutor, LocalChannel
from farmsync.remote.requests import UploadArtifactsRequest
from farmsync.uploads.workspace import WorkspaceRef

log = structlog.get_logger(__name__)
app = typer.Typer(name="uploads", help="Upload workspace artifacts and wait for them")


@app.command("push")
def push(
    workspace: Path = typer.Argument(..., help="Workspace directory to upload."),
    bucket: str = typer.Option(..., "--bucket", help="Destination bucket."),
    prefix: str = typer.Option("", "--prefix", help="Key prefix inside the bucket."),
    build_id: Optional[str] = typer.Option(
        None, "--build-id", help="Build execution identifier (random when omitted)."
    ),
    region: Optional[str] = typer.Option(None, "--region"),
    include: Optional[List[str]] = typer.Option(None, "--include"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the uploads to finish."
    ),
) -> ExitCode:
    """Upload WORKSPACE files and block until every transfer finished."""

    settings = load_settings()
    context = AgentContext.from_settings("local", settings)
    channel = LocalChannel(AgentExecutor(context))
    ref = WorkspaceRef.for_build(workspace.resolve(), build_id or uuid4().hex)

    request = UploadArtifactsRequest(
        access_key=settings.access_key,
        secret_key=settings.secret_key,
        use_role=settings.use_role,
        region=region,
        proxy=settings.proxy_rule(),
        bucket=bucket,
        prefix=prefix,
        include=tuple(include) if include else ("**/*",),
        exclude=tuple(exclude or ()),
    )

    finished = False
    try:
        started = channel.call(ref, request) or {}
        keys = started.get("keys", [])
        typer.echo(f"Started {len(keys)} upload(s) to s3://{bucket}/{prefix}")
        if not keys:
            channel.finish_uploading(ref)
        result = channel.wait_for_uploads(ref, timeout)
        finished = result.ok
    finally:
        context.transfer_cache.close(cancel=not finished)

    result.raise_for_outcome()
    if result.failed_uploads:
        for name in result.failed_uploads:
            typer.secho(f"✖ {name}", fg=typer.colors.RED, err=True)
        raise FarmSyncError(
            f"{len(result.failed_uploads)} upload(s) failed",
            code="uploads.failed",
            context={"workspace": str(ref)},
        )

    log.info("uploads.push.complete", workspace=str(ref), files=len(keys))
    typer.secho(
        f"✔ Uploaded {len(keys)} file(s) in {result.elapsed:.1f}s",
        fg=typer.colors.GREEN,
    )
    return ExitCode.SUCCESS


__all__ = ["app", "push"]
