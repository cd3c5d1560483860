"""Typer commands inspecting region and proxy resolution."""

from typing import Optional

import typer

from farmsync.aws.proxy import should_proxy
from farmsync.config import load_settings

app = typer.Typer(name="aws", help="Inspect S3 region, endpoint and proxy settings")


@app.command("region")
def region(
    identifier: str = typer.Argument(
        "", help="Region name in canonical, enum or bucket-location form."
    ),
    endpoint: Optional[str] = typer.Option(
        None, "--endpoint", help="Custom S3 endpoint overriding the configured one."
    ),
) -> None:
    """Show how a region identifier resolves and which endpoint it uses."""

    settings = load_settings()
    resolver = settings.region_resolver()
    resolved = resolver.resolve(identifier or None)
    target = resolver.endpoint_for(resolved, endpoint or settings.s3_endpoint)

    typer.echo(f"Region:   {resolved.name}")
    typer.echo(f"Source:   {resolved.source.value}")
    typer.echo(f"Endpoint: {target.url}")


@app.command("proxy")
def proxy(host: str) -> None:
    """Report whether S3 calls to HOST go through the configured proxy."""

    rule = load_settings().proxy_rule()
    if rule is None:
        typer.echo(f"No proxy configured; {host} is reached directly.")
        return
    if should_proxy(rule, host):
        typer.echo(f"{host} uses proxy {rule.host}:{rule.port}")
        return
    typer.echo(f"{host} bypasses the proxy (matched {rule.exempts(host)!r})")


__all__ = ["app", "proxy", "region"]
