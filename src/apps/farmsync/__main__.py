"""Console entry point for the farmsync CLI application."""

from __future__ import annotations

import sys
from typing import Sequence

import typer

from apps.farmsync.app import app
from apps.farmsync.utils.errors import ExitCode, exit_code_for, heading_for
from farmsync.errors import FarmSyncError


def _handle_cli_error(exc: FarmSyncError) -> ExitCode:
    """Render a user friendly error message and return the exit code."""

    typer.secho(f"{heading_for(exc)}: {exc}", fg=typer.colors.RED, err=True)
    if exc.hint:
        typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    return exit_code_for(exc)


def main(argv: Sequence[str] | None = None) -> int:
    """Invoke the root Typer application."""

    try:
        result = app(
            args=list(argv) if argv is not None else None,
            standalone_mode=False,
        )
        if result is None:
            return int(ExitCode.SUCCESS)
        return int(result)
    except FarmSyncError as exc:
        return int(_handle_cli_error(exc))


if __name__ == "__main__":
    sys.exit(main())
