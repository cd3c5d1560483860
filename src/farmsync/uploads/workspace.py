"""Identify the workspace of one build execution."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class WorkspaceRef(BaseModel):
    """A build workspace path qualified by the build execution using it.

    Agents reuse workspace directories between builds, so the build identifier
    is part of the identity: two builds in the same directory never share
    upload state.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1)
    build_id: str = Field(min_length=1)

    @classmethod
    def for_build(cls, path: os.PathLike[str] | str, build_id: str) -> "WorkspaceRef":
        return cls(path=os.fspath(path), build_id=build_id)

    def local_path(self) -> Path:
        return Path(self.path).expanduser()

    def __str__(self) -> str:
        return f"{self.path}#{self.build_id}"


__all__ = ["WorkspaceRef"]
