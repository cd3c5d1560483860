"""Artifact upload coordination for build and render farms."""

from . import aws, remote, uploads

__all__ = [
    "__version__",
    "aws",
    "remote",
    "uploads",
]

__version__ = "1.0.0"
