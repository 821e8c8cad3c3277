"""toolbridge CLI module."""

from toolbridge.cli.main import cli, main

__all__ = ["cli", "main"]
