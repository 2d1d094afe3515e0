"""Command-line interface (``tessera``)."""

from tessera.cli.app import app

__all__ = ["app"]
