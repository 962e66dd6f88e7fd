"""Command line front end."""

from tern.cli.app import app

__all__ = ["app"]
