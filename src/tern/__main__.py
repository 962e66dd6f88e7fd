"""Tern CLI entry point."""

from tern.cli import app

if __name__ == "__main__":
    app()
