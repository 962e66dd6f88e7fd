"""Tern: a single-agent conversational runtime."""

__version__ = "0.1.0"
