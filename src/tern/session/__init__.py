"""Session persistence."""

from tern.session.store import FileSessionStore, InMemorySessionStore, SessionStore

__all__ = ["FileSessionStore", "InMemorySessionStore", "SessionStore"]
