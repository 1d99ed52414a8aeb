"""
Session storage for Warden.

Sessions hold the append-only transcript of one conversation.
"""

from warden.session.store import SessionStore

__all__ = [
    "SessionStore",
]
