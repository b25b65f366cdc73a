"""
Sessions
========

Conversation transcripts keyed by (channel, user) and the store that owns
them.
"""

from microbot.session.manager import Message, Session, SessionStore

__all__ = ["Message", "Session", "SessionStore"]
