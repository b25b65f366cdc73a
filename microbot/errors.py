"""
Errors
======

Exception types raised inside microbot.

Most failures never reach a caller as an exception: skill errors become
text the model can read, model failures become a fixed apology, and storage
failures are logged while the in-memory state carries on. These types mark
the places where an exception is raised internally before one of those
boundaries converts it.
"""


class MicrobotError(Exception):
    """Base class for all microbot errors."""


class InvalidMessageError(MicrobotError):
    """An inbound message is missing content, user or channel."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Inbound message missing required fields: {', '.join(missing)}")


class ModelError(MicrobotError):
    """The model backend could not produce a reply."""


class SessionStoreError(MicrobotError):
    """A session record could not be written or read."""


class SkillParseError(MicrobotError):
    """A skill document could not be parsed into a descriptor."""
