"""
Inbound Messages
================

The transport-neutral shape of a chat message arriving at the agent.

Every transport (WebSocket client, Slack event) converts what it receives
into an InboundMessage before handing it to Agent.handle_message():

    {
      "id": "m-1",
      "content": "hello",
      "user": "u1",
      "channel": "c1",
      "timestamp": "2026-01-31T10:30:00",
      "type": "websocket",      # optional, selects the reply sink
      "clientId": "client_ab12" # optional, originating connection
    }
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from microbot.errors import InvalidMessageError

REQUIRED_FIELDS = ("content", "user", "channel")

_KNOWN_KEYS = {"id", "content", "user", "channel", "timestamp", "type", "clientId", "client_id"}


@dataclass
class InboundMessage:
    """
    A message delivered by a transport.

    Attributes:
        content: The message text
        user: Sender identifier
        channel: Conversation/channel identifier
        id: Transport message id (generated when absent)
        timestamp: ISO-8601 receive time
        type: Transport tag used to route the reply ("websocket", "slack")
        client_id: Originating connection, if the transport tracks one
        extra: Any other fields the transport sent along
    """
    content: str
    user: str
    channel: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    type: str | None = None
    client_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InboundMessage":
        """
        Build a message from a transport payload.

        Missing required fields are kept empty here; call validate() to
        reject them.
        """
        content = data.get("content")
        message = cls(
            content=content if isinstance(content, str) else ("" if content is None else str(content)),
            user=str(data.get("user") or ""),
            channel=str(data.get("channel") or ""),
            type=data.get("type"),
            client_id=data.get("clientId") or data.get("client_id"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )
        if data.get("id"):
            message.id = str(data["id"])
        if data.get("timestamp"):
            message.timestamp = str(data["timestamp"])
        return message

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]

    def validate(self) -> "InboundMessage":
        """
        Check that content, user and channel are present.

        Returns:
            The message itself, for chaining

        Raises:
            InvalidMessageError: If any required field is missing or empty
        """
        missing = self.missing_fields()
        if missing:
            raise InvalidMessageError(missing)
        return self
