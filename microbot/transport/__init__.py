"""
Transports
==========

Front doors that turn external traffic into InboundMessages and deliver
the agent's replies back:
- WebSocketTransport: JSON over WebSocket
- SlackTransport: Slack Socket Mode (imported only when Slack is configured)
"""

from microbot.transport.websocket import WebSocketTransport

__all__ = ["WebSocketTransport"]
