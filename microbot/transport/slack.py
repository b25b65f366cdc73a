"""
Slack Transport
===============

Connects the agent to Slack over Socket Mode.

Event Types:
- app_mention: When someone mentions the bot in a channel
- message.im: Direct messages to the bot

Handler Pattern:
    1. Receive event from Slack
    2. Convert it into an InboundMessage (type "slack")
    3. Hand it to the agent
    4. The agent delivers the reply back here; we post it with
       chat_postMessage (in the thread for mentions)

Why Socket Mode?
- No need for a public URL or webhook
- Works behind firewalls
"""

import re
from typing import Any

from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncAck, AsyncApp, AsyncSay
from slack_sdk.web.async_client import AsyncWebClient

from microbot.agent.inbound import InboundMessage
from microbot.utils.config import SlackConfig
from microbot.utils.logger import Logger, truncate

logger = Logger("Slack")

TRANSPORT_TYPE = "slack"

ERROR_REPLY = "Sorry, I encountered an error processing your request."

HELP_TEXT = """*Microbot* - Your Skill-Driven Assistant

*Commands:*
- `/microbot help` - Show this help message
- `/microbot status` - Check bot status
- `/microbot clear` - Clear your conversation history in this channel
- `/microbot reload` - Reload skill documents

*Features:*
- Mention me in any channel to interact
- DM me for private conversations
- Ask me to analyze data files and I'll run the right skill
"""

_MENTION = re.compile(r"<@[A-Z0-9]+>")


def strip_mentions(text: str) -> str:
    """Remove <@U123ABC> mention markup."""
    return _MENTION.sub("", text).strip()


class SlackTransport:
    """
    Slack front door for the agent.

    Example:
        transport = SlackTransport(agent, config.slack)
        agent.add_sink("slack", transport)
        await transport.start()
    """

    def __init__(self, agent, config: SlackConfig, app: AsyncApp | None = None):
        """
        Args:
            agent: The Agent handling messages
            config: Slack tokens
            app: Optional prebuilt Bolt app (tests inject one)
        """
        self.agent = agent
        self.config = config
        self.app = app or AsyncApp(
            token=config.bot_token,
            signing_secret=config.signing_secret,
        )
        self._handler: AsyncSocketModeHandler | None = None
        self._register()

    def _register(self) -> None:
        self.app.event("app_mention")(self.handle_mention)
        self.app.event("message")(self.handle_direct_message)
        self.app.command("/microbot")(self.handle_command)
        logger.info("Registered Slack event handlers")

    @property
    def client(self) -> AsyncWebClient:
        return self.app.client

    async def start(self) -> None:
        """Open the Socket Mode connection (returns once connected)."""
        self._handler = AsyncSocketModeHandler(app=self.app, app_token=self.config.app_token)
        await self._handler.connect_async()
        logger.info("Slack Socket Mode connected")

    async def stop(self) -> None:
        if self._handler is not None:
            await self._handler.close_async()
            self._handler = None
            logger.info("Slack Socket Mode closed")

    async def handle_mention(self, event: dict, say: AsyncSay) -> None:
        """A mention in a channel; the reply goes to the thread."""
        text = strip_mentions(event.get("text", ""))
        thread_ts = event.get("thread_ts") or event.get("ts")

        if not text:
            await say(text="Hi! How can I help you?", thread_ts=thread_ts)
            return

        logger.info(f"Mention from {event.get('user')} in {event.get('channel')}: {truncate(text, 50)}")
        await self.agent.handle_message(self.to_inbound(event, text, thread_ts=thread_ts))

    async def handle_direct_message(self, event: dict) -> None:
        # Only DMs; channel traffic arrives as app_mention
        if event.get("channel_type") != "im":
            return
        # Bot messages (including our own) and edits/deletes
        if event.get("bot_id") or event.get("subtype"):
            return

        text = event.get("text", "")
        if not text:
            return

        logger.info(f"DM from {event.get('user')}: {truncate(text, 50)}")
        await self.agent.handle_message(self.to_inbound(event, text))

    async def handle_command(self, ack: AsyncAck, command: dict, say: AsyncSay) -> None:
        """
        Handle the /microbot slash command.

        - /microbot help - Show help
        - /microbot status - Show bot status
        - /microbot clear - Clear conversation history
        - /microbot reload - Reload the skill catalog
        """
        await ack()

        text = command.get("text", "").strip().lower()

        if text == "help" or not text:
            await say(text=HELP_TEXT)

        elif text == "status":
            status = self.agent.status()
            await say(text=(
                "*Bot Status*\n"
                "- Status: Online\n"
                f"- Model: {status['model']}\n"
                f"- Skills available: {status['available_skills']}/{status['skills']}\n"
                f"- Active sessions: {status['sessions']}"
            ))

        elif text == "clear":
            await self.agent.clear_conversation(command.get("channel_id", ""), command.get("user_id", ""))
            await say(text="Conversation history cleared! Starting fresh.")

        elif text == "reload":
            count = await self.agent.reload_skills()
            await say(text=f"Reloaded {count} skills.")

        else:
            await say(text=f"Unknown command: `{text}`. Try `/microbot help`")

    @staticmethod
    def to_inbound(event: dict, text: str, thread_ts: str | None = None) -> InboundMessage:
        message = InboundMessage(
            content=text,
            user=event.get("user") or "",
            channel=event.get("channel") or "",
            type=TRANSPORT_TYPE,
        )
        if event.get("client_msg_id") or event.get("ts"):
            message.id = event.get("client_msg_id") or event["ts"]
        if thread_ts:
            message.extra["thread_ts"] = thread_ts
        return message

    async def deliver(self, message: InboundMessage, payload: dict[str, Any]) -> None:
        """Post the agent's reply (or an apology) back to Slack."""
        if payload.get("type") == "response":
            text = payload.get("message") or ""
        else:
            text = ERROR_REPLY

        kwargs: dict[str, Any] = {"channel": message.channel, "text": text}
        if message.extra.get("thread_ts"):
            kwargs["thread_ts"] = message.extra["thread_ts"]

        await self.client.chat_postMessage(**kwargs)
