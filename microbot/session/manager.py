"""
Session Manager
===============

Conversation transcripts, one per (channel, user) pair.

A Session is an append-only list of messages. The SessionStore owns every
Session in the process: it loads persisted records at startup, hands out the
single live instance for a key, and writes records back to disk as JSON.

Persisted record format (sessions/<channel>+<user>.json, each part
percent-encoded so distinct pairs never share a file):

    {
      "channel": "c1",
      "user": "u1",
      "messages": [
        {"role": "user", "content": "hello", "timestamp": "2026-..."},
        {"role": "assistant", "content": "Hi there", "timestamp": "2026-..."}
      ],
      "createdAt": "2026-...",
      "updatedAt": "2026-..."
    }

Concurrency Notes:
- Everything runs on one event loop, but get_or_create() awaits a disk
  write while creating a session. Two first messages for the same key could
  both pass the "does it exist?" check during that await, so creation and
  writes are serialized with one asyncio.Lock per key.
- Different keys never share a lock.
"""

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from microbot.errors import SessionStoreError
from microbot.utils.logger import Logger

logger = Logger("Sessions")

VALID_ROLES = ("user", "assistant", "system")

# quote(safe="") always encodes "+", so it can separate the parts
_FILENAME_SEPARATOR = "+"


def _now() -> str:
    return datetime.now().isoformat()


def stringify_content(content: Any) -> str:
    """
    Convert message content to text.

    Strings pass through; dicts and lists are JSON-encoded; anything else
    goes through str(). None becomes an empty string.
    """
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    if isinstance(content, (dict, list)):
        return json.dumps(content, ensure_ascii=False, default=str)
    return str(content)


@dataclass(frozen=True)
class Message:
    """
    A single message in a conversation.

    Attributes:
        role: Who sent the message ("user", "assistant", "system")
        content: The message text
        timestamp: ISO-8601 time the message was recorded
    """
    role: str
    content: str
    timestamp: str

    @classmethod
    def create(cls, role: str, content: Any, timestamp: str | None = None) -> "Message":
        """
        Build a message, converting non-text content to text.

        Raises:
            ValueError: If role is empty
        """
        if not role:
            raise ValueError("Message role is required")
        return cls(role=role, content=stringify_content(content), timestamp=timestamp or _now())

    def to_dict(self) -> dict:
        """Persisted form, including the timestamp."""
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls.create(
            role=data.get("role", ""),
            content=data.get("content", ""),
            timestamp=data.get("timestamp"),
        )


class Session:
    """
    An ordered conversation transcript for one (channel, user) pair.

    Messages are only ever appended. The identity pair is fixed at
    construction and exposed through read-only properties.

    Example:
        session = Session("c1", "u1")
        session.append(Message.create("user", "hello"))

        for message in session.history_view():
            print(message.role, message.content)
    """

    def __init__(
        self,
        channel: str,
        user: str,
        created_at: str | None = None,
        updated_at: str | None = None
    ):
        self._channel = channel
        self._user = user
        self._messages: list[Message] = []
        self.created_at = created_at or _now()
        self.updated_at = updated_at or self.created_at

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def user(self) -> str:
        return self._user

    @property
    def key(self) -> str:
        """The session id used in outbound payloads ("channel:user")."""
        return session_key(self._channel, self._user)

    def append(self, message: Message) -> None:
        """Add a message to the end of the transcript."""
        self._messages.append(message)
        self.updated_at = _now()

    def history_view(self) -> tuple[Message, ...]:
        """
        Snapshot of the transcript, oldest first.

        The tuple is detached from the session: later appends do not change a
        view that was already taken, and repeated calls return equal tuples
        until the next append.
        """
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def to_dict(self) -> dict:
        """Serialize to the persisted record format."""
        return {
            "channel": self._channel,
            "user": self._user,
            "messages": [m.to_dict() for m in self._messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """
        Rebuild a session from a persisted record.

        Raises:
            ValueError: If channel or user is missing
        """
        channel = data.get("channel")
        user = data.get("user")
        if not channel or not user:
            raise ValueError("Session record is missing channel or user")

        session = cls(channel, user, created_at=data.get("createdAt"))
        session._messages = [Message.from_dict(m) for m in data.get("messages") or []]
        session.updated_at = data.get("updatedAt") or session.created_at
        return session


def session_key(channel: str, user: str) -> str:
    """Display id for payloads and logs. Not unique; the store keys by the pair."""
    return f"{channel}:{user}"


class SessionStore:
    """
    In-memory map of live sessions backed by JSON files.

    The store is the single owner of Session objects: callers get the live
    instance from get_or_create() and append through append(), never build
    their own copy.

    Example:
        store = SessionStore(Path("sessions"))
        await store.initialize()

        session = await store.get_or_create("c1", "u1")
        await store.append(session, Message.create("user", "hello"))
    """

    def __init__(self, sessions_dir: Path):
        """
        Args:
            sessions_dir: Directory holding one JSON record per session
        """
        self.sessions_dir = Path(sessions_dir)
        self._sessions: dict[tuple[str, str], Session] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def initialize(self) -> None:
        """Create the sessions directory and load existing records."""
        logger.info("Initializing session store...")
        loaded = await asyncio.to_thread(self._load_all_sync)
        for session in loaded:
            self._sessions[(session.channel, session.user)] = session
        logger.info(f"Loaded {len(loaded)} existing sessions")

    def _load_all_sync(self) -> list[Session]:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

        sessions = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                sessions.append(Session.from_dict(data))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable session record {path.name}: {e}")
        return sessions

    def _lock_for(self, key: tuple[str, str]) -> asyncio.Lock:
        # setdefault has no await point, so two tasks always share one lock
        return self._locks.setdefault(key, asyncio.Lock())

    def get(self, channel: str, user: str) -> Session | None:
        """Get an existing session without creating one."""
        return self._sessions.get((channel, user))

    async def get_or_create(self, channel: str, user: str) -> Session:
        """
        Get the session for a key, creating and persisting it if needed.

        Concurrent calls for the same key return the same instance.

        Args:
            channel: Channel the conversation happens in
            user: User the conversation is with

        Returns:
            The live Session for (channel, user)
        """
        key = (channel, user)

        existing = self._sessions.get(key)
        if existing is not None:
            logger.debug(f"Found existing session: {session_key(channel, user)}")
            return existing

        async with self._lock_for(key):
            # Re-check: another task may have created it while we waited
            existing = self._sessions.get(key)
            if existing is not None:
                return existing

            session = Session(channel, user)
            logger.info(f"Creating new session: {session.key}")

            try:
                await self._write(session)
            except SessionStoreError as e:
                logger.error(f"Could not persist new session {session.key}", e)

            # Published only after the write so that a concurrent caller waits
            # on the lock instead of appending ahead of the creator
            self._sessions[key] = session
            return session

    async def append(self, session: Session, message: Message) -> None:
        """
        Append a message and persist the session.

        The in-memory transcript always keeps the message. If the write fails
        the error is logged and re-raised so the caller knows durability was
        lost for this turn.

        Raises:
            SessionStoreError: If the record could not be written
        """
        session.append(message)
        await self.save(session)

    async def save(self, session: Session) -> None:
        """
        Write a session record to disk.

        Raises:
            SessionStoreError: If the record could not be written
        """
        async with self._lock_for((session.channel, session.user)):
            await self._write(session)

    async def _write(self, session: Session) -> None:
        path = self._path_for(session.channel, session.user)
        payload = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)

        try:
            await asyncio.to_thread(_atomic_write, path, payload)
        except OSError as e:
            logger.error(f"Error saving session {session.key}", e)
            raise SessionStoreError(f"Could not save session {session.key}: {e}") from e

        logger.debug(f"Session saved: {session.key}")

    async def delete(self, channel: str, user: str) -> bool:
        """
        Remove a session from memory and disk.

        Returns:
            True if the session existed
        """
        key = session_key(channel, user)
        async with self._lock_for((channel, user)):
            session = self._sessions.pop((channel, user), None)
            if session is None:
                return False

            path = self._path_for(channel, user)
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except OSError as e:
                logger.error(f"Error deleting session file for {key}", e)

        logger.info(f"Session deleted: {key}")
        return True

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def count(self) -> int:
        return len(self._sessions)

    def _path_for(self, channel: str, user: str) -> Path:
        filename = _FILENAME_SEPARATOR.join(quote(part, safe="") for part in (channel, user))
        return self.sessions_dir / f"{filename}.json"


def _atomic_write(path: Path, payload: str) -> None:
    """Write via a temp file in the same directory, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except OSError:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
