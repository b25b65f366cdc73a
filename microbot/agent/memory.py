"""
Memory Store
============

File-backed long-term memory that is folded into every prompt.

File Structure:
    memory/
    ├── MEMORY.md          # Curated knowledge, rewritten as a whole
    └── daily/
        ├── 2026-01-30.md  # Append-only daily logs
        └── 2026-01-31.md

The excerpt handed to the context assembler is MEMORY.md followed by
today's log. Either file may be missing; a read failure yields an empty
excerpt so a turn is never blocked on memory.
"""

import asyncio
from datetime import datetime
from pathlib import Path

from microbot.utils.logger import Logger

logger = Logger("Memory")


class MemoryStore:
    """
    Reads and writes MEMORY.md and the daily logs.

    Example:
        memory = MemoryStore(Path("memory"))
        await memory.initialize()

        excerpt = await memory.get_memory_context()
        await memory.write_memory("# Notes\\n- User prefers short answers")
    """

    def __init__(self, memory_dir: Path):
        """
        Args:
            memory_dir: Path to the memory directory
        """
        self.memory_dir = Path(memory_dir)
        self.memory_file = self.memory_dir / "MEMORY.md"
        self.daily_dir = self.memory_dir / "daily"

    async def initialize(self) -> None:
        """Create the memory directories if they don't exist."""
        logger.info("Initializing memory store...")
        try:
            await asyncio.to_thread(self._ensure_directories)
        except OSError as e:
            logger.error("Error creating memory directory", e)

    def _ensure_directories(self) -> None:
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self.daily_dir.mkdir(parents=True, exist_ok=True)

    def _get_daily_file(self, date: datetime | None = None) -> Path:
        date = date or datetime.now()
        return self.daily_dir / (date.strftime("%Y-%m-%d") + ".md")

    async def get_memory_context(self) -> str:
        """
        Build the memory excerpt for a prompt.

        Returns:
            "# Main Memory" and "# Recent History" sections, or "" when
            there is nothing remembered or the files cannot be read
        """
        try:
            main_memory, recent = await asyncio.to_thread(self._read_context_sync)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Error getting memory context", e)
            return ""

        if not main_memory.strip() and not recent.strip():
            return ""

        return f"# Main Memory\n{main_memory.strip()}\n\n# Recent History\n{recent.strip()}".strip()

    def _read_context_sync(self) -> tuple[str, str]:
        return _read_if_exists(self.memory_file), _read_if_exists(self._get_daily_file())

    async def write_memory(self, content: str) -> None:
        """
        Replace MEMORY.md and note the write in today's log.

        Args:
            content: The new MEMORY.md contents
        """
        await asyncio.to_thread(self._write_memory_sync, content)
        logger.info("Memory written")

    def _write_memory_sync(self, content: str) -> None:
        self._ensure_directories()
        self.memory_file.write_text(content, encoding="utf-8")

        daily_file = self._get_daily_file()
        if not daily_file.exists():
            header = f"# Daily Log - {datetime.now().strftime('%Y-%m-%d')}\n\n"
            daily_file.write_text(header, encoding="utf-8")

        time_str = datetime.now().strftime("%H:%M")
        first_line = content.strip().split("\n", 1)[0]
        with daily_file.open("a", encoding="utf-8") as f:
            f.write(f"- [{time_str}] Memory updated: {first_line}\n")


def _read_if_exists(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8")
