"""
Skill Dispatcher
================

Executes skill calls parsed from model output and returns their result as
text.

Dispatch Rules:
    1. The name must exist in the SkillCatalog, otherwise the result is
       "Error: Skill <name> not found".
    2. If a native handler is registered for the name, it runs under the
       dispatcher's timeout.
    3. Otherwise the call falls through to a placeholder result that echoes
       the parameters back.

The dispatcher never raises. Unknown skills, handler exceptions, timeouts
and bad process output all come back as text, because the loop feeds the
result to the model and lets it decide what to do next.

Built-in Handlers:
    data-analyzer - runs the `sqltools` CLI against a CSV/JSON file
"""

import asyncio
import json
import re
from pathlib import PurePath
from typing import Awaitable, Callable

from microbot.skills.catalog import SkillCatalog
from microbot.utils.logger import Logger, truncate

logger = Logger("Dispatcher")

SkillHandler = Callable[[dict[str, str]], Awaitable[str]]

DEFAULT_TOOL_TIMEOUT = 30.0


class SkillDispatcher:
    """
    Runs named skills against their native handlers.

    Handlers are plain async callables keyed by skill name, so skill
    implementations can live anywhere and be plugged in at startup.

    Example:
        dispatcher = SkillDispatcher(catalog, timeout=30)

        async def weather(params: dict[str, str]) -> str:
            return f"Sunny in {params.get('location', 'somewhere')}"

        dispatcher.register("weather", weather)
        result = await dispatcher.execute("weather", {"location": "Lisbon"})
    """

    def __init__(
        self,
        catalog: SkillCatalog,
        handlers: dict[str, SkillHandler] | None = None,
        timeout: float = DEFAULT_TOOL_TIMEOUT
    ):
        """
        Args:
            catalog: Catalog used to decide whether a skill exists
            handlers: Optional initial name -> handler mapping
            timeout: Seconds allowed for one handler call
        """
        self.catalog = catalog
        self.timeout = timeout
        self._handlers: dict[str, SkillHandler] = dict(handlers or {})

    def register(self, name: str, handler: SkillHandler) -> None:
        """
        Register a native handler for a skill.

        Raises:
            ValueError: If a handler with this name already exists
        """
        if name in self._handlers:
            raise ValueError(f"Handler for skill '{name}' is already registered")
        self._handlers[name] = handler
        logger.debug(f"Registered handler: {name}")

    async def execute(self, name: str, params: dict[str, str]) -> str:
        """
        Execute a skill call.

        Args:
            name: Skill name
            params: Parameters parsed from the model output

        Returns:
            The result text, or an error description
        """
        logger.info(f"Executing skill: {name}", {"params": truncate(json.dumps(params, ensure_ascii=False), 200)})

        skill = self.catalog.get(name)
        if skill is None:
            logger.warning(f"Skill {name} not found")
            return f"Error: Skill {name} not found"

        handler = self._handlers.get(name)
        if handler is None:
            return f"Skill {name} executed with params: {json.dumps(params, ensure_ascii=False)}"

        try:
            result = await asyncio.wait_for(handler(params), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Skill {name} timed out after {self.timeout:g}s")
            return f"Error: Skill {name} timed out after {self.timeout:g}s"
        except Exception as e:
            logger.error(f"Error executing skill {name}", e)
            return f"Error executing skill {name}: {e}"

        result = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False, default=str)
        logger.info(f"Skill {name} result: {truncate(result, 200)}")
        return result


# ==============================================================================
# Built-in: data-analyzer
# ==============================================================================

DATA_ANALYZER = "data-analyzer"
DEFAULT_DATA_FILE = "test-data.json"

_FROM_CLAUSE = re.compile(r"\bFROM\s+([\w-]+(?:\.\w+)?)", re.IGNORECASE)
_NON_IDENTIFIER = re.compile(r"[^a-zA-Z0-9_]")


def infer_table_name(path: str) -> str:
    """
    Derive a SQL table name from a data file path.

    The base name is taken (either path separator), the extension stripped,
    and any character outside [A-Za-z0-9_] replaced with an underscore:

        data/test-data.csv  ->  test_data
    """
    base = re.split(r"[\\/]", path)[-1] or path
    stem = PurePath(base).stem if "." in base.lstrip(".") else base
    return _NON_IDENTIFIER.sub("_", stem)


def rewrite_from_clause(sql: str, table: str) -> str:
    """Point the first FROM clause at `table` (models tend to write the file name)."""
    return _FROM_CLAUSE.sub(f"FROM {table}", sql, count=1)


def format_cli_output(output: str) -> str:
    """
    Pretty-print JSON output from the analyzer.

    Objects and arrays of objects are indented; arrays of plain values stay
    on one line; anything that is not JSON is returned as-is.
    """
    try:
        parsed = json.loads(output)
    except json.JSONDecodeError:
        return output

    if isinstance(parsed, list) and parsed:
        if isinstance(parsed[0], dict):
            return json.dumps(parsed, indent=2, ensure_ascii=False)
        return json.dumps(parsed, ensure_ascii=False)
    if isinstance(parsed, dict):
        return json.dumps(parsed, indent=2, ensure_ascii=False)
    return output


class DataAnalyzerSkill:
    """
    Native handler for the data-analyzer skill.

    Runs `sqltools <file> --table <table> --query <sql>` as a subprocess
    (no shell) and returns its output.

    Params:
        query / sql: The SQL text
        filePath / path: Data file (defaults to test-data.json)
    """

    def __init__(self, executable: str = "sqltools", cwd: str | None = None):
        self.executable = executable
        self.cwd = cwd

    def build_command(self, params: dict[str, str]) -> list[str]:
        sql = params.get("query") or params.get("sql") or ""
        path = params.get("filePath") or params.get("path") or DEFAULT_DATA_FILE

        table = infer_table_name(path)
        processed_sql = rewrite_from_clause(sql, table)

        return [self.executable, path, "--table", table, "--query", processed_sql]

    async def __call__(self, params: dict[str, str]) -> str:
        cmd = self.build_command(params)
        logger.info(f"Running command: {truncate(' '.join(cmd), 200)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except FileNotFoundError:
            return f"Error executing {self.executable}: command not found"
        except OSError as e:
            return f"Error executing {self.executable}: {e}"

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # The dispatcher timeout cancels us; don't leave the process behind
            if process.returncode is None:
                process.kill()
                await asyncio.shield(process.wait())
            raise

        err_text = stderr.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            return f"Error executing {self.executable} (exit {process.returncode}): {err_text or 'no error output'}"
        if err_text:
            logger.warning(f"{self.executable} stderr: {truncate(err_text, 200)}")

        result = stdout.decode("utf-8", errors="replace").strip()
        if not result:
            return "No results returned"
        return format_cli_output(result)


def register_builtin_handlers(dispatcher: SkillDispatcher) -> None:
    """Install the handlers that ship with microbot."""
    dispatcher.register(DATA_ANALYZER, DataAnalyzerSkill())
