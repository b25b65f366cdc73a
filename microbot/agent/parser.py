"""
Tool Call Parser
================

Extracts skill invocations from free-form model text.

Models are not given a function-calling API; they are asked to write calls
into their reply. Two notations are recognized, tried in a fixed order. The
first one that finds anything wins and the other is not consulted.

1. Tagged block:

       <data-analyzer>
         <filePath>employees.csv</filePath>
         <query>SELECT COUNT(*) FROM employees</query>
       </data-analyzer>

   Each nested tag becomes a parameter. With no nested tags the whole inner
   text becomes the "query" parameter:

       <web-search>python asyncio locks</web-search>

   Only one level of nesting is understood.

2. Templated JSON:

       ${data-analyzer.query}
       ```json
       {"sql": "SELECT * FROM employees", "filePath": "employees.csv"}
       ```

   The placeholder may be ${name}, ${name.method} or ${name:method}; the
   method is accepted and ignored. The "sql" field is renamed to "query";
   every other field is converted to text.

Finding no calls is a normal result (the reply is a final answer), so the
parser never raises. A broken JSON block is logged and skipped; the other
calls in the same text are still returned.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from microbot.utils.logger import Logger, truncate

logger = Logger("Parser")

_TAG_PAIR = re.compile(r"<([a-zA-Z0-9-]+)>([\s\S]*?)</\1>")

_TEMPLATE_CALL = re.compile(
    r"\$\{([a-zA-Z0-9-]+)(?:[.:]([a-zA-Z0-9-]+))?\}[\s\S]*?```json\s*([\s\S]*?)\s*```"
)

# Field renamed to "query" in templated-JSON calls
RESERVED_QUERY_FIELD = "sql"


@dataclass(frozen=True)
class ToolCall:
    """
    A skill invocation found in model output.

    Attributes:
        name: Skill name
        params: Parameter name -> text value, in the order they appeared
    """
    name: str
    params: dict[str, str] = field(default_factory=dict)


def _to_text(value: Any) -> str:
    """Coerce a JSON value to the text form a skill receives."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, bool)) or value is None:
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class ToolCallParser:
    """
    Two-grammar tool call extractor.

    Example:
        parser = ToolCallParser()

        calls = parser.parse("<greet><name>Ana</name></greet>")
        # [ToolCall(name="greet", params={"name": "Ana"})]

        parser.parse("Just a normal answer.")
        # []
    """

    def parse(self, text: str | None) -> list[ToolCall]:
        """
        Extract tool calls from one block of model output.

        Args:
            text: Raw model reply

        Returns:
            Calls in document order; empty when there are none
        """
        if not text:
            return []

        calls = self.parse_tagged(text)
        if calls:
            return calls

        return self.parse_templated(text)

    def parse_tagged(self, text: str) -> list[ToolCall]:
        """Grammar 1: <skill><param>value</param></skill> blocks."""
        calls = []

        for match in _TAG_PAIR.finditer(text):
            name, inner = match.group(1), match.group(2)

            params: dict[str, str] = {}
            for param in _TAG_PAIR.finditer(inner):
                params[param.group(1)] = param.group(2).strip()

            if not params:
                params["query"] = inner.strip()

            calls.append(ToolCall(name=name, params=params))

        return calls

    def parse_templated(self, text: str) -> list[ToolCall]:
        """Grammar 2: ${skill} placeholder followed by a ```json block."""
        calls = []

        for match in _TEMPLATE_CALL.finditer(text):
            name, body = match.group(1), match.group(3)

            try:
                payload = json.loads(body)
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse JSON for tool call {name}: {e}")
                continue

            if not isinstance(payload, dict):
                logger.warning(
                    f"Ignoring tool call {name}: expected a JSON object, got {truncate(body, 60)}"
                )
                continue

            params: dict[str, str] = {}
            if RESERVED_QUERY_FIELD in payload:
                params["query"] = _to_text(payload[RESERVED_QUERY_FIELD])
            for key, value in payload.items():
                if key != RESERVED_QUERY_FIELD:
                    params[key] = _to_text(value)

            calls.append(ToolCall(name=name, params=params))

        return calls


_default_parser = ToolCallParser()


def parse_tool_calls(text: str | None) -> list[ToolCall]:
    """Parse with a shared ToolCallParser instance."""
    return _default_parser.parse(text)
