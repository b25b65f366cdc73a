"""Tests for skill dispatch and the data-analyzer handler."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from microbot.agent.dispatcher import (
    DATA_ANALYZER,
    DataAnalyzerSkill,
    SkillDispatcher,
    format_cli_output,
    infer_table_name,
    register_builtin_handlers,
    rewrite_from_clause,
)
from microbot.skills.catalog import SkillCatalog, SkillDescriptor


class TestSkillDispatcher:
    async def test_unknown_skill(self, catalog: SkillCatalog) -> None:
        dispatcher = SkillDispatcher(catalog)

        assert await dispatcher.execute("nope", {}) == "Error: Skill nope not found"

    async def test_placeholder_without_handler(self, catalog: SkillCatalog) -> None:
        dispatcher = SkillDispatcher(catalog)

        result = await dispatcher.execute("greet", {"name": "Ana"})

        assert result == 'Skill greet executed with params: {"name": "Ana"}'

    async def test_handler_result(self, catalog: SkillCatalog) -> None:
        async def greet(params: dict[str, str]) -> str:
            return f"Hello, {params['name']}!"

        dispatcher = SkillDispatcher(catalog, handlers={"greet": greet})

        assert await dispatcher.execute("greet", {"name": "Ana"}) == "Hello, Ana!"

    async def test_non_text_result_is_json(self, catalog: SkillCatalog) -> None:
        async def lookup(params: dict[str, str]) -> dict:
            return {"id": params["id"], "found": True}

        dispatcher = SkillDispatcher(catalog, handlers={"lookup": lookup})

        assert await dispatcher.execute("lookup", {"id": "7"}) == '{"id": "7", "found": true}'

    async def test_handler_exception_becomes_text(self, catalog: SkillCatalog) -> None:
        async def broken(params: dict[str, str]) -> str:
            raise RuntimeError("disk on fire")

        dispatcher = SkillDispatcher(catalog, handlers={"greet": broken})

        assert await dispatcher.execute("greet", {}) == "Error executing skill greet: disk on fire"

    async def test_timeout(self, catalog: SkillCatalog) -> None:
        async def slow(params: dict[str, str]) -> str:
            await asyncio.sleep(10)
            return "late"

        dispatcher = SkillDispatcher(catalog, handlers={"greet": slow}, timeout=0.05)

        assert await dispatcher.execute("greet", {}) == "Error: Skill greet timed out after 0.05s"

    def test_duplicate_registration(self, catalog: SkillCatalog) -> None:
        dispatcher = SkillDispatcher(catalog)
        register_builtin_handlers(dispatcher)

        with pytest.raises(ValueError):
            register_builtin_handlers(dispatcher)


class TestDataAnalyzerHelpers:
    @pytest.mark.parametrize("path,expected", [
        ("data/test-data.csv", "test_data"),
        ("employees.json", "employees"),
        ("C:\\data\\sales 2024.csv", "sales_2024"),
        ("plain", "plain"),
    ])
    def test_infer_table_name(self, path: str, expected: str) -> None:
        assert infer_table_name(path) == expected

    def test_rewrite_first_from_clause_only(self) -> None:
        sql = "SELECT * FROM employees.csv WHERE id IN (SELECT id FROM other)"

        assert rewrite_from_clause(sql, "employees") == (
            "SELECT * FROM employees WHERE id IN (SELECT id FROM other)"
        )

    def test_rewrite_is_case_insensitive(self) -> None:
        assert rewrite_from_clause("select * from test-data.json", "test_data") == (
            "select * FROM test_data"
        )

    def test_format_cli_output(self) -> None:
        assert format_cli_output('[{"a":1}]') == '[\n  {\n    "a": 1\n  }\n]'
        assert format_cli_output("[1,2]") == "[1, 2]"
        assert format_cli_output("count: 3") == "count: 3"

    def test_build_command(self) -> None:
        cmd = DataAnalyzerSkill().build_command({
            "query": "SELECT COUNT(*) FROM employees.csv",
            "filePath": "data/employees.csv",
        })

        assert cmd == [
            "sqltools", "data/employees.csv",
            "--table", "employees",
            "--query", "SELECT COUNT(*) FROM employees",
        ]

    def test_default_data_file(self) -> None:
        cmd = DataAnalyzerSkill().build_command({"sql": "SELECT 1"})

        assert cmd[1] == "test-data.json"
        assert cmd[3] == "test_data"


def _process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.returncode = returncode
    return process


class TestDataAnalyzerSkill:
    async def test_success(self) -> None:
        process = _process(stdout=b'[{"count": 3}]')

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as spawn:
            result = await DataAnalyzerSkill()({"query": "SELECT COUNT(*) FROM x.csv", "filePath": "x.csv"})

        assert '"count": 3' in result
        args = spawn.call_args.args
        assert args[:4] == ("sqltools", "x.csv", "--table", "x")

    async def test_empty_output(self) -> None:
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_process())):
            assert await DataAnalyzerSkill()({"query": "SELECT 1"}) == "No results returned"

    async def test_non_zero_exit(self) -> None:
        process = _process(stderr=b"no such table", returncode=2)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await DataAnalyzerSkill()({"query": "SELECT 1"})

        assert result == "Error executing sqltools (exit 2): no such table"

    async def test_missing_executable(self) -> None:
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
            result = await DataAnalyzerSkill()({"query": "SELECT 1"})

        assert result == "Error executing sqltools: command not found"

    async def test_dispatched_through_catalog(self) -> None:
        catalog = SkillCatalog({DATA_ANALYZER: SkillDescriptor(name=DATA_ANALYZER)})
        dispatcher = SkillDispatcher(catalog)
        register_builtin_handlers(dispatcher)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_process(stdout=b"42"))):
            result = await dispatcher.execute(DATA_ANALYZER, {"query": "SELECT 42"})

        assert result == "42"

    async def test_timed_out_process_is_killed_and_reaped(self) -> None:
        async def hang():
            await asyncio.sleep(10)

        process = _process()
        process.returncode = None
        process.communicate = hang
        process.wait = AsyncMock(return_value=-9)

        catalog = SkillCatalog({DATA_ANALYZER: SkillDescriptor(name=DATA_ANALYZER)})
        dispatcher = SkillDispatcher(catalog, timeout=0.05)
        register_builtin_handlers(dispatcher)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await dispatcher.execute(DATA_ANALYZER, {"query": "SELECT 1"})

        assert result == "Error: Skill data-analyzer timed out after 0.05s"
        process.kill.assert_called_once()
        process.wait.assert_awaited_once()
