"""Tests for the command line entry point."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from ralph_lsp_client.__main__ import ConsoleHost, parse_args, run
from ralph_lsp_client.launch import JAR_NAME
from ralph_lsp_client.settings import Settings


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.workspace == []
        assert args.settings == []
        assert args.mode is None
        assert args.verbose is False

    def test_repeatable_options(self):
        args = parse_args(["--workspace", "/a", "--workspace", "/b", "--settings", "s.yaml", "--mode", "development"])
        assert args.workspace == ["/a", "/b"]
        assert args.settings == ["s.yaml"]
        assert args.mode == "development"

    def test_rejects_unknown_mode(self):
        with pytest.raises(SystemExit):
            parse_args(["--mode", "release"])


class TestConsoleHost:
    @pytest.mark.asyncio
    async def test_prompt_goes_to_stderr(self, tmp_path, capsys):
        host = ConsoleHost([tmp_path], Settings(), tmp_path)
        assert await host.show_error_message("jar missing", "Open Settings") is None
        assert "jar missing" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_run_returns_when_jar_missing(tmp_path, capsys):
    args = parse_args(["--workspace", str(tmp_path), "--extension-dir", str(tmp_path)])
    assert await run(args) == 1
    assert "not found" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_run_returns_when_server_fails_to_start(tmp_path):
    (tmp_path / JAR_NAME).write_bytes(b"PK")
    args = parse_args(["--workspace", str(tmp_path), "--extension-dir", str(tmp_path)])
    with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("java"))):
        assert await asyncio.wait_for(run(args), timeout=5) == 1
