"""
命令行测试 - 用CliRunner驱动click命令，后端由假驱动替代
"""

import json
import logging
import os

import pytest
from click.testing import CliRunner

from dbweave.__main__ import cli
from dbweave.telemetry.logger import ROOT_LOGGER_NAME


REDIS_URL = "redis://cache.internal:6379/0"


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("DBWEAVE_"):
            monkeypatch.delenv(name)
    yield CliRunner()
    # CliRunner的stderr在调用结束后关闭，移除绑定它的处理器
    logging.getLogger(ROOT_LOGGER_NAME).handlers.clear()


def invoke(runner, *args):
    return runner.invoke(cli, ["--log-level", "ERROR", *args])


class TestCli:

    def test_backends(self, runner):
        result = invoke(runner, "backends")
        assert result.exit_code == 0
        assert result.output.split() == ["postgresql", "redis", "mongodb"]

    def test_ping_by_url(self, runner, redis_server):
        result = invoke(runner, "ping", "--url", REDIS_URL)
        assert result.exit_code == 0
        assert "OK" in result.output
        assert all(client.closed for client in redis_server.clients)

    def test_ping_connection_failure(self, runner, redis_server):
        redis_server.fail_ping = ConnectionError("Connection refused")
        result = invoke(runner, "ping", "--url", REDIS_URL)
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_query_json(self, runner, redis_server):
        redis_server.data["greeting"] = "hi"
        result = invoke(runner, "query", "GET ?", "greeting", "--url", REDIS_URL, "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["rows"] == [{"result": "hi"}]
        assert data["row_count"] == 1

    def test_query_table_output(self, runner, redis_server):
        redis_server.data["greeting"] = "[bold]hi[/bold]"
        result = invoke(runner, "query", "GET greeting", "--url", REDIS_URL)
        assert result.exit_code == 0
        assert "[bold]hi[/bold]" in result.output
        assert "1 row(s)" in result.output

    def test_query_error_is_reported(self, runner, redis_server):
        result = invoke(runner, "query", "FLUSHALL", "--url", REDIS_URL)
        assert result.exit_code == 1
        assert "[redis]" in result.output

    def test_describe_missing_table(self, runner, redis_server):
        result = invoke(runner, "describe", "order:*", "--url", REDIS_URL)
        assert result.exit_code == 1
        assert "Table 'order:*' not found" in result.output

    def test_tables(self, runner, redis_server):
        redis_server.data.update({"user:1": "a", "user:2": "b"})
        result = invoke(runner, "tables", "--url", REDIS_URL)
        assert result.exit_code == 0
        assert "user:*" in result.output
        assert "1 table(s)" in result.output

    @pytest.mark.parametrize("options", [[], ["--name", "cache", "--url", REDIS_URL]])
    def test_exactly_one_connection_option(self, runner, options):
        result = invoke(runner, "ping", *options)
        assert result.exit_code == 1
        assert "exactly one of --name or --url" in result.output

    def test_named_connection_from_config_file(self, runner, redis_server, tmp_path):
        config_file = tmp_path / "dbweave.yaml"
        config_file.write_text(
            "connections:\n"
            "  cache:\n"
            "    url: redis://cache.internal:6379/1\n",
            encoding="utf-8"
        )
        result = runner.invoke(cli, ["--config", str(config_file), "--log-level", "ERROR", "ping", "-n", "cache"])
        assert result.exit_code == 0
        assert redis_server.clients[0].url == "redis://cache.internal:6379/1"

    def test_unknown_named_connection(self, runner):
        result = invoke(runner, "ping", "--name", "reports")
        assert result.exit_code == 1
        assert "reports" in result.output

    def test_env_file_supplies_connection(self, runner, redis_server, tmp_path, monkeypatch):
        env_file = tmp_path / "local.env"
        env_file.write_text("DBWEAVE_CONNECTIONS__CACHE__URL=redis://cache.internal:6379/5\n", encoding="utf-8")
        monkeypatch.delenv("DBWEAVE_CONNECTIONS__CACHE__URL", raising=False)
        try:
            result = invoke(runner, "--env-file", str(env_file), "ping", "-n", "cache")
        finally:
            os.environ.pop("DBWEAVE_CONNECTIONS__CACHE__URL", None)
        assert result.exit_code == 0
        assert redis_server.clients[0].url == "redis://cache.internal:6379/5"
