import json

import pytest
from typer.testing import CliRunner

from txray_indexer.cli import app

runner = CliRunner()


def invoke(*args, **kw):
    return runner.invoke(app, ["--log-level", "CRITICAL", *args], **kw)


def last_json(res):
    return json.loads(res.output.strip().splitlines()[-1])


@pytest.fixture
def db_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "cli.sqlite"))
    monkeypatch.setenv("START_BLOCK", "42")
    return tmp_path


def test_health(db_env):
    res = invoke("health")
    assert res.exit_code == 0, res.output
    assert last_json(res)["index_cursor"]["last_block_number"] == 42


def test_reset_cursor(db_env):
    res = invoke("reset-cursor", "7", "--yes")
    assert res.exit_code == 0, res.output
    assert last_json(res)["last_block_number"] == 7
    assert last_json(invoke("health"))["index_cursor"]["last_block_number"] == 7


def test_reset_cursor_aborts_without_confirmation(db_env):
    res = invoke("reset-cursor", "7", input="n\n")
    assert res.exit_code != 0
    health = last_json(invoke("health"))
    assert health["index_cursor"]["last_block_number"] == 42


def test_refresh_on_empty_db(db_env):
    res = invoke("refresh")
    assert res.exit_code == 0, res.output
    assert last_json(res) == {"transactions": 0, "scopes": 1, "buckets": 0}
