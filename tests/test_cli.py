import json
import logging

import pytest
from click.testing import CliRunner

from netledger import __version__
from netledger.cli.main import cli
from netledger.logging import EXIT_RUNTIME_ERROR


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def invoke(tmp_path):
    runner = CliRunner()
    db_path = str(tmp_path / "cli.sqlite")

    def _invoke(*args, input=None):
        return runner.invoke(cli, ["--db-path", db_path, "--json", *args], obj={}, input=input)

    return _invoke


def parse(result):
    return json.loads(result.stdout)


def test_version():
    result = CliRunner().invoke(cli, ["version"], obj={})
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_db(invoke, tmp_path):
    result = invoke("init-db")

    assert result.exit_code == 0, result.output
    assert parse(result) == {"success": True, "database": str(tmp_path / "cli.sqlite")}


def test_network_create_and_show(invoke):
    created = invoke("network", "create", "Quarterly report", "--id", "net-1")
    assert created.exit_code == 0, created.output
    assert parse(created)["created"] is True

    again = invoke("network", "create", "Other", "--id", "net-1")
    assert parse(again)["created"] is False

    shown = parse(invoke("network", "show", "net-1"))
    assert shown["stage"] == "initialized"
    assert shown["description"] == "Quarterly report"
    assert shown["summary"]["total"] == 0

    assert parse(invoke("network", "tasks", "net-1")) == []


def test_show_unknown_network(invoke):
    result = invoke("network", "show", "missing")
    assert parse(result) == {"success": False, "error": "network_not_found"}


def test_task_discovery(invoke):
    invoke("network", "create", "Report", "--id", "net-1")

    assert parse(invoke("network", "tasks", "net-1", "--type", "research")) == []
    assert parse(invoke("network", "related", "net-1")) == []

    missing = invoke("network", "related", "missing")
    assert missing.exit_code == EXIT_RUNTIME_ERROR
    assert parse(missing)["success"] is False


def test_directives(invoke):
    invoke("network", "create", "Report", "--id", "net-1")

    added = parse(invoke("directive", "add", "net-1", "Add a summary", "--type", "task_addition"))
    assert added["status"] == "pending"

    updated = parse(invoke("directive", "set-status", added["directive_id"], "applied"))
    assert updated["status"] == "applied"
    assert parse(invoke("directive", "list", "net-1", "--pending")) == []
    assert len(parse(invoke("directive", "list", "net-1"))) == 1


def test_directive_for_unknown_network(invoke):
    result = invoke("directive", "add", "missing", "Hello")

    assert result.exit_code == EXIT_RUNTIME_ERROR
    assert parse(result)["success"] is False


def test_content_put_resolve_get(invoke):
    stored = parse(invoke("content", "put", "--type", "text/plain", input="hello world"))
    assert stored["reference"] == "ref:" + stored["hash"][:12]

    resolved = parse(invoke("content", "resolve", stored["reference"]))
    assert resolved["hash"] == stored["hash"]
    assert resolved["size"] == 11

    fetched = parse(invoke("content", "get", stored["reference"]))
    assert fetched["content"] == "hello world"


def test_content_unknown_ref(invoke):
    result = invoke("content", "get", "ref:000000000000")
    assert result.exit_code == EXIT_RUNTIME_ERROR


def test_artifact_workflow(invoke):
    created = parse(invoke("artifact", "create", "job-1", "--mime-type", "text/plain"))
    artifact_id = created["artifact_id"]

    first = parse(invoke("artifact", "commit", artifact_id, "-m", "first", input="a\nb\nc"))
    second = parse(invoke("artifact", "commit", artifact_id, "-m", "second", input="a\nB\nc"))

    log = parse(invoke("artifact", "log", artifact_id))
    assert [entry["message"] for entry in log][:2] == ["second", "first"]

    diff = parse(invoke("artifact", "diff", first["revision_id"], second["revision_id"]))
    assert diff["stats"] == {"additions": 1, "deletions": 1, "changes": 1}

    excerpt = parse(invoke("artifact", "cat", artifact_id, "--lines", "2-3"))
    assert excerpt["content"] == "B\nc"


def test_artifact_cat_rejects_bad_range(invoke):
    created = parse(invoke("artifact", "create", "job-1"))
    result = invoke("artifact", "cat", created["artifact_id"], "--lines", "two")
    assert result.exit_code == 2


