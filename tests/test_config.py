from pathlib import Path

import pytest

from netledger.config import get_config, load_config, _reset_config_for_tests
from netledger.errors import ConfigError


def test_defaults():
    config = load_config()

    assert config.db_url is None
    assert config.db_path == Path(".netledger.sqlite")
    assert config.default_mime_type == "text/markdown"
    assert config.diff_context_lines == 3
    assert not config.is_postgres


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("NETLEDGER_DB_PATH", str(tmp_path / "ledger.sqlite"))
    monkeypatch.setenv("NETLEDGER_LOG_JSON", "true")
    monkeypatch.setenv("NETLEDGER_DIFF_CONTEXT_LINES", "5")
    monkeypatch.setenv("NETLEDGER_SYSTEM_AUTHOR", "ledger-bot")

    config = load_config()

    assert config.db_path == tmp_path / "ledger.sqlite"
    assert config.log_json is True
    assert config.diff_context_lines == 5
    assert config.system_author == "ledger-bot"


def test_postgres_url(monkeypatch):
    monkeypatch.setenv("NETLEDGER_DB_URL", "postgresql://localhost/netledger")
    assert load_config().is_postgres


def test_bad_integer_raises_config_error(monkeypatch):
    monkeypatch.setenv("NETLEDGER_DB_POOL_SIZE", "many")
    with pytest.raises(ConfigError):
        load_config()


def test_singleton_reset(monkeypatch):
    first = get_config()
    assert get_config() is first

    monkeypatch.setenv("NETLEDGER_SYSTEM_AUTHOR", "someone")
    _reset_config_for_tests()
    assert get_config().system_author == "someone"
