"""Tests for ticket_ledger.config loading and helpers."""

import configparser
from pathlib import Path

import pytest

from ticket_ledger.config import (
    ServerConfig,
    _load_from_ini,
    config,
    get_config_status,
    load_config,
    print_config_summary,
    use_test_database,
)


@pytest.mark.unit
def test_defaults():
    cfg = ServerConfig()

    assert cfg.server.port == 8000
    assert cfg.rate_limit.transfers_per_window == 10
    assert cfg.rate_limit.transfer_window_seconds == 3600
    assert cfg.ledger.transfer_ttl_hours == 72
    assert cfg.ledger.batch_size == 400
    assert cfg.ledger.reconcile_event_limit == 50
    assert cfg.notifications.email_enabled is False
    assert cfg.security.proxy_key == ""


@pytest.mark.unit
def test_server_and_security_env_overrides(monkeypatch):
    monkeypatch.setenv("TICKET_HOST", "127.0.0.1")
    monkeypatch.setenv("TICKET_PORT", "9100")
    monkeypatch.setenv("TICKET_PRODUCTION", "true")
    monkeypatch.setenv("TICKET_PROXY_KEY", "edge-secret")

    cfg = load_config()

    assert cfg.server.host == "127.0.0.1"
    assert cfg.server.port == 9100
    assert cfg.is_production is True
    assert cfg.security.proxy_key == "edge-secret"


@pytest.mark.unit
def test_storage_and_logging_env_overrides(monkeypatch):
    monkeypatch.setenv("TICKET_DB_PATH", "/tmp/tickets.db")
    monkeypatch.setenv("TICKET_LOG_LEVEL", "debug")
    monkeypatch.setenv("TICKET_LOG_FORMAT", "JSON")
    monkeypatch.setenv("TICKET_RATE_LIMIT_ENABLED", "off")

    cfg = load_config()

    assert cfg.database.path == "/tmp/tickets.db"
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.format == "json"
    assert cfg.rate_limit.enabled is False


@pytest.mark.unit
def test_unknown_log_format_env_is_ignored(monkeypatch):
    monkeypatch.setenv("TICKET_LOG_FORMAT", "xml")

    assert load_config().logging.format in ("simple", "detailed", "json")


@pytest.mark.unit
def test_email_webhook_env_enables_email(monkeypatch):
    monkeypatch.setenv("TICKET_EMAIL_WEBHOOK_URL", "https://relay.example.org/send")
    monkeypatch.setenv("TICKET_CLAIM_URL_BASE", "https://tickets.example.org/claim")

    cfg = load_config()

    assert cfg.notifications.email_enabled is True
    assert cfg.notifications.email_webhook_url == "https://relay.example.org/send"
    assert cfg.notifications.claim_url_base == "https://tickets.example.org/claim"


@pytest.mark.unit
def test_ledger_ini_overrides():
    parser = configparser.ConfigParser()
    parser.read_string(
        """
        [ledger]
        max_transaction_attempts = 9
        retry_backoff_seconds = 0.2
        batch_size = 50
        transfer_ttl_hours = 24
        reconcile_event_limit = 5

        [rate_limit]
        enabled = no
        transfers_per_window = 3
        transfer_window_seconds = 60
        """
    )
    cfg = ServerConfig()

    _load_from_ini(parser, cfg)

    assert cfg.ledger.max_transaction_attempts == 9
    assert cfg.ledger.retry_backoff_seconds == 0.2
    assert cfg.ledger.batch_size == 50
    assert cfg.ledger.transfer_ttl_hours == 24
    assert cfg.ledger.reconcile_event_limit == 5
    assert cfg.rate_limit.enabled is False
    assert cfg.rate_limit.transfers_per_window == 3
    assert cfg.rate_limit.transfer_window_seconds == 60


@pytest.mark.unit
def test_notifications_and_security_ini_overrides():
    parser = configparser.ConfigParser()
    parser.read_string(
        """
        [security]
        production = yes
        proxy_key = from-ini
        docs_enabled = bogus

        [notifications]
        email_enabled = true
        email_webhook_url = https://relay.example.org/send
        email_from = Box Office <box@example.org>
        timeout_seconds = 2.5

        [logging]
        level = warning
        format = simple
        """
    )
    cfg = ServerConfig()

    _load_from_ini(parser, cfg)

    assert cfg.security.production is True
    assert cfg.security.proxy_key == "from-ini"
    assert cfg.security.docs_enabled == "auto"
    assert cfg.notifications.email_enabled is True
    assert cfg.notifications.email_from == "Box Office <box@example.org>"
    assert cfg.notifications.timeout_seconds == 2.5
    assert cfg.logging.level == "WARNING"
    assert cfg.logging.format == "simple"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("docs_enabled", "production", "expected"),
    [
        ("auto", False, True),
        ("auto", True, False),
        ("enabled", True, True),
        ("disabled", False, False),
    ],
)
def test_docs_should_be_enabled(docs_enabled, production, expected):
    cfg = ServerConfig()
    cfg.security.docs_enabled = docs_enabled
    cfg.security.production = production

    assert cfg.docs_should_be_enabled is expected


@pytest.mark.unit
def test_use_test_database_restores_path(tmp_path):
    original = config.database.path

    with use_test_database(tmp_path / "scratch.db") as path:
        assert config.database.path == str(path)
        assert path == Path(tmp_path / "scratch.db")

    assert config.database.path == original


@pytest.mark.unit
def test_config_status_reports_proxy_key():
    original = config.security.proxy_key
    config.security.proxy_key = "k"
    try:
        status = get_config_status()
    finally:
        config.security.proxy_key = original

    assert status["proxy_key_required"] is True
    assert "config_file_path" in status


@pytest.mark.unit
def test_print_config_summary(capsys):
    print_config_summary()

    output = capsys.readouterr().out
    assert "TICKET LEDGER CONFIGURATION" in output
    assert f"Batch size:  {config.ledger.batch_size}" in output
