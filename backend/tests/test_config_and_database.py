import pytest

from receipt_intake.core import database
from receipt_intake.core.config import Settings, get_allowed_senders, normalize_sender


def test_normalize_sender_extracts_address():
    assert normalize_sender("Corner Market <Receipts@Example.COM>") == "receipts@example.com"
    assert normalize_sender("  a@b.com ") == "a@b.com"
    assert normalize_sender(None) == ""


def test_allowed_senders_parsing():
    cfg = Settings(EMAIL_ALLOWED_SENDERS=" A@x.com, ,b@y.com ")
    assert get_allowed_senders(cfg) == frozenset({"a@x.com", "b@y.com"})
    assert get_allowed_senders(Settings(EMAIL_ALLOWED_SENDERS="")) == frozenset()


def test_resolve_database_url_normalizes_drivers():
    assert database.resolve_database_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
    assert database.resolve_database_url("postgres://u:p@h:5432/db") == "postgresql+psycopg://u:p@h:5432/db"
    assert database.resolve_database_url("postgresql+asyncpg://u:p@h/db") == "postgresql+psycopg://u:p@h/db"


def test_resolve_database_url_fallback(monkeypatch):
    monkeypatch.setattr(database.settings, "DATABASE_URL", None)
    monkeypatch.setattr(database.settings, "DB_DEV_FALLBACK_SQLITE", False)
    with pytest.raises(RuntimeError):
        database.resolve_database_url()
    monkeypatch.setattr(database.settings, "DB_DEV_FALLBACK_SQLITE", True)
    assert database.resolve_database_url() == database.SQLITE_DEV_URL


def test_db_debug_info_masks_password(monkeypatch):
    monkeypatch.setattr(database.settings, "DATABASE_URL", "postgresql://user:secret@db:5432/app")
    info = database.get_db_debug_info()
    assert info["drivername"] == "postgresql+psycopg"
    assert "secret" not in info["url"]
