"""
tests/test_cli.py -- Tests for the admin command line in main.py.

The CLI reads DATABASE_URL through get_settings(); each test points it at a
temporary SQLite file and clears the settings cache around the call.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

import main
from auth.ledger import RefreshTokenLedger
from auth.models import Role
from auth.passwords import verify_password
from auth.store import UserStore
from core.config import get_settings


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest.fixture
def cli_store(db_url):
    store = UserStore(db_url)
    yield store
    store.close()


def test_create_admin(cli_store, capsys) -> None:
    code = main.main(["create-admin", "--email", "Boss@Example.com", "--username", "boss", "--password", "pw123456"])
    assert code == 0
    user = cli_store.get_by_email("boss@example.com")
    assert user.role is Role.admin
    assert verify_password("pw123456", user.password_hash)
    assert "Created admin" in capsys.readouterr().out


def test_create_admin_promotes_existing(cli_store) -> None:
    main.main(["create-admin", "--email", "a@b.com", "--username", "ann", "--password", "pw"])
    main.main(["set-role", "a@b.com", "user"])
    assert cli_store.get_by_email("a@b.com").role is Role.user

    code = main.main(["create-admin", "--email", "a@b.com", "--username", "ignored", "--password", "ignored"])
    assert code == 0
    user = cli_store.get_by_email("a@b.com")
    assert user.role is Role.admin
    assert user.username == "ann"
    assert len(cli_store.list_users()) == 1


def test_set_role_unknown_email(db_url, capsys) -> None:
    assert main.main(["set-role", "ghost@b.com", "admin"]) == 1
    assert "no user with email" in capsys.readouterr().out


def test_purge_tokens(cli_store, capsys) -> None:
    main.main(["create-admin", "--email", "a@b.com", "--username", "ann", "--password", "pw"])
    user = cli_store.get_by_email("a@b.com")
    ledger = RefreshTokenLedger(cli_store, ttl_seconds=3600)
    ledger.add(user, "a" * 128, ttl=timedelta(seconds=-10))
    ledger.add(user, "b" * 128)

    assert main.main(["purge-tokens"]) == 0
    assert "Purged 1 expired" in capsys.readouterr().out
    assert ledger.find_owner("a" * 128) is None
    assert ledger.find_owner("b" * 128) is not None


def test_no_command_prints_help(db_url) -> None:
    assert main.main([]) == 1


def test_create_admin_rejects_unusable_email(cli_store, capsys) -> None:
    """An address signin would refuse (no dot in the domain) is never stored."""
    code = main.main(["create-admin", "--email", "admin@localhost", "--username", "admin", "--password", "pw"])
    assert code == 1
    assert "Invalid email address" in capsys.readouterr().out
    assert cli_store.list_users() == []
