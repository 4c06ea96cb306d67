"""
Tests for the vittasami-admin command line.
"""

import pytest

from vittasami import cli
from vittasami.users import authenticate_user


@pytest.fixture
def cli_engine(monkeypatch, engine):
    monkeypatch.setattr(cli, "init_engine", lambda: engine)
    return engine


def fake_getpass(*answers):
    answers = list(answers)
    return lambda prompt="": answers.pop(0)


def test_generate_secret(capsys):
    assert cli.main(["generate-secret"]) == 0
    line = capsys.readouterr().out.splitlines()[0]
    key, value = line.split("=", 1)
    assert key == "JWT_SECRET_KEY"
    assert len(value) == 64


def test_init_db(cli_engine, capsys):
    assert cli.main(["init-db"]) == 0
    out = capsys.readouterr().out
    assert "custom_users" in out
    assert "appointments" in out


def test_create_super_admin(cli_engine, monkeypatch, capsys):
    monkeypatch.setattr(cli.getpass, "getpass", fake_getpass("long-enough-pw", "long-enough-pw"))
    code = cli.main(["create-super-admin", "--email", "Ops@Example.com",
                     "--first-name", "Ops", "--last-name", "Team"])
    assert code == 0
    assert "Super admin created: ops@example.com" in capsys.readouterr().out
    user = authenticate_user(cli_engine, "ops@example.com", "long-enough-pw")
    assert user["role"] == "super_admin"
    assert user["tenant_id"] is None


def test_create_super_admin_password_mismatch(cli_engine, monkeypatch, capsys):
    monkeypatch.setattr(cli.getpass, "getpass", fake_getpass("long-enough-pw", "different-pw"))
    code = cli.main(["create-super-admin", "--email", "ops@example.com",
                     "--first-name", "Ops", "--last-name", "Team"])
    assert code == 1
    assert "do not match" in capsys.readouterr().err


def test_create_super_admin_short_password(cli_engine, monkeypatch, capsys):
    monkeypatch.setattr(cli.getpass, "getpass", fake_getpass("short", "short"))
    code = cli.main(["create-super-admin", "--email", "ops@example.com",
                     "--first-name", "Ops", "--last-name", "Team"])
    assert code == 1
    assert "at least" in capsys.readouterr().err


def test_create_super_admin_duplicate(cli_engine, monkeypatch, capsys, super_admin):
    monkeypatch.setattr(cli.getpass, "getpass", fake_getpass("long-enough-pw", "long-enough-pw"))
    code = cli.main(["create-super-admin", "--email", super_admin["email"],
                     "--first-name", "Ops", "--last-name", "Team"])
    assert code == 1
    assert "User already exists" in capsys.readouterr().err


def test_requires_command():
    with pytest.raises(SystemExit):
        cli.main([])
