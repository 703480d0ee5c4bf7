"""Tests for the administrative command line."""

import json

import pytest

from editorial.authorization import AuditLogger, Role, UserManager
from editorial.cli import main
from editorial.storage import Database


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


def run(db_path, *args):
    return main(["--db", db_path, "--log-level", "WARNING", *args])


def test_init_and_create_user(db_path, capsys):
    assert run(db_path, "init-db") == 0
    assert run(db_path, "create-user", "dean-1", "Dean@University.edu", "--name", "Dana", "--role", "DEAN") == 0
    assert "Created DEAN dean-1 <dean@university.edu>" in capsys.readouterr().out

    with Database(db_path) as db:
        assert UserManager(db).get_user("dean-1").role == Role.DEAN


def test_duplicate_user_is_an_error(db_path, capsys):
    run(db_path, "create-user", "author-1", "author@university.edu")
    assert run(db_path, "create-user", "author-1", "author@university.edu") == 1
    assert "already exists" in capsys.readouterr().err


def test_set_role_is_audited(db_path, capsys):
    run(db_path, "create-user", "user-1", "user@university.edu")
    assert run(db_path, "set-role", "user-1", "EDITOR") == 0
    assert "AUTHOR -> EDITOR" in capsys.readouterr().out

    with Database(db_path) as db:
        assert UserManager(db).get_user("user-1").role == Role.EDITOR
        entries, _ = AuditLogger(db).query(action="user.role.change")
        assert entries[0].actor_id == "system"
        assert entries[0].detail["source"] == "cli"


def test_set_role_unknown_user(db_path):
    run(db_path, "init-db")
    assert run(db_path, "set-role", "ghost", "EDITOR") == 1


def test_audit_export_and_summary(db_path, tmp_path, capsys):
    run(db_path, "create-user", "user-1", "user@university.edu")
    run(db_path, "set-role", "user-1", "REVIEWER")

    output = tmp_path / "audit.json"
    assert run(db_path, "audit-export", "--output", str(output)) == 0
    assert json.loads(output.read_text(encoding="utf-8"))[0]["action"] == "user.role.change"

    capsys.readouterr()
    assert run(db_path, "audit-export", "--summary") == 0
    out = capsys.readouterr().out
    assert "AUDIT LOG SUMMARY" in out
    assert "Total Entries: 1" in out
    assert "user.role.change: 1 (100.0%)" in out


def test_audit_export_requires_output(db_path):
    assert run(db_path, "audit-export") == 2


def test_doi_parse(db_path, capsys):
    assert run(db_path, "doi-parse", "10.ISUFST.CICT/2025.00042") == 0
    assert "year=2025 serial=42" in capsys.readouterr().out
    assert run(db_path, "doi-parse", "10.ISUFST.CICT/2025.42") == 1
    assert run(db_path, "doi-parse", "10.UNIV.PHYS/2030.00001", "--org", "UNIV", "--dept", "PHYS") == 0
