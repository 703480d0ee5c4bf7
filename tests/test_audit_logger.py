"""Tests for the append-only audit trail."""

import csv
import json
import sqlite3

import pytest

from editorial.authorization import AuditAction, AuditLogger
from editorial.errors import AuditWriteFailure


@pytest.fixture
def audit(db):
    return AuditLogger(db)


def seed(audit):
    audit.record("editor-1", "editor@university.edu", AuditAction.PAPER_REVIEW, "paper", "p-1",
                 detail={"from": "SUBMITTED", "to": "UNDER_REVIEW"})
    audit.record("editor-1", "editor@university.edu", "paper.transition.accept", "paper", "p-1")
    audit.record("dean-1", "dean@university.edu", "user.role.change", "user", "reviewer-1",
                 detail={"from": "AUTHOR", "to": "REVIEWER"})
    audit.log_access_denied("author-1", "author@university.edu", "/dashboard/users", "insufficient_role",
                            required_roles=["EDITOR", "DEAN"])


def test_record_returns_increasing_ids(audit):
    first = audit.record("dean-1", "dean@university.edu", "user.activate", "user", "u-1")
    second = audit.record("dean-1", "dean@university.edu", "user.deactivate", "user", "u-1")
    assert second > first
    assert audit.count() == 2


def test_query_newest_first(audit):
    seed(audit)
    entries, total = audit.query()
    assert total == 4
    assert [e.action for e in entries] == [
        "access_denied",
        "user.role.change",
        "paper.transition.accept",
        "paper.transition.review",
    ]
    assert entries[-1].detail == {"from": "SUBMITTED", "to": "UNDER_REVIEW"}


def test_query_action_is_case_insensitive_substring(audit):
    seed(audit)
    entries, total = audit.query(action="TRANSITION")
    assert total == 2
    assert all("transition" in e.action for e in entries)


def test_query_search_covers_email_target_and_type(audit):
    seed(audit)
    assert audit.query(search="DEAN@")[1] == 1
    assert audit.query(search="p-1")[1] == 2
    assert audit.query(search="user")[1] == 2  # target_type 'user' and /dashboard/users
    assert audit.query(search="nothing-matches")[1] == 0


def test_query_pagination(audit):
    for i in range(25):
        audit.record("dean-1", "dean@university.edu", "user.activate", "user", f"u-{i}")
    page_one, total = audit.query(page=1, page_size=10)
    page_three, _ = audit.query(page=3, page_size=10)
    assert total == 25
    assert len(page_one) == 10
    assert len(page_three) == 5
    assert page_one[0].target_id == "u-24"


def test_entries_cannot_be_updated_or_deleted(db, audit):
    seed(audit)
    with pytest.raises(sqlite3.IntegrityError):
        db.connection.execute("UPDATE audit_log SET action = 'tampered'")
    with pytest.raises(sqlite3.IntegrityError):
        db.connection.execute("DELETE FROM audit_log")
    assert audit.count() == 4


def test_record_in_caller_transaction_rolls_back_with_it(db, audit):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            audit.record("dean-1", None, "paper.delete", "paper", "p-9", conn=conn)
            raise RuntimeError("delete failed")
    assert audit.count() == 0


def test_write_failure_raises(db, audit):
    db.close()
    with pytest.raises(AuditWriteFailure):
        audit.record("dean-1", None, "paper.delete", "paper", "p-9")


def test_denial_logging_is_non_fatal(db, audit):
    db.close()
    assert audit.log_access_denied("author-1", None, "/dashboard/system", "insufficient_role") is None


def test_target_history_oldest_first(audit):
    seed(audit)
    history = audit.get_target_history("paper", "p-1")
    assert [e.action for e in history] == ["paper.transition.review", "paper.transition.accept"]


def test_statistics(audit):
    seed(audit)
    stats = audit.get_statistics()
    assert stats["total_events"] == 4
    assert stats["by_action"]["paper.transition.review"] == 1
    assert stats["top_actors"]["editor@university.edu"] == 2
    assert stats["denied_count"] == 1
    assert stats["denied_percentage"] == pytest.approx(25.0)


def test_statistics_empty(audit):
    stats = audit.get_statistics()
    assert stats["total_events"] == 0
    assert stats["denied_percentage"] == 0


def test_export_json(audit, tmp_path):
    seed(audit)
    output = tmp_path / "audit.json"
    assert audit.export_events(str(output), fmt="json") == 4

    exported = json.loads(output.read_text(encoding="utf-8"))
    assert exported[0]["action"] == "paper.transition.review"
    assert exported[-1]["detail"]["reason"] == "insufficient_role"


def test_export_csv(audit, tmp_path):
    seed(audit)
    output = tmp_path / "audit.csv"
    assert audit.export_events(str(output), fmt="csv") == 4

    with output.open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 4
    assert rows[1]["action"] == "paper.transition.accept"
    assert rows[1]["detail"] == ""
    assert json.loads(rows[2]["detail"]) == {"from": "AUTHOR", "to": "REVIEWER"}


def test_export_rejects_unknown_format(audit, tmp_path):
    with pytest.raises(ValueError):
        audit.export_events(str(tmp_path / "audit.xml"), fmt="xml")
