"""Tests for role-based access control and denial auditing."""

import pytest

from conftest import ACTOR_BY_ROLE
from editorial.authorization import PolicyEngine, Role
from editorial.authorization.policy_engine import ALL_ROLES, DEAN_ONLY, EDITORS
from editorial.errors import (
    AccountDeactivated,
    AuditWriteFailure,
    AuthorizationUnavailable,
    InsufficientRole,
    StoreUnavailable,
    Unauthenticated,
)


@pytest.mark.parametrize("path,role,allowed", [
    ("/dashboard", Role.AUTHOR, True),
    ("/dashboard/profile", Role.AUTHOR, True),
    ("/dashboard/papers", Role.AUTHOR, False),
    ("/dashboard/papers", Role.REVIEWER, True),
    ("/dashboard/papers/review", Role.AUTHOR, False),
    ("/dashboard/papers/review/p-17", Role.REVIEWER, True),
    ("/dashboard/users", Role.REVIEWER, False),
    ("/dashboard/users", Role.EDITOR, True),
    ("/dashboard/settings", Role.EDITOR, False),
    ("/dashboard/settings", Role.DEAN, True),
    ("/dashboard/system", Role.DEAN, True),
    ("/dashboard/audit-logs", Role.EDITOR, False),
    ("/dashboard/audit-logs", Role.DEAN, True),
    ("/dashboard/archives/volumes/3", Role.EDITOR, True),
    ("/dashboard/archives/upload", Role.REVIEWER, False),
    ("paper.transition.review", Role.REVIEWER, True),
    ("paper.transition.publish", Role.REVIEWER, False),
    ("paper.transition.publish", Role.EDITOR, True),
    ("paper.delete", Role.EDITOR, False),
    ("paper.delete", Role.DEAN, True),
    ("user.role", Role.EDITOR, False),
])
def test_role_path_matrix(core, path, role, allowed):
    decision = core.policy.authorize(ACTOR_BY_ROLE[role], path)
    assert decision.allowed is allowed
    assert core.policy.can_access(role, path) is allowed
    if not allowed:
        assert decision.reason == "insufficient_role"


def test_longest_prefix_wins(core):
    prefix, roles = core.policy.match_rule("/dashboard/papers/review/42")
    assert prefix == "/dashboard/papers/review"
    assert Role.AUTHOR not in roles

    prefix, _ = core.policy.match_rule("/dashboard/anything")
    assert prefix == "/dashboard"


def test_prefix_match_is_literal(core):
    engine = PolicyEngine(core.users, rules={"/a": ALL_ROLES, "/a/b": DEAN_ONLY})
    assert engine.match_rule("/a/bc")[0] == "/a/b"
    assert engine.match_rule("/a/c")[0] == "/a"
    assert engine.match_rule("/b") is None


def test_unprotected_resource_open_to_active_accounts(core):
    decision = core.policy.authorize("author-1", "/public/journal")
    assert decision.allowed
    assert decision.required_roles == []
    assert decision.matched_prefix is None


def test_missing_actor_is_unauthenticated(core):
    decision = core.policy.authorize(None, "/dashboard")
    assert not decision.allowed
    assert decision.reason == "unauthenticated"

    with pytest.raises(Unauthenticated) as exc:
        core.policy.require(None, "/dashboard")
    assert exc.value.code == "unauthenticated"
    assert exc.value.status_code == 401


def test_unknown_account_is_no_account(core):
    with pytest.raises(Unauthenticated) as exc:
        core.policy.require("ghost", "/dashboard")
    assert exc.value.code == "no_account"


def test_deactivated_account_denied_even_on_open_routes(core):
    decision = core.policy.authorize("inactive-editor", "/dashboard")
    assert decision.reason == "deactivated"
    with pytest.raises(AccountDeactivated):
        core.policy.require("inactive-editor", "/public/journal")


def test_insufficient_role_lists_required_roles(core):
    with pytest.raises(InsufficientRole) as exc:
        core.policy.require("editor-1", "audit.read")
    assert exc.value.required_roles == ["DEAN"]
    assert exc.value.to_dict()["required_roles"] == ["DEAN"]

    with pytest.raises(InsufficientRole) as exc:
        core.policy.require("author-1", "/dashboard/papers")
    assert exc.value.required_roles == ["REVIEWER", "EDITOR", "DEAN"]


def test_denial_is_audited(core):
    core.policy.authorize("reviewer-1", "/dashboard/settings", ip_address="10.0.0.7")

    entries, total = core.audit.query(action="access_denied")
    assert total == 1
    entry = entries[0]
    assert entry.actor_id == "reviewer-1"
    assert entry.actor_email == "reviewer@university.edu"
    assert entry.target_id == "/dashboard/settings"
    assert entry.ip_address == "10.0.0.7"
    assert entry.detail["reason"] == "insufficient_role"
    assert entry.detail["required_roles"] == ["DEAN"]


def test_allow_is_not_audited(core):
    core.policy.authorize("dean-1", "/dashboard/settings")
    assert core.audit.count() == 0


def test_denial_context_is_recorded(core):
    core.policy.authorize("author-1", "paper.delete", context={"paper_id": "p-1"})
    entries, _ = core.audit.query(action="access_denied")
    assert entries[0].detail["paper_id"] == "p-1"


def test_store_down_denies_mutations(core, monkeypatch):
    def unavailable(user_id):
        raise StoreUnavailable("disk I/O error")

    monkeypatch.setattr(core.users, "get_user", unavailable)

    decision = core.policy.authorize("editor-1", "paper.transition.accept", mutating=True)
    assert not decision.allowed
    assert decision.reason == "store_unavailable"
    with pytest.raises(AuthorizationUnavailable) as exc:
        core.policy.require("editor-1", "paper.transition.accept", mutating=True)
    assert exc.value.status_code == 503


def test_store_down_allows_reads_degraded(core, monkeypatch):
    def unavailable(user_id):
        raise StoreUnavailable("disk I/O error")

    monkeypatch.setattr(core.users, "get_user", unavailable)

    decision = core.policy.authorize("author-1", "/dashboard/settings")
    assert decision.allowed
    assert decision.degraded
    assert decision.actor is None


def test_denial_survives_audit_failure(core, monkeypatch):
    def broken(**kwargs):
        raise AuditWriteFailure("audit table locked")

    monkeypatch.setattr(core.audit, "record", broken)
    decision = core.policy.authorize("author-1", "/dashboard/users")
    assert not decision.allowed
    assert decision.reason == "insufficient_role"


def test_explain_decision_does_not_audit(core):
    explanation = core.policy.explain_decision("author-1", "/dashboard/users")
    assert explanation["allowed"] is False
    assert explanation["reason"] == "insufficient_role"
    assert explanation["required_roles"] == ["EDITOR", "DEAN"]
    assert explanation["user"]["role"] == "AUTHOR"
    assert core.audit.count() == 0


def test_rules_can_be_added_and_removed(core):
    policy = core.policy
    policy.add_rule("/dashboard/reports", EDITORS)
    assert not policy.can_access(Role.AUTHOR, "/dashboard/reports/2025")
    lengths = [len(rule["prefix"]) for rule in policy.get_rules()]
    assert lengths == sorted(lengths, reverse=True)

    assert policy.remove_rule("/dashboard/reports")
    assert not policy.remove_rule("/dashboard/reports")
    assert policy.can_access(Role.AUTHOR, "/dashboard/reports/2025")


def test_empty_prefix_rejected(core):
    with pytest.raises(ValueError):
        core.policy.add_rule("", ALL_ROLES)
