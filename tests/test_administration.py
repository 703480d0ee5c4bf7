"""Tests for role changes, account activation and invites."""

from datetime import timedelta

import pytest

from conftest import audit_actions
from editorial.authorization import INVITE_TTL, InviteStatus, Role
from editorial.errors import InsufficientRole, NotFound, ValidationError


def test_dean_changes_role(core):
    updated = core.admin.change_role("dean-1", "author-2", "REVIEWER")
    assert updated.role == Role.REVIEWER

    entries, _ = core.audit.query(action="user.role")
    assert entries[0].detail == {"from": "AUTHOR", "to": "REVIEWER"}
    assert entries[0].target_id == "author-2"


def test_only_dean_changes_roles(core):
    with pytest.raises(InsufficientRole):
        core.admin.change_role("editor-1", "author-2", Role.REVIEWER)
    assert core.users.get_user("author-2").role == Role.AUTHOR
    assert audit_actions(core) == ["access_denied"]


def test_dean_cannot_change_own_role(core):
    with pytest.raises(ValidationError) as exc:
        core.admin.change_role("dean-1", "dean-1", Role.EDITOR)
    assert exc.value.code == "self_change"
    assert audit_actions(core) == ["user.role.change.blocked"]


def test_dean_cannot_be_demoted(core):
    core.users.create_user("dean-2", "second.dean@university.edu", role=Role.DEAN)
    with pytest.raises(ValidationError) as exc:
        core.admin.change_role("dean-1", "dean-2", Role.EDITOR)
    assert exc.value.code == "protected_account"
    assert core.users.get_user("dean-2").role == Role.DEAN


def test_unchanged_role_writes_nothing(core):
    core.admin.change_role("dean-1", "editor-1", Role.EDITOR)
    assert core.audit.count() == 0


def test_unknown_target(core):
    with pytest.raises(NotFound):
        core.admin.change_role("dean-1", "ghost", Role.EDITOR)
    with pytest.raises(ValidationError):
        core.admin.change_role("dean-1", "author-2", "PRESIDENT")


def test_editor_deactivates_account(core):
    updated = core.admin.set_active("editor-1", "author-2", False)
    assert not updated.is_active
    assert audit_actions(core) == ["user.deactivate"]

    reactivated = core.admin.toggle_active("editor-1", "author-2")
    assert reactivated.is_active
    assert audit_actions(core)[-1] == "user.activate"


def test_toggle_unknown_account(core):
    with pytest.raises(NotFound):
        core.admin.toggle_active("editor-1", "ghost")
    assert audit_actions(core) == ["user.deactivate.blocked"]

    with pytest.raises(InsufficientRole):
        core.admin.toggle_active("author-1", "author-2")
    assert audit_actions(core)[-1] == "access_denied"
    assert core.audit.count() == 2


def test_deactivation_rules(core):
    with pytest.raises(ValidationError) as exc:
        core.admin.set_active("editor-1", "editor-1", False)
    assert exc.value.code == "self_change"

    with pytest.raises(ValidationError) as exc:
        core.admin.set_active("editor-1", "dean-1", False)
    assert exc.value.code == "protected_account"

    with pytest.raises(InsufficientRole):
        core.admin.set_active("reviewer-1", "author-2", False)


def test_deactivated_account_loses_access(core, paper):
    core.admin.set_active("dean-1", "editor-2", False)
    decision = core.policy.authorize("editor-2", "paper.transition.accept")
    assert decision.reason == "deactivated"


def test_list_users_most_privileged_first(core):
    users, total = core.admin.list_users("editor-1")
    assert total == 7
    ranks = [u.role.rank for u in users]
    assert ranks == sorted(ranks, reverse=True)

    reviewers, count = core.admin.list_users("editor-1", role="REVIEWER")
    assert count == 1
    assert reviewers[0].user_id == "reviewer-1"

    found, _ = core.admin.list_users("dean-1", search="OTTO")
    assert [u.user_id for u in found] == ["author-2"]

    with pytest.raises(InsufficientRole):
        core.admin.list_users("reviewer-1")


def test_summary_counts_roles(core):
    assert core.admin.summary("dean-1")["by_role"] == {
        "AUTHOR": 2, "REVIEWER": 1, "EDITOR": 3, "DEAN": 1,
    }


def test_first_login_provisions_author(core):
    user = core.users.ensure_user("new-1", "New.Person@University.edu", name="New Person")
    assert user.role == Role.AUTHOR
    assert user.is_active
    assert user.email == "new.person@university.edu"
    assert core.users.ensure_user("new-1", "new.person@university.edu").created_at == user.created_at


def test_profile_update(core):
    updated = core.users.update_profile("author-1", affiliation="CICT", bio="Networks")
    assert updated.affiliation == "CICT"
    with pytest.raises(ValidationError):
        core.users.update_profile("author-1", role="DEAN")
    with pytest.raises(ValidationError):
        core.users.update_profile("author-1", name="  ")


# Invites

def test_editor_invites_reviewer(core):
    invite = core.admin.create_invite("editor-1", " New.Reviewer@University.edu ", "REVIEWER")
    assert invite.email == "new.reviewer@university.edu"
    assert invite.role == Role.REVIEWER
    assert invite.status == InviteStatus.PENDING
    assert invite.invited_by == "editor-1"
    assert invite.expires_at > invite.created_at

    entries, _ = core.audit.query(action="user.invite")
    assert entries[0].action == "user.invite.create"
    assert entries[0].target_id == invite.invite_id
    assert entries[0].detail["role"] == "REVIEWER"

    assert [i.invite_id for i in core.admin.list_invites("editor-1")] == [invite.invite_id]


def test_invite_role_capped_at_inviter(core):
    with pytest.raises(ValidationError) as exc:
        core.admin.create_invite("editor-1", "new.dean@university.edu", Role.DEAN)
    assert exc.value.code == "role_above_actor"
    assert audit_actions(core) == ["user.invite.create.blocked"]

    invite = core.admin.create_invite("dean-1", "new.dean@university.edu", Role.DEAN)
    assert invite.role == Role.DEAN


def test_invite_requires_editor(core):
    with pytest.raises(InsufficientRole):
        core.admin.create_invite("reviewer-1", "someone@university.edu")
    assert core.admin.list_invites("dean-1", status=None) == []


@pytest.mark.parametrize("email,code", [
    ("reviewer@university.edu", "user_exists"),
    ("not-an-email", "invalid_email"),
])
def test_invite_rejects_bad_addresses(core, email, code):
    with pytest.raises(ValidationError) as exc:
        core.admin.create_invite("editor-1", email)
    assert exc.value.code == code
    assert audit_actions(core) == ["user.invite.create.blocked"]


def test_one_pending_invite_per_email(core):
    core.admin.create_invite("editor-1", "guest@university.edu")
    with pytest.raises(ValidationError) as exc:
        core.admin.create_invite("dean-1", "GUEST@university.edu", Role.EDITOR)
    assert exc.value.code == "invite_pending"
    assert len(core.admin.list_invites("dean-1", status=None)) == 1


def test_first_login_redeems_invite(core):
    invite = core.admin.create_invite("editor-1", "new.editor@university.edu", Role.EDITOR)

    user = core.users.ensure_user("new-editor", "New.Editor@university.edu", name="New Editor")
    assert user.role == Role.EDITOR
    assert core.users.get_invite(invite.invite_id).status == InviteStatus.ACCEPTED
    assert core.admin.list_invites("editor-1") == []


def test_accept_invite_once(core):
    invite = core.admin.create_invite("editor-1", "guest@university.edu", Role.REVIEWER)

    user = core.users.accept_invite(invite.token, "guest-1", name="Guest")
    assert user.role == Role.REVIEWER
    assert user.email == "guest@university.edu"

    with pytest.raises(ValidationError) as exc:
        core.users.accept_invite(invite.token, "guest-2")
    assert exc.value.code == "invite_used"
    with pytest.raises(NotFound):
        core.users.accept_invite("no-such-token", "guest-3")


def test_invite_expires_after_a_week(core, clock):
    assert INVITE_TTL == timedelta(days=7)
    invite = core.admin.create_invite("editor-1", "late@university.edu", Role.REVIEWER)
    clock.now += timedelta(days=8)

    assert core.admin.list_invites("editor-1") == []
    with pytest.raises(ValidationError) as exc:
        core.users.accept_invite(invite.token, "late-1")
    assert exc.value.code == "invite_expired"
    assert core.users.get_invite(invite.invite_id).status == InviteStatus.EXPIRED
    assert core.users.get_user("late-1") is None

    # An expired invite no longer grants its role and can be replaced
    assert core.users.ensure_user("late-1", "late@university.edu").role == Role.AUTHOR
    with pytest.raises(ValidationError):
        core.admin.create_invite("editor-1", "late@university.edu")


def test_expired_invite_can_be_reissued(core, clock):
    core.admin.create_invite("editor-1", "late@university.edu")
    clock.now += timedelta(days=8)

    fresh = core.admin.create_invite("editor-1", "late@university.edu", Role.REVIEWER)
    assert fresh.status == InviteStatus.PENDING
    statuses = sorted(i.status.value for i in core.admin.list_invites("editor-1", status=None))
    assert statuses == ["EXPIRED", "PENDING"]


def test_cancel_invite(core):
    invite = core.admin.create_invite("editor-1", "guest@university.edu")

    cancelled = core.admin.cancel_invite("editor-2", invite.invite_id)
    assert cancelled.status == InviteStatus.CANCELLED
    assert audit_actions(core)[-1] == "user.invite.cancel"

    with pytest.raises(ValidationError) as exc:
        core.admin.cancel_invite("editor-2", invite.invite_id)
    assert exc.value.code == "invite_not_pending"
    with pytest.raises(ValidationError) as exc:
        core.users.accept_invite(invite.token, "guest-1")
    assert exc.value.code == "invite_used"
    with pytest.raises(NotFound):
        core.admin.cancel_invite("editor-2", "missing")

    assert audit_actions(core)[-2:] == ["user.invite.cancel.blocked", "user.invite.cancel.blocked"]
    assert [i.status for i in core.admin.list_invites("dean-1", status="CANCELLED")] == [InviteStatus.CANCELLED]
