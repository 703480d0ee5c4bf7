"""Shared fixtures: a fresh store per test, a wired core and seeded accounts."""

from datetime import datetime, timedelta, timezone

import pytest

from editorial.authorization import Role
from editorial.config import Settings
from editorial.core import EditorialCore
from editorial.storage import CallbackHook, Database, IntegrationHookManager


ACCOUNTS = [
    ("author-1", "author@university.edu", "Ana Author", Role.AUTHOR, True),
    ("author-2", "other.author@university.edu", "Otto Author", Role.AUTHOR, True),
    ("reviewer-1", "reviewer@university.edu", "Rita Reviewer", Role.REVIEWER, True),
    ("editor-1", "editor@university.edu", "Ed Editor", Role.EDITOR, True),
    ("editor-2", "editor2@university.edu", "Eve Editor", Role.EDITOR, True),
    ("dean-1", "dean@university.edu", "Dana Dean", Role.DEAN, True),
    ("inactive-editor", "former.editor@university.edu", "Ian Inactive", Role.EDITOR, False),
]

ACTOR_BY_ROLE = {
    Role.AUTHOR: "author-1",
    Role.REVIEWER: "reviewer-1",
    Role.EDITOR: "editor-1",
    Role.DEAN: "dean-1",
}


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "editorial.db"))
    yield database
    database.close()


@pytest.fixture
def clock():
    return TickingClock(datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def events():
    """Payloads of every signal fired, in order."""
    return []


@pytest.fixture
def core(db, clock, events, tmp_path):
    hooks = IntegrationHookManager(async_execution=False)
    hooks.register_hook(CallbackHook("recorder", events.append))
    settings = Settings(database_path=str(tmp_path / "editorial.db"))
    editorial = EditorialCore(db, settings=settings, hooks=hooks, clock=clock)
    for user_id, email, name, role, active in ACCOUNTS:
        editorial.users.create_user(user_id, email, name=name, role=role, is_active=active)
    return editorial


@pytest.fixture
def paper(core):
    return core.workflow.submit_paper(
        "author-1",
        title="Edge Caching for Campus Networks",
        abstract="We measure cache hit rates across three campuses.",
        category="Networking",
        keywords=["caching", "networks"],
        file_url="uploads/edge-caching.pdf",
        original_name="edge-caching.pdf",
    )


def audit_actions(core):
    """Audit action names, oldest first."""
    entries, _ = core.audit.query(page_size=100)
    return [e.action for e in reversed(entries)]
