"""
Editorial Database

SQLite store shared by every editorial component. One handle is created at
process start and injected; it hands out one connection per thread and runs
write transactions under the database write lock (``BEGIN IMMEDIATE``).

Tables:
- users: Identity and role store
- invites: Role invitations redeemed at first login
- papers / paper_authors: Paper records
- reviewer_assignments / paper_comments: Review artifacts owned by a paper
- doi_sequences: Per-year DOI counters
- audit_log: Append-only audit trail
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from editorial.errors import StoreUnavailable


ROLES = ("AUTHOR", "REVIEWER", "EDITOR", "DEAN")
STATUSES = ("SUBMITTED", "UNDER_REVIEW", "ACCEPTED", "REJECTED", "PUBLISHED")
INVITE_STATUSES = ("PENDING", "ACCEPTED", "EXPIRED", "CANCELLED")
PUBLICATION_STEP_COUNT = 7


SCHEMA = f"""
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    name TEXT,
    role TEXT NOT NULL DEFAULT 'AUTHOR'
        CHECK (role IN ({", ".join(repr(r) for r in ROLES)})),
    is_active INTEGER NOT NULL DEFAULT 1,
    affiliation TEXT,
    bio TEXT,
    avatar_url TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invites (
    invite_id TEXT PRIMARY KEY,
    token TEXT UNIQUE NOT NULL,
    email TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'AUTHOR'
        CHECK (role IN ({", ".join(repr(r) for r in ROLES)})),
    status TEXT NOT NULL DEFAULT 'PENDING'
        CHECK (status IN ({", ".join(repr(s) for s in INVITE_STATUSES)})),
    invited_by TEXT REFERENCES users(user_id),
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS papers (
    paper_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    abstract TEXT NOT NULL DEFAULT '',
    category TEXT,
    keywords TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'SUBMITTED'
        CHECK (status IN ({", ".join(repr(s) for s in STATUSES)})),
    doi TEXT UNIQUE,
    file_url TEXT,
    original_name TEXT,
    submitted_by TEXT NOT NULL REFERENCES users(user_id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    published_at TEXT,
    archived_at TEXT,
    backup_url TEXT,
    backup_at TEXT,
    publication_step INTEGER NOT NULL DEFAULT 1
        CHECK (publication_step BETWEEN 1 AND {PUBLICATION_STEP_COUNT}),
    publication_note TEXT,
    CHECK ((status = 'PUBLISHED') = (doi IS NOT NULL))
);

CREATE TABLE IF NOT EXISTS paper_authors (
    paper_id TEXT NOT NULL REFERENCES papers(paper_id),
    position INTEGER NOT NULL,
    name TEXT NOT NULL,
    email TEXT,
    is_corresponding INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (paper_id, position)
);

CREATE TABLE IF NOT EXISTS reviewer_assignments (
    assignment_id TEXT PRIMARY KEY,
    paper_id TEXT NOT NULL REFERENCES papers(paper_id),
    reviewer_id TEXT NOT NULL REFERENCES users(user_id),
    assigned_by TEXT NOT NULL,
    assigned_at TEXT NOT NULL,
    UNIQUE (paper_id, reviewer_id)
);

CREATE TABLE IF NOT EXISTS paper_comments (
    comment_id TEXT PRIMARY KEY,
    paper_id TEXT NOT NULL REFERENCES papers(paper_id),
    author_id TEXT NOT NULL REFERENCES users(user_id),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS doi_sequences (
    year INTEGER PRIMARY KEY,
    counter INTEGER NOT NULL CHECK (counter > 0)
);

CREATE TABLE IF NOT EXISTS audit_log (
    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id TEXT,
    actor_email TEXT,
    action TEXT NOT NULL,
    target_type TEXT,
    target_id TEXT,
    detail TEXT,
    ip_address TEXT,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_invites_pending ON invites(email) WHERE status = 'PENDING';
CREATE INDEX IF NOT EXISTS idx_papers_status ON papers(status);
CREATE INDEX IF NOT EXISTS idx_reviewers_paper ON reviewer_assignments(paper_id);
CREATE INDEX IF NOT EXISTS idx_comments_paper ON paper_comments(paper_id);
CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_log(created_at);
CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_log(target_type, target_id);

CREATE TRIGGER IF NOT EXISTS papers_doi_immutable
BEFORE UPDATE OF doi ON papers
WHEN OLD.doi IS NOT NULL AND (NEW.doi IS NULL OR NEW.doi <> OLD.doi)
BEGIN
    SELECT RAISE(ABORT, 'doi is immutable once assigned');
END;

CREATE TRIGGER IF NOT EXISTS doi_sequences_monotonic
BEFORE UPDATE ON doi_sequences
WHEN NEW.counter < OLD.counter
BEGIN
    SELECT RAISE(ABORT, 'doi sequence cannot decrease');
END;

CREATE TRIGGER IF NOT EXISTS doi_sequences_no_delete
BEFORE DELETE ON doi_sequences
BEGIN
    SELECT RAISE(ABORT, 'doi sequence cannot be deleted');
END;

CREATE TRIGGER IF NOT EXISTS audit_log_no_update
BEFORE UPDATE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_log_no_delete
BEFORE DELETE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit log is append-only');
END;
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp in a fixed-width, sortable form."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class Database:
    """
    SQLite handle for the editorial store.

    Features:
    - One connection per thread, all tracked for shutdown
    - WAL journal so readers never block the single writer
    - Busy timeout instead of immediate lock errors
    - Write transactions serialized by the store lock
    """

    def __init__(
        self,
        db_path: str = "data/editorial.db",
        busy_timeout: float = 5.0
    ):
        """
        Initialize database handle and create the schema.

        Args:
            db_path: Path to SQLite database
            busy_timeout: Seconds to wait for the write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self.logger = logging.getLogger(__name__)

        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout * 1000)}")
        except sqlite3.Error as e:
            self.logger.error(f"Failed to open database {self.db_path}: {e}")
            raise StoreUnavailable(f"Cannot open database: {e}") from e

        with self._lock:
            self._connections.append(conn)
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        """Connection bound to the calling thread."""
        if self._closed:
            raise StoreUnavailable("Database handle is closed")
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def _create_tables(self):
        """Create database tables."""
        try:
            self.connection.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Schema initialization failed: {e}") from e
        self.logger.debug(f"Schema ready at {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a write transaction on this thread's connection.

        Nested use joins the outer transaction. Any exception rolls back and
        propagates unchanged; lock and commit failures raise StoreUnavailable.

        Yields:
            Connection with an open IMMEDIATE transaction
        """
        conn = self.connection
        if conn.in_transaction:
            yield conn
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self.logger.error(f"Could not acquire write lock: {e}")
            raise StoreUnavailable(f"Could not begin transaction: {e}") from e

        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

        try:
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            self.logger.error(f"Commit failed: {e}")
            raise StoreUnavailable(f"Commit failed: {e}") from e

    def fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        try:
            return self.connection.execute(query, params).fetchone()
        except sqlite3.DatabaseError as e:
            raise StoreUnavailable(str(e)) from e

    def fetchall(self, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self.connection.execute(query, params).fetchall()
        except sqlite3.DatabaseError as e:
            raise StoreUnavailable(str(e)) from e

    def close(self):
        """Close every connection opened by this handle."""
        with self._lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    self.logger.warning(f"Error closing connection: {e}")
            self._connections.clear()
            self._closed = True
        self._local = threading.local()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
