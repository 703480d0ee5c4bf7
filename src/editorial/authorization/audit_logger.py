"""
Audit Logger - Editorial Audit Trail

Append-only record of every privileged action and every denied request.
Entries are written inside the transaction of the action they describe, so
an action and its audit entry commit or roll back together. The store
rejects UPDATE and DELETE on the audit table.
"""

import csv
import json
import sqlite3
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from editorial.errors import AuditWriteFailure, StoreUnavailable
from editorial.storage.database import Database, utc_now, to_iso


class AuditAction(Enum):
    """Audited action names."""
    ACCESS_DENIED = "access_denied"
    PAPER_REVIEW = "paper.transition.review"
    PAPER_ACCEPT = "paper.transition.accept"
    PAPER_REJECT = "paper.transition.reject"
    PAPER_PUBLISH = "paper.transition.publish"
    TRANSITION_BLOCKED = "paper.transition.blocked"
    TRANSITION_CONFLICT = "paper.transition.conflict"
    REVIEWER_ASSIGNED = "paper.reviewer.assign"
    REVIEWER_REMOVED = "paper.reviewer.remove"
    COMMENT_ADDED = "paper.comment.add"
    PAPER_ARCHIVED = "paper.archive"
    PAPER_DELETED = "paper.delete"
    BACKUP_REQUESTED = "paper.backup.request"
    BACKUP_RECORDED = "paper.backup.record"
    USER_ROLE_CHANGED = "user.role.change"
    USER_ACTIVATED = "user.activate"
    USER_DEACTIVATED = "user.deactivate"
    INVITE_CREATED = "user.invite.create"
    INVITE_CANCELLED = "user.invite.cancel"
    PUBLICATION_STEP = "paper.publication.step"


# Actor recorded for actions performed by the core itself (backup callbacks)
SYSTEM_ACTOR = "system"


@dataclass
class AuditEntry:
    """Immutable audit log entry."""
    entry_id: int
    actor_id: Optional[str]
    actor_email: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    detail: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


CSV_FIELDS = [
    'entry_id', 'created_at', 'actor_id', 'actor_email', 'action',
    'target_type', 'target_id', 'ip_address', 'detail'
]


class AuditLogger:
    """
    Audit trail for editorial actions.

    Features:
    - Writes inside caller transactions
    - Non-fatal logging of access denials
    - Paginated query with action and text filters
    - Per-target history, statistics and export
    """

    def __init__(self, db: Database):
        """
        Initialize audit logger.

        Args:
            db: Shared database handle
        """
        self.db = db
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            entry_id=row['entry_id'],
            actor_id=row['actor_id'],
            actor_email=row['actor_email'],
            action=row['action'],
            target_type=row['target_type'],
            target_id=row['target_id'],
            detail=json.loads(row['detail']) if row['detail'] else None,
            ip_address=row['ip_address'],
            created_at=row['created_at'],
        )

    def _insert(self, conn: sqlite3.Connection, values: tuple) -> int:
        cursor = conn.execute("""
            INSERT INTO audit_log (
                actor_id, actor_email, action, target_type, target_id,
                detail, ip_address, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, values)
        return cursor.lastrowid

    def record(
        self,
        actor_id: Optional[str],
        actor_email: Optional[str],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None
    ) -> int:
        """
        Append an audit entry.

        Args:
            actor_id: Acting user ID
            actor_email: Acting user email
            action: Action name (see AuditAction)
            target_type: Kind of target (paper, user, route)
            target_id: Target identifier
            detail: JSON-serializable detail
            ip_address: Client IP address
            conn: Connection of an open transaction to write in

        Returns:
            Entry ID

        Raises:
            AuditWriteFailure: If the entry cannot be written
        """
        if isinstance(action, AuditAction):
            action = action.value
        try:
            values = (
                actor_id,
                actor_email,
                action,
                target_type,
                target_id,
                json.dumps(detail, default=str) if detail is not None else None,
                ip_address,
                to_iso(utc_now()),
            )
        except (TypeError, ValueError) as e:
            raise AuditWriteFailure(f"Audit detail not serializable: {e}") from e

        try:
            if conn is not None:
                return self._insert(conn, values)
            with self.db.transaction() as own_conn:
                return self._insert(own_conn, values)
        except (sqlite3.Error, StoreUnavailable) as e:
            self.logger.error(f"Audit write failed for {action} on {target_type}:{target_id}: {e}")
            raise AuditWriteFailure(f"Audit write failed: {e}") from e

    def log_access_denied(
        self,
        actor_id: Optional[str],
        actor_email: Optional[str],
        resource: str,
        reason: str,
        required_roles: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None
    ) -> Optional[int]:
        """
        Record a denied request.

        A failure here never changes the denial; it is logged and dropped.

        Returns:
            Entry ID, or None if the write failed
        """
        detail = {'reason': reason, 'resource': resource}
        if required_roles:
            detail['required_roles'] = list(required_roles)
        if context:
            detail.update(context)
        try:
            return self.record(
                actor_id=actor_id,
                actor_email=actor_email,
                action=AuditAction.ACCESS_DENIED.value,
                target_type='resource',
                target_id=resource,
                detail=detail,
                ip_address=ip_address,
            )
        except AuditWriteFailure as e:
            self.logger.warning(f"Could not audit denial of {resource} for {actor_id}: {e}")
            return None

    def query(
        self,
        action: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
        actor_id: Optional[str] = None
    ) -> Tuple[List[AuditEntry], int]:
        """
        Query audit entries, newest first.

        Args:
            action: Case-insensitive substring of the action name
            search: Case-insensitive match on actor email, target ID or target type
            page: 1-based page number
            page_size: Page size (capped at 100)
            actor_id: Exact actor filter

        Returns:
            (entries on this page, total matching)
        """
        conditions = []
        params: List[Any] = []

        if action:
            conditions.append("LOWER(action) LIKE ?")
            params.append(f"%{action.lower()}%")
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                "(LOWER(COALESCE(actor_email, '')) LIKE ? "
                "OR LOWER(COALESCE(target_id, '')) LIKE ? "
                "OR LOWER(COALESCE(target_type, '')) LIKE ?)"
            )
            params.extend([pattern, pattern, pattern])
        if actor_id:
            conditions.append("actor_id = ?")
            params.append(actor_id)

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        page = max(1, page)
        page_size = max(1, min(page_size, 100))

        total = self.db.fetchone(f"SELECT COUNT(*) AS count FROM audit_log{where}", params)['count']
        rows = self.db.fetchall(
            f"SELECT * FROM audit_log{where} ORDER BY created_at DESC, entry_id DESC LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size]
        )
        return [self._row_to_entry(r) for r in rows], total

    def get_target_history(
        self,
        target_type: str,
        target_id: str,
        limit: int = 100
    ) -> List[AuditEntry]:
        """Entries for one target, oldest first."""
        rows = self.db.fetchall("""
            SELECT * FROM audit_log
            WHERE target_type = ? AND target_id = ?
            ORDER BY created_at, entry_id
            LIMIT ?
        """, (target_type, target_id, limit))
        return [self._row_to_entry(r) for r in rows]

    def count(self) -> int:
        return self.db.fetchone("SELECT COUNT(*) AS count FROM audit_log")['count']

    def get_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Get audit statistics.

        Args:
            start_date: Start date filter
            end_date: End date filter

        Returns:
            Dictionary with statistics
        """
        conditions, params = self._date_filter(start_date, end_date)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        denied_where = " WHERE " + " AND ".join(conditions + ["action = ?"])

        total_events = self.db.fetchone(
            f"SELECT COUNT(*) AS count FROM audit_log{where}", params
        )['count']

        by_action = {
            row['action']: row['count']
            for row in self.db.fetchall(
                f"SELECT action, COUNT(*) AS count FROM audit_log{where} GROUP BY action", params
            )
        }

        top_actors = {
            row['actor']: row['count']
            for row in self.db.fetchall(f"""
                SELECT COALESCE(actor_email, actor_id, 'anonymous') AS actor, COUNT(*) AS count
                FROM audit_log{where}
                GROUP BY actor
                ORDER BY count DESC
                LIMIT 10
            """, params)
        }

        denied_count = self.db.fetchone(
            f"SELECT COUNT(*) AS count FROM audit_log{denied_where}",
            params + [AuditAction.ACCESS_DENIED.value]
        )['count']

        return {
            'total_events': total_events,
            'by_action': by_action,
            'top_actors': top_actors,
            'denied_count': denied_count,
            'denied_percentage': (denied_count / total_events * 100) if total_events > 0 else 0,
        }

    @staticmethod
    def _date_filter(
        start_date: Optional[datetime],
        end_date: Optional[datetime]
    ) -> Tuple[List[str], List[Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        if start_date:
            conditions.append("created_at >= ?")
            params.append(to_iso(start_date))
        if end_date:
            conditions.append("created_at <= ?")
            params.append(to_iso(end_date))
        return conditions, params

    def export_events(
        self,
        output_path: str,
        fmt: str = "json",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> int:
        """
        Export audit entries, oldest first.

        Args:
            output_path: Output file path
            fmt: "json" or "csv"
            start_date: Start date filter
            end_date: End date filter

        Returns:
            Number of entries written
        """
        if fmt not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {fmt}")

        conditions, params = self._date_filter(start_date, end_date)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self.db.fetchall(
            f"SELECT * FROM audit_log{where} ORDER BY created_at, entry_id", params
        )
        events = [self._row_to_entry(r).to_dict() for r in rows]

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            if fmt == "json":
                json.dump(events, f, indent=2)
            else:
                writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
                writer.writeheader()
                for event in events:
                    event['detail'] = json.dumps(event['detail']) if event['detail'] else ''
                    writer.writerow(event)

        self.logger.info(f"Exported {len(events)} audit entries to {output_path}")
        return len(events)
