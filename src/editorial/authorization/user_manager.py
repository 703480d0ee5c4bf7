"""
User Manager - Identity and Role Store

Holds editorial accounts and their roles. Accounts are created on first
successful authentication (by the upstream identity provider) and are never
hard-deleted; deactivation is the only way to revoke access.

Invites pre-assign a role to an email address. A pending invite is redeemed
either explicitly by token or implicitly when the invited email logs in for
the first time. Invites expire after seven days.
"""

import re
import secrets
import sqlite3
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple, Callable

from editorial.errors import NotFound, ValidationError
from editorial.storage.database import Database, utc_now, to_iso


class Role(Enum):
    """Editorial roles in increasing order of privilege."""
    AUTHOR = "AUTHOR"
    REVIEWER = "REVIEWER"
    EDITOR = "EDITOR"
    DEAN = "DEAN"

    @property
    def rank(self) -> int:
        return ROLE_HIERARCHY[self]

    def at_least(self, other: 'Role') -> bool:
        """Check if this role is as privileged as ``other``."""
        return self.rank >= other.rank

    @classmethod
    def from_string(cls, value: str) -> 'Role':
        """
        Convert string to role.

        Raises:
            ValidationError: If the value names no role
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            raise ValidationError(f"Unknown role: {value!r}")


ROLE_HIERARCHY = {
    Role.AUTHOR: 0,
    Role.REVIEWER: 1,
    Role.EDITOR: 2,
    Role.DEAN: 3,
}


@dataclass
class User:
    """
    Editorial account.

    Attributes:
        user_id: Identifier issued by the identity provider
        email: Unique email address
        name: Display name
        role: Editorial role
        is_active: False once deactivated
        affiliation: Institution or department
        bio: Short biography
        avatar_url: Profile picture reference
        created_at: ISO timestamp of account creation
        updated_at: ISO timestamp of last change
    """
    user_id: str
    email: str
    name: Optional[str] = None
    role: Role = Role.AUTHOR
    is_active: bool = True
    affiliation: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['role'] = self.role.value
        return data


class InviteStatus(Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_string(cls, value: str) -> 'InviteStatus':
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            raise ValidationError(f"Unknown invite status: {value!r}")


@dataclass
class Invite:
    """
    Role invitation for an email address.

    Attributes:
        invite_id: Invite identifier (used to cancel)
        token: Secret handed to the invitee (used to accept)
        email: Invited email address
        role: Role granted on acceptance
        status: PENDING until accepted, cancelled or expired
        invited_by: Inviting user ID
        created_at: ISO creation timestamp
        expires_at: ISO expiry timestamp
    """
    invite_id: str
    token: str
    email: str
    role: Role
    status: InviteStatus
    invited_by: Optional[str]
    created_at: str
    expires_at: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['role'] = self.role.value
        data['status'] = self.status.value
        return data


INVITE_TTL = timedelta(days=7)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

PROFILE_FIELDS = ('name', 'affiliation', 'bio', 'avatar_url')

# Most privileged first in listings
ROLE_ORDER = "CASE role " + " ".join(
    f"WHEN '{role.value}' THEN {rank}" for role, rank in ROLE_HIERARCHY.items()
) + " END"


class UserManager:
    """
    Identity and role store.

    Features:
    - Account provisioning on first authentication
    - Role and active-flag mutation inside caller transactions
    - Profile edits
    - Paginated listing with role and text filters
    - Role invites with expiry, redeemed at first login
    """

    def __init__(self, db: Database, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize user manager.

        Args:
            db: Shared database handle
            clock: Source of the current time (UTC)
        """
        self.db = db
        self.clock = clock or utc_now
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            user_id=row['user_id'],
            email=row['email'],
            name=row['name'],
            role=Role(row['role']),
            is_active=bool(row['is_active']),
            affiliation=row['affiliation'],
            bio=row['bio'],
            avatar_url=row['avatar_url'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def create_user(
        self,
        user_id: str,
        email: str,
        name: Optional[str] = None,
        role: Role = Role.AUTHOR,
        is_active: bool = True
    ) -> User:
        """
        Create new account.

        Args:
            user_id: Identity provider user ID
            email: User email
            name: Display name
            role: Initial role
            is_active: Initial active flag

        Returns:
            Created user

        Raises:
            ValidationError: If the ID or email already exists
        """
        with self.db.transaction() as conn:
            self._insert_user(conn, user_id, email, name, role, is_active)

        self.logger.info(f"Created user {user_id} ({role.value})")
        return self.get_user(user_id)

    def _insert_user(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        email: str,
        name: Optional[str],
        role: Role,
        is_active: bool
    ):
        if not user_id or not email:
            raise ValidationError("user_id and email are required")

        now = to_iso(self.clock())
        try:
            conn.execute("""
                INSERT INTO users (
                    user_id, email, name, role, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (user_id, email.strip().lower(), name, role.value, int(is_active), now, now))
        except sqlite3.IntegrityError:
            raise ValidationError(f"User '{user_id}' or email '{email}' already exists", code='user_exists')

    def ensure_user(self, user_id: str, email: str, name: Optional[str] = None) -> User:
        """
        Return the account for an authenticated identity, creating it on first login.

        New accounts start as active AUTHORs unless a pending invite for the
        email grants another role, in which case the invite is redeemed.
        """
        user = self.get_user(user_id)
        if user is not None:
            return user
        try:
            invite = self.get_pending_invite(email)
            if invite is not None:
                return self.accept_invite(invite.token, user_id, name=name)
            return self.create_user(user_id, email, name=name)
        except ValidationError:
            # Concurrent first login for the same identity
            user = self.get_user(user_id)
            if user is None:
                raise
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        """
        Get account by ID.

        Raises:
            StoreUnavailable: If the store cannot be read
        """
        row = self.db.fetchone("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    def require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise NotFound(f"User not found: {user_id}")
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self.db.fetchone(
            "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
        )
        return self._row_to_user(row) if row else None

    def list_users(
        self,
        role: Optional[Role] = None,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[User], int]:
        """
        List accounts, most privileged first, then newest.

        Args:
            role: Filter by role
            search: Case-insensitive match on name or email
            is_active: Filter by active flag
            page: 1-based page number
            page_size: Page size

        Returns:
            (users on this page, total matching)
        """
        conditions = []
        params: List[Any] = []

        if role is not None:
            conditions.append("role = ?")
            params.append(role.value)
        if search:
            conditions.append("(LOWER(name) LIKE ? OR LOWER(email) LIKE ?)")
            pattern = f"%{search.lower()}%"
            params.extend([pattern, pattern])
        if is_active is not None:
            conditions.append("is_active = ?")
            params.append(int(is_active))

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        page = max(1, page)
        page_size = max(1, min(page_size, 100))

        total = self.db.fetchone(f"SELECT COUNT(*) AS count FROM users {where}", params)['count']
        rows = self.db.fetchall(
            f"SELECT * FROM users {where} ORDER BY {ROLE_ORDER} DESC, created_at DESC, user_id "
            f"LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size]
        )
        return [self._row_to_user(r) for r in rows], total

    def set_role(self, user_id: str, role: Role, conn: sqlite3.Connection):
        """Update role inside the caller's transaction."""
        cursor = conn.execute(
            "UPDATE users SET role = ?, updated_at = ? WHERE user_id = ?",
            (role.value, to_iso(self.clock()), user_id)
        )
        if cursor.rowcount == 0:
            raise NotFound(f"User not found: {user_id}")

    def set_active(self, user_id: str, is_active: bool, conn: sqlite3.Connection):
        """Update active flag inside the caller's transaction."""
        cursor = conn.execute(
            "UPDATE users SET is_active = ?, updated_at = ? WHERE user_id = ?",
            (int(is_active), to_iso(self.clock()), user_id)
        )
        if cursor.rowcount == 0:
            raise NotFound(f"User not found: {user_id}")

    def update_profile(self, user_id: str, **fields) -> User:
        """
        Update own profile fields (name, affiliation, bio, avatar_url).

        Raises:
            ValidationError: For unknown fields or an empty name
            NotFound: If the account does not exist
        """
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {sorted(unknown)}")
        if 'name' in fields and fields['name'] is not None and not fields['name'].strip():
            raise ValidationError("Name cannot be empty")

        updates = {k: v for k, v in fields.items() if v is not None}
        if updates:
            assignments = ", ".join(f"{k} = ?" for k in updates)
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE users SET {assignments}, updated_at = ? WHERE user_id = ?",
                    list(updates.values()) + [to_iso(self.clock()), user_id]
                )
                if cursor.rowcount == 0:
                    raise NotFound(f"User not found: {user_id}")
        return self.require_user(user_id)

    def count_by_role(self) -> Dict[str, int]:
        """Count accounts per role."""
        rows = self.db.fetchall("SELECT role, COUNT(*) AS count FROM users GROUP BY role")
        counts = {role.value: 0 for role in Role}
        counts.update({r['role']: r['count'] for r in rows})
        return counts

    # Invites

    @staticmethod
    def _row_to_invite(row: sqlite3.Row) -> Invite:
        return Invite(
            invite_id=row['invite_id'],
            token=row['token'],
            email=row['email'],
            role=Role(row['role']),
            status=InviteStatus(row['status']),
            invited_by=row['invited_by'],
            created_at=row['created_at'],
            expires_at=row['expires_at'],
        )

    def _expire_invites(self, conn: sqlite3.Connection, email: Optional[str] = None) -> int:
        """Mark pending invites past their expiry as EXPIRED."""
        query = "UPDATE invites SET status = 'EXPIRED' WHERE status = 'PENDING' AND expires_at <= ?"
        params: List[Any] = [to_iso(self.clock())]
        if email:
            query += " AND email = ?"
            params.append(email.strip().lower())
        return conn.execute(query, params).rowcount

    def create_invite(self, email: str, role: Role = Role.AUTHOR, invited_by: Optional[str] = None) -> Invite:
        """
        Invite an email address to join with ``role``.

        Args:
            email: Invited email address
            role: Role granted on acceptance
            invited_by: Inviting user ID

        Returns:
            Created invite, expiring after INVITE_TTL

        Raises:
            ValidationError: Invalid email, existing account, or a pending invite
        """
        email = (email or '').strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError(f"Invalid email address: {email!r}", code='invalid_email')

        now = self.clock()
        invite = Invite(
            invite_id=secrets.token_urlsafe(12),
            token=secrets.token_urlsafe(32),
            email=email,
            role=role,
            status=InviteStatus.PENDING,
            invited_by=invited_by,
            created_at=to_iso(now),
            expires_at=to_iso(now + INVITE_TTL),
        )
        with self.db.transaction() as conn:
            if self.get_user_by_email(email) is not None:
                raise ValidationError(f"User with email {email} already exists", code='user_exists')
            self._expire_invites(conn, email)
            if self.get_pending_invite(email) is not None:
                raise ValidationError(f"Pending invite already exists for {email}", code='invite_pending')
            conn.execute("""
                INSERT INTO invites (
                    invite_id, token, email, role, status, invited_by, created_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                invite.invite_id,
                invite.token,
                invite.email,
                invite.role.value,
                invite.status.value,
                invite.invited_by,
                invite.created_at,
                invite.expires_at,
            ))

        self.logger.info(f"Invited {email} as {role.value} (expires {invite.expires_at})")
        return invite

    def get_invite(self, invite_id: str) -> Optional[Invite]:
        row = self.db.fetchone("SELECT * FROM invites WHERE invite_id = ?", (invite_id,))
        return self._row_to_invite(row) if row else None

    def get_invite_by_token(self, token: str) -> Optional[Invite]:
        row = self.db.fetchone("SELECT * FROM invites WHERE token = ?", (token,))
        return self._row_to_invite(row) if row else None

    def get_pending_invite(self, email: str) -> Optional[Invite]:
        """Unexpired pending invite for an email, if any."""
        row = self.db.fetchone(
            "SELECT * FROM invites WHERE email = ? AND status = 'PENDING' AND expires_at > ?",
            ((email or '').strip().lower(), to_iso(self.clock()))
        )
        return self._row_to_invite(row) if row else None

    def list_invites(self, status: Optional[InviteStatus] = None) -> List[Invite]:
        """
        List invites, newest first.

        PENDING only returns invites that have not expired yet.
        """
        conditions = []
        params: List[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if status == InviteStatus.PENDING:
            conditions.append("expires_at > ?")
            params.append(to_iso(self.clock()))

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self.db.fetchall(
            f"SELECT * FROM invites {where} ORDER BY created_at DESC, invite_id", params
        )
        return [self._row_to_invite(r) for r in rows]

    def close_invite(self, invite_id: str, status: InviteStatus, conn: sqlite3.Connection) -> bool:
        """
        Move a pending invite to ``status`` inside the caller's transaction.

        Returns:
            False if the invite was no longer pending
        """
        cursor = conn.execute(
            "UPDATE invites SET status = ? WHERE invite_id = ? AND status = 'PENDING'",
            (status.value, invite_id)
        )
        return cursor.rowcount == 1

    def accept_invite(self, token: str, user_id: str, name: Optional[str] = None) -> User:
        """
        Create the account for an invite, with the invited role.

        Args:
            token: Invite token
            user_id: Identity provider user ID of the new account
            name: Display name

        Returns:
            Created user

        Raises:
            NotFound: Unknown token
            ValidationError: Invite used, cancelled or expired, or the account exists
        """
        invite = self.get_invite_by_token(token)
        if invite is None:
            raise NotFound("Invalid invite token")

        if invite.status == InviteStatus.PENDING and invite.expires_at <= to_iso(self.clock()):
            with self.db.transaction() as conn:
                self._expire_invites(conn, invite.email)
            invite.status = InviteStatus.EXPIRED
        if invite.status == InviteStatus.EXPIRED:
            raise ValidationError("Invite has expired", code='invite_expired')
        if invite.status != InviteStatus.PENDING:
            raise ValidationError(f"Invite is {invite.status.value.lower()}", code='invite_used')

        with self.db.transaction() as conn:
            if not self.close_invite(invite.invite_id, InviteStatus.ACCEPTED, conn):
                raise ValidationError("Invite has already been used", code='invite_used')
            self._insert_user(conn, user_id, invite.email, name, invite.role, True)

        self.logger.info(f"User {user_id} joined as {invite.role.value} via invite {invite.invite_id}")
        return self.require_user(user_id)
