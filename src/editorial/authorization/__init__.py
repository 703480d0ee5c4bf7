"""
Authorization Layer

Provides:
- Identity and role store with role invites
- Role-based access control with longest-prefix resource matching
- Append-only audit trail for privileged actions and denials
"""

from .user_manager import User, UserManager, Role, ROLE_HIERARCHY, Invite, InviteStatus, INVITE_TTL
from .policy_engine import (
    PolicyEngine,
    AccessDecision,
    DEFAULT_PROTECTED_RESOURCES,
)
from .audit_logger import AuditLogger, AuditAction, AuditEntry, SYSTEM_ACTOR

__all__ = [
    'User',
    'UserManager',
    'Role',
    'ROLE_HIERARCHY',
    'Invite',
    'InviteStatus',
    'INVITE_TTL',
    'PolicyEngine',
    'AccessDecision',
    'DEFAULT_PROTECTED_RESOURCES',
    'AuditLogger',
    'AuditAction',
    'AuditEntry',
    'SYSTEM_ACTOR',
]
