"""
Policy Engine - Role-Based Access Control

Maps protected resource prefixes to the set of roles allowed to use them.
Resources are dashboard routes (``/dashboard/users``) or dotted action names
(``paper.transition.publish``); both resolve by longest literal prefix.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Iterable, FrozenSet, Tuple

from editorial.errors import (
    AccountDeactivated,
    AuthorizationUnavailable,
    InsufficientRole,
    StoreUnavailable,
    Unauthenticated,
)
from .user_manager import Role, User, UserManager


ALL_ROLES = frozenset(Role)
STAFF = frozenset({Role.REVIEWER, Role.EDITOR, Role.DEAN})
EDITORS = frozenset({Role.EDITOR, Role.DEAN})
DEAN_ONLY = frozenset({Role.DEAN})


DEFAULT_PROTECTED_RESOURCES: Dict[str, FrozenSet[Role]] = {
    # Dashboard routes
    "/dashboard": ALL_ROLES,
    "/dashboard/papers": STAFF,
    "/dashboard/papers/review": STAFF,
    "/dashboard/users": EDITORS,
    "/dashboard/settings": DEAN_ONLY,
    "/dashboard/system": DEAN_ONLY,
    "/dashboard/audit-logs": DEAN_ONLY,
    "/dashboard/archives": EDITORS,
    "/dashboard/archives/volumes": EDITORS,
    "/dashboard/archives/issues": EDITORS,
    "/dashboard/archives/upload": EDITORS,
    "/dashboard/archives/conferences": EDITORS,

    # Workflow actions
    "paper.create": ALL_ROLES,
    "paper.read": ALL_ROLES,
    "paper.transition": STAFF,
    "paper.transition.review": STAFF,
    "paper.transition.accept": EDITORS,
    "paper.transition.reject": EDITORS,
    "paper.transition.publish": EDITORS,
    "paper.reviewers": EDITORS,
    "paper.comments": STAFF,
    "paper.backup": EDITORS,
    "paper.archive": EDITORS,
    "paper.publication": EDITORS,
    "paper.delete": DEAN_ONLY,

    # Administration
    "user.read": EDITORS,
    "user.status": EDITORS,
    "user.invite": EDITORS,
    "user.role": DEAN_ONLY,
    "audit.read": DEAN_ONLY,
}


# Deny reason codes
UNAUTHENTICATED = "unauthenticated"
NO_ACCOUNT = "no_account"
DEACTIVATED = "deactivated"
INSUFFICIENT_ROLE = "insufficient_role"
STORE_UNAVAILABLE = "store_unavailable"


def sort_roles(roles: Iterable[Role]) -> List[str]:
    """Role names in increasing order of privilege."""
    return [r.value for r in sorted(roles, key=lambda r: r.rank)]


@dataclass
class AccessDecision:
    """
    Outcome of an authorization check.

    ``reason`` is None for an Allow. ``degraded`` marks a read allowed
    without consulting the identity store.
    """
    allowed: bool
    resource: str
    reason: Optional[str] = None
    required_roles: List[str] = field(default_factory=list)
    matched_prefix: Optional[str] = None
    actor: Optional[User] = None
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'resource': self.resource,
            'reason': self.reason,
            'required_roles': self.required_roles,
            'matched_prefix': self.matched_prefix,
            'role': self.actor.role.value if self.actor else None,
            'degraded': self.degraded,
        }


class PolicyEngine:
    """
    Role-based access control engine.

    Gates are evaluated in order: missing actor, unknown account, deactivated
    account, then role membership for the longest matching prefix. A resource
    no prefix matches is open to any active account.

    Every Deny is written to the audit trail. If the identity store is
    unreachable, state-changing checks are denied and read-only checks are
    allowed with a warning.
    """

    def __init__(
        self,
        users: UserManager,
        audit_logger: Optional[Any] = None,
        rules: Optional[Dict[str, Iterable[Role]]] = None
    ):
        """
        Initialize policy engine.

        Args:
            users: Identity and role store
            audit_logger: Optional AuditLogger receiving denials
            rules: Protection table (defaults to DEFAULT_PROTECTED_RESOURCES)
        """
        self.users = users
        self.audit_logger = audit_logger
        self.logger = logging.getLogger(__name__)
        self.rules: Dict[str, FrozenSet[Role]] = {}
        self._ordered: List[str] = []
        for prefix, roles in (rules if rules is not None else DEFAULT_PROTECTED_RESOURCES).items():
            self.add_rule(prefix, roles)

    def add_rule(self, prefix: str, roles: Iterable[Role]):
        """
        Protect a resource prefix.

        Args:
            prefix: Route or action prefix
            roles: Roles allowed under the prefix
        """
        if not prefix:
            raise ValueError("Rule prefix cannot be empty")
        self.rules[prefix] = frozenset(roles)
        # Longest first so the first hit is the most specific rule
        self._ordered = sorted(self.rules, key=len, reverse=True)

    def remove_rule(self, prefix: str) -> bool:
        if prefix not in self.rules:
            return False
        del self.rules[prefix]
        self._ordered = sorted(self.rules, key=len, reverse=True)
        return True

    def match_rule(self, resource: str) -> Optional[Tuple[str, FrozenSet[Role]]]:
        """Longest configured prefix of ``resource`` and its allowed roles."""
        for prefix in self._ordered:
            if resource.startswith(prefix):
                return prefix, self.rules[prefix]
        return None

    def required_roles(self, resource: str) -> List[str]:
        """Roles allowed on ``resource`` (empty if unprotected)."""
        match = self.match_rule(resource)
        return sort_roles(match[1]) if match else []

    def can_access(self, role: Role, resource: str) -> bool:
        """Check role membership only, without account gates."""
        match = self.match_rule(resource)
        return match is None or role in match[1]

    def authorize(
        self,
        actor_id: Optional[str],
        resource: str,
        mutating: bool = False,
        context: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None
    ) -> AccessDecision:
        """
        Decide whether ``actor_id`` may use ``resource``.

        Args:
            actor_id: Authenticated user ID (None if unauthenticated)
            resource: Route path or action name
            mutating: True for state-changing operations
            context: Extra detail recorded with a denial (e.g. paper_id)
            ip_address: Client IP address

        Returns:
            AccessDecision
        """
        match = self.match_rule(resource)
        matched_prefix = match[0] if match else None
        required = sort_roles(match[1]) if match else []

        if not actor_id:
            return self._deny(None, resource, UNAUTHENTICATED, required, matched_prefix, context, ip_address)

        try:
            user = self.users.get_user(actor_id)
        except StoreUnavailable as e:
            if mutating:
                self.logger.error(f"Identity store unavailable, denying {resource} for {actor_id}: {e}")
                return self._deny(None, resource, STORE_UNAVAILABLE, required, matched_prefix,
                                  context, ip_address, actor_id=actor_id)
            self.logger.warning(f"Identity store unavailable, allowing read {resource} for {actor_id}: {e}")
            return AccessDecision(
                allowed=True,
                resource=resource,
                required_roles=required,
                matched_prefix=matched_prefix,
                degraded=True
            )

        if user is None:
            return self._deny(None, resource, NO_ACCOUNT, required, matched_prefix,
                              context, ip_address, actor_id=actor_id)
        if not user.is_active:
            return self._deny(user, resource, DEACTIVATED, required, matched_prefix, context, ip_address)
        if match is not None and user.role not in match[1]:
            return self._deny(user, resource, INSUFFICIENT_ROLE, required, matched_prefix, context, ip_address)

        return AccessDecision(
            allowed=True,
            resource=resource,
            required_roles=required,
            matched_prefix=matched_prefix,
            actor=user
        )

    def _deny(
        self,
        user: Optional[User],
        resource: str,
        reason: str,
        required: List[str],
        matched_prefix: Optional[str],
        context: Optional[Dict[str, Any]],
        ip_address: Optional[str],
        actor_id: Optional[str] = None
    ) -> AccessDecision:
        actor_id = user.user_id if user else actor_id
        self.logger.info(f"Access denied: {actor_id or 'anonymous'} -> {resource} ({reason})")
        if self.audit_logger is not None:
            self.audit_logger.log_access_denied(
                actor_id=actor_id,
                actor_email=user.email if user else None,
                resource=resource,
                reason=reason,
                required_roles=required if reason == INSUFFICIENT_ROLE else None,
                context=context,
                ip_address=ip_address,
            )
        return AccessDecision(
            allowed=False,
            resource=resource,
            reason=reason,
            required_roles=required,
            matched_prefix=matched_prefix,
            actor=user
        )

    def require(
        self,
        actor_id: Optional[str],
        resource: str,
        mutating: bool = False,
        context: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None
    ) -> Optional[User]:
        """
        Authorize or raise.

        Returns:
            The acting user (None only for a degraded read)

        Raises:
            Unauthenticated: No actor or no account
            AccountDeactivated: Account is deactivated
            InsufficientRole: Role not allowed on the resource
            AuthorizationUnavailable: Identity store down on a mutating check
        """
        decision = self.authorize(actor_id, resource, mutating=mutating,
                                  context=context, ip_address=ip_address)
        if decision.allowed:
            return decision.actor

        if decision.reason in (UNAUTHENTICATED, NO_ACCOUNT):
            raise Unauthenticated(
                "Authentication required" if decision.reason == UNAUTHENTICATED
                else "No account for this identity",
                code=decision.reason
            )
        if decision.reason == DEACTIVATED:
            raise AccountDeactivated("Account is deactivated")
        if decision.reason == STORE_UNAVAILABLE:
            raise AuthorizationUnavailable("Authorization temporarily unavailable")
        raise InsufficientRole(
            f"Requires one of: {', '.join(decision.required_roles)}",
            required_roles=decision.required_roles
        )

    def explain_decision(self, actor_id: Optional[str], resource: str) -> Dict[str, Any]:
        """
        Explain access control decision without auditing it.

        Args:
            actor_id: User ID
            resource: Route path or action name

        Returns:
            Dictionary with decision and reasoning
        """
        match = self.match_rule(resource)
        user = self.users.get_user(actor_id) if actor_id else None
        if not actor_id:
            reason = UNAUTHENTICATED
        elif user is None:
            reason = NO_ACCOUNT
        elif not user.is_active:
            reason = DEACTIVATED
        elif match is not None and user.role not in match[1]:
            reason = INSUFFICIENT_ROLE
        else:
            reason = None

        return {
            'allowed': reason is None,
            'reason': reason,
            'resource': resource,
            'matched_prefix': match[0] if match else None,
            'required_roles': sort_roles(match[1]) if match else [],
            'user': user.to_dict() if user else None,
        }

    def get_rules(self) -> List[Dict[str, Any]]:
        """Get all rules, most specific first."""
        return [
            {'prefix': prefix, 'roles': sort_roles(self.rules[prefix])}
            for prefix in self._ordered
        ]
