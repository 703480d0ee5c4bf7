"""
User Administration

Role changes, account activation and role invites, each committed together
with its audit entry.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from editorial.authorization.audit_logger import AuditLogger, AuditAction
from editorial.authorization.policy_engine import PolicyEngine
from editorial.authorization.user_manager import Invite, InviteStatus, Role, User, UserManager
from editorial.errors import AuditWriteFailure, NotFound, ValidationError
from editorial.storage.database import Database


class UserAdministration:
    """
    Administrative operations on accounts.

    Rules:
    - Only the DEAN changes roles, never their own, and the DEAN cannot be demoted
    - EDITOR or DEAN toggle accounts, never their own, and never the DEAN's
    - EDITOR or DEAN invite new accounts, never above their own role
    """

    def __init__(
        self,
        db: Database,
        users: UserManager,
        policy: PolicyEngine,
        audit_logger: AuditLogger
    ):
        self.db = db
        self.users = users
        self.policy = policy
        self.audit = audit_logger
        self.logger = logging.getLogger(__name__)

    def _reject(self, actor: User, action: str, target_id: str, message: str, reason: str,
                error=ValidationError, target_type: str = 'user'):
        try:
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=f"{action}.blocked",
                target_type=target_type,
                target_id=target_id,
                detail={'reason': reason},
            )
        except AuditWriteFailure as e:
            self.logger.warning(f"Could not audit rejected {action} on {target_id}: {e}")
        raise error(message, code=reason)

    def list_users(
        self,
        actor_id: str,
        role: Optional[Union[Role, str]] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[User], int]:
        self.policy.require(actor_id, "user.read")
        if isinstance(role, str):
            role = Role.from_string(role)
        return self.users.list_users(role=role, search=search, page=page, page_size=page_size)

    def change_role(self, actor_id: str, user_id: str, new_role: Union[Role, str]) -> User:
        """
        Change a user's role.

        Args:
            actor_id: Acting user ID (must be DEAN)
            user_id: Target user ID
            new_role: Role to assign

        Returns:
            Updated user

        Raises:
            AuthorizationError: Actor is not an active DEAN
            ValidationError: Self change or demoting the DEAN
            NotFound: Unknown target
        """
        action = AuditAction.USER_ROLE_CHANGED.value
        if isinstance(new_role, str):
            new_role = Role.from_string(new_role)
        actor = self.policy.require(actor_id, "user.role", mutating=True,
                                    context={'user_id': user_id, 'role': new_role.value})

        if user_id == actor.user_id:
            self._reject(actor, action, user_id, "Cannot change your own role", 'self_change')

        target = self.users.get_user(user_id)
        if target is None:
            self._reject(actor, action, user_id, f"User not found: {user_id}", 'not_found', NotFound)
        if target.role == Role.DEAN and new_role != Role.DEAN:
            self._reject(actor, action, user_id, "Cannot demote the Dean", 'protected_account')
        if target.role == new_role:
            return target

        with self.db.transaction() as conn:
            self.users.set_role(user_id, new_role, conn)
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='user',
                target_id=user_id,
                detail={'from': target.role.value, 'to': new_role.value},
                conn=conn,
            )

        self.logger.info(f"Role of {user_id} changed {target.role.value} -> {new_role.value} by {actor.user_id}")
        return self.users.require_user(user_id)

    def set_active(self, actor_id: str, user_id: str, is_active: bool) -> User:
        """
        Activate or deactivate an account.

        Raises:
            AuthorizationError: Actor is not an active EDITOR or DEAN
            ValidationError: Self change or deactivating the DEAN
            NotFound: Unknown target
        """
        action = (AuditAction.USER_ACTIVATED if is_active else AuditAction.USER_DEACTIVATED).value
        actor = self.policy.require(actor_id, "user.status", mutating=True,
                                    context={'user_id': user_id, 'is_active': is_active})

        if user_id == actor.user_id:
            self._reject(actor, action, user_id, "Cannot deactivate your own account", 'self_change')

        target = self.users.get_user(user_id)
        if target is None:
            self._reject(actor, action, user_id, f"User not found: {user_id}", 'not_found', NotFound)
        if target.role == Role.DEAN and not is_active:
            self._reject(actor, action, user_id, "Cannot deactivate the Dean", 'protected_account')
        if target.is_active == is_active:
            return target

        with self.db.transaction() as conn:
            self.users.set_active(user_id, is_active, conn)
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='user',
                target_id=user_id,
                detail={'email': target.email},
                conn=conn,
            )

        self.logger.info(f"User {user_id} {'activated' if is_active else 'deactivated'} by {actor.user_id}")
        return self.users.require_user(user_id)

    def toggle_active(self, actor_id: str, user_id: str) -> User:
        # set_active authorizes and rejects unknown targets
        target = self.users.get_user(user_id)
        return self.set_active(actor_id, user_id, not target.is_active if target else False)

    def summary(self, actor_id: str) -> Dict[str, Any]:
        """Account counts per role."""
        self.policy.require(actor_id, "user.read")
        return {'by_role': self.users.count_by_role()}

    # Invites

    def create_invite(self, actor_id: str, email: str, role: Union[Role, str] = Role.AUTHOR) -> Invite:
        """
        Invite an email address to join with ``role``.

        Args:
            actor_id: Acting user ID (EDITOR or DEAN)
            email: Invited email address
            role: Role granted when the invite is accepted

        Returns:
            Created invite, including the token to hand to the invitee

        Raises:
            AuthorizationError: Actor is not an active EDITOR or DEAN
            ValidationError: Role above the actor's, existing account, pending invite
        """
        action = AuditAction.INVITE_CREATED.value
        if isinstance(role, str):
            role = Role.from_string(role)
        actor = self.policy.require(actor_id, "user.invite", mutating=True,
                                    context={'email': email, 'role': role.value})

        if not actor.role.at_least(role):
            self._reject(actor, action, email, f"Cannot invite a {role.value} as {actor.role.value}",
                         'role_above_actor', target_type='invite')

        try:
            with self.db.transaction() as conn:
                invite = self.users.create_invite(email, role=role, invited_by=actor.user_id)
                self.audit.record(
                    actor_id=actor.user_id,
                    actor_email=actor.email,
                    action=action,
                    target_type='invite',
                    target_id=invite.invite_id,
                    detail={'email': invite.email, 'role': role.value, 'expires_at': invite.expires_at},
                    conn=conn,
                )
        except ValidationError as e:
            self._reject(actor, action, email, e.message, e.code, target_type='invite')

        return invite

    def list_invites(
        self,
        actor_id: str,
        status: Optional[Union[InviteStatus, str]] = InviteStatus.PENDING
    ) -> List[Invite]:
        """List invites, pending and unexpired by default; ``None`` lists all."""
        self.policy.require(actor_id, "user.read")
        if isinstance(status, str):
            status = InviteStatus.from_string(status)
        return self.users.list_invites(status=status)

    def cancel_invite(self, actor_id: str, invite_id: str) -> Invite:
        """
        Cancel a pending invite.

        Raises:
            NotFound: Unknown invite
            ValidationError: Invite is no longer pending
        """
        action = AuditAction.INVITE_CANCELLED.value
        actor = self.policy.require(actor_id, "user.invite", mutating=True,
                                    context={'invite_id': invite_id})

        invite = self.users.get_invite(invite_id)
        if invite is None:
            self._reject(actor, action, invite_id, f"Invite not found: {invite_id}", 'not_found',
                         NotFound, target_type='invite')

        with self.db.transaction() as conn:
            cancelled = self.users.close_invite(invite_id, InviteStatus.CANCELLED, conn)
            if cancelled:
                self.audit.record(
                    actor_id=actor.user_id,
                    actor_email=actor.email,
                    action=action,
                    target_type='invite',
                    target_id=invite_id,
                    detail={'email': invite.email, 'role': invite.role.value},
                    conn=conn,
                )
        if not cancelled:
            self._reject(actor, action, invite_id, f"Invite {invite_id} is no longer pending",
                         'invite_not_pending', target_type='invite')

        self.logger.info(f"Invite {invite_id} for {invite.email} cancelled by {actor.user_id}")
        return self.users.get_invite(invite_id)
