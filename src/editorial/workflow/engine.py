"""
Paper Workflow Engine

Drives papers through SUBMITTED -> UNDER_REVIEW -> ACCEPTED -> PUBLISHED
(or REJECTED). Every state-changing call is authorized, validated against
the transition table and committed together with its audit entry. Status
moves use a compare-and-swap on the current status so concurrent editors
cannot both win. Publishing allocates the DOI inside the same transaction.

External signals (search index, backup, notification) are fired only after
commit and never affect the outcome of the call.
"""

import time
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable, Iterable, Iterator, Tuple, Union

from editorial.authorization.audit_logger import AuditLogger, AuditAction, SYSTEM_ACTOR
from editorial.authorization.policy_engine import PolicyEngine
from editorial.authorization.user_manager import Role, User, UserManager
from editorial.errors import (
    AuditWriteFailure,
    ConcurrentModification,
    InvalidTransition,
    NotFound,
    TransitionTimeout,
    ValidationError,
    AllocationFailure,
)
from editorial.storage.database import Database, utc_now, to_iso, from_iso
from editorial.storage.integration_hooks import IntegrationHookManager, HookEvent
from .doi import DoiAllocator
from .models import Paper, PaperAuthor, ReviewerAssignment, Comment
from .repository import PaperRepository, new_id
from .states import (
    PaperStatus,
    NOTIFY_STATUSES,
    PUBLICATION_STEPS,
    TRANSITION_ACTIONS,
    validate_status_transition,
)


# Roles a reviewer assignment may target
REVIEWER_ROLES = {Role.REVIEWER, Role.EDITOR}


class _StatusChanged(Exception):
    """Compare-and-swap found a different status than expected."""


class _PaperClosed(Exception):
    """Paper left the open states before the write lock was taken."""

    def __init__(self, status: Optional[PaperStatus]):
        super().__init__(status.value if status else "deleted")
        self.status = status


class PaperWorkflowEngine:
    """
    Paper lifecycle engine.

    Features:
    - Role-scoped status transitions with compare-and-swap
    - DOI allocation on publish in the same transaction
    - Reviewer assignment and comments on open papers
    - Archive, delete and cold-storage backup operations
    - Publication tracker steps
    - Post-commit search, backup and notification signals
    """

    def __init__(
        self,
        db: Database,
        users: UserManager,
        policy: PolicyEngine,
        audit_logger: AuditLogger,
        doi_allocator: DoiAllocator,
        hooks: Optional[IntegrationHookManager] = None,
        transition_timeout: Optional[float] = 10.0,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize workflow engine.

        Args:
            db: Shared database handle
            users: Identity and role store
            policy: Authorization engine
            audit_logger: Audit trail
            doi_allocator: DOI allocator
            hooks: Outbound signal manager (None = no signals)
            transition_timeout: Seconds a transition may run before it is rolled back
            clock: Source of the current time (UTC)
        """
        self.db = db
        self.users = users
        self.policy = policy
        self.audit = audit_logger
        self.doi = doi_allocator
        self.hooks = hooks
        self.transition_timeout = transition_timeout
        self.clock = clock or utc_now
        self.repo = PaperRepository(db)
        self.logger = logging.getLogger(__name__)

    # Helpers

    def _fire(self, event: HookEvent, data: Dict[str, Any]):
        if self.hooks is not None:
            self.hooks.fire_event(event, data)

    def _audit_rejection(
        self,
        actor: Optional[User],
        actor_id: str,
        action: str,
        paper_id: str,
        detail: Dict[str, Any]
    ):
        """Record a rejected call; the caller still gets the original error."""
        try:
            self.audit.record(
                actor_id=actor_id,
                actor_email=actor.email if actor else None,
                action=action,
                target_type='paper',
                target_id=paper_id,
                detail=detail,
            )
        except AuditWriteFailure as e:
            self.logger.warning(f"Could not audit rejected {action} on {paper_id}: {e}")

    def _check_deadline(self, started: float, paper_id: str):
        if self.transition_timeout is None:
            return
        elapsed = time.monotonic() - started
        if elapsed >= self.transition_timeout:
            raise TransitionTimeout(
                f"Transition of {paper_id} exceeded {self.transition_timeout}s ({elapsed:.3f}s)"
            )

    @staticmethod
    def _coerce_status(value: Union[PaperStatus, str]) -> PaperStatus:
        if isinstance(value, PaperStatus):
            return value
        return PaperStatus.from_string(value)

    def _open_paper(
        self,
        actor: Optional[User],
        actor_id: str,
        action: str,
        paper_id: str
    ) -> Paper:
        """Load a paper that still accepts review activity."""
        paper = self.repo.get(paper_id)
        if paper is None:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
            raise NotFound(f"Paper not found: {paper_id}")
        if paper.status.is_terminal:
            raise self._closed_error(actor, actor_id, action, paper_id, paper.status)
        return paper

    def _closed_error(
        self,
        actor: Optional[User],
        actor_id: str,
        action: str,
        paper_id: str,
        status: Optional[PaperStatus]
    ) -> ValidationError:
        if status is None:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
            return NotFound(f"Paper not found: {paper_id}")
        self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {
            'reason': 'paper_closed', 'status': status.value
        })
        return ValidationError(f"Paper {paper_id} is {status.value} and closed for review", code='paper_closed')

    @contextmanager
    def _open_paper_transaction(
        self,
        actor: User,
        actor_id: str,
        action: str,
        paper_id: str
    ) -> Iterator[Any]:
        """Write transaction that first re-checks, under the write lock, that the paper is open."""
        try:
            with self.db.transaction() as conn:
                status = self.repo.locked_status(conn, paper_id)
                if status is None or status.is_terminal:
                    raise _PaperClosed(status)
                yield conn
        except _PaperClosed as e:
            self.logger.info(f"Paper {paper_id} closed before {action} by {actor_id} could be written")
            raise self._closed_error(actor, actor_id, action, paper_id, e.status)

    def _validate_reviewer(self, reviewer_id: str) -> User:
        reviewer = self.users.get_user(reviewer_id)
        if reviewer is None:
            raise ValidationError(f"Reviewer not found: {reviewer_id}")
        if reviewer.role not in REVIEWER_ROLES:
            raise ValidationError(
                f"User {reviewer_id} has role {reviewer.role.value}; "
                f"reviewers must be REVIEWER or EDITOR"
            )
        if not reviewer.is_active:
            raise ValidationError(f"Reviewer {reviewer_id} is deactivated")
        return reviewer

    # Submission and reads

    def submit_paper(
        self,
        actor_id: str,
        title: str,
        abstract: str,
        authors: Optional[Iterable[Union[PaperAuthor, Dict[str, Any]]]] = None,
        category: Optional[str] = None,
        keywords: Optional[List[str]] = None,
        file_url: Optional[str] = None,
        original_name: Optional[str] = None
    ) -> Paper:
        """
        Submit a new paper in SUBMITTED status.

        Without an author list the submitter becomes the sole, corresponding
        author. Submission is not a privileged action and is not audited.
        """
        actor = self.policy.require(actor_id, "paper.create", mutating=True)

        if not title or not title.strip():
            raise ValidationError("Title is required")

        author_list = [
            a if isinstance(a, PaperAuthor) else PaperAuthor.from_dict(a)
            for a in (authors or [])
        ]
        if not author_list:
            author_list = [PaperAuthor(
                name=actor.name or actor.email,
                email=actor.email,
                is_corresponding=True
            )]
        if any(not a.name or not a.name.strip() for a in author_list):
            raise ValidationError("Every author needs a name")

        now = to_iso(self.clock())
        paper = Paper(
            paper_id=new_id(),
            title=title.strip(),
            abstract=(abstract or "").strip(),
            status=PaperStatus.SUBMITTED,
            submitted_by=actor.user_id,
            authors=author_list,
            category=category,
            keywords=[k.strip() for k in (keywords or []) if k and k.strip()],
            file_url=file_url,
            original_name=original_name,
            created_at=now,
            updated_at=now,
        )
        with self.db.transaction() as conn:
            self.repo.insert(conn, paper)

        self.logger.info(f"Paper {paper.paper_id} submitted by {actor.user_id}")
        self._fire(HookEvent.PAPER_CREATED, paper.summary())
        return paper

    def get_paper(self, actor_id: str, paper_id: str) -> Paper:
        self.policy.require(actor_id, "paper.read")
        return self.repo.require(paper_id)

    def list_papers(
        self,
        actor_id: str,
        status: Optional[Union[PaperStatus, str]] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Paper], int]:
        """
        List papers visible to the actor.

        Authors only see their own submissions.
        """
        actor = self.policy.require(actor_id, "paper.read")
        submitted_by = None
        if actor is None or actor.role == Role.AUTHOR:
            submitted_by = actor_id
        return self.repo.list_papers(
            status=self._coerce_status(status) if status else None,
            category=category,
            search=search,
            submitted_by=submitted_by,
            page=page,
            page_size=page_size,
        )

    def list_reviewers(self, actor_id: str, paper_id: str) -> List[ReviewerAssignment]:
        self.policy.require(actor_id, "paper.comments")
        self.repo.require(paper_id)
        return self.repo.list_reviewers(paper_id)

    def list_comments(self, actor_id: str, paper_id: str) -> List[Comment]:
        self.policy.require(actor_id, "paper.comments")
        self.repo.require(paper_id)
        return self.repo.list_comments(paper_id)

    def get_history(self, actor_id: str, paper_id: str) -> List[Dict[str, Any]]:
        """Audit entries for a paper, oldest first."""
        self.policy.require(actor_id, "audit.read")
        return [e.to_dict() for e in self.audit.get_target_history('paper', paper_id)]

    # Transitions

    def transition(
        self,
        actor_id: str,
        paper_id: str,
        target: Union[PaperStatus, str],
        expected_from: Optional[Union[PaperStatus, str]] = None,
        reviewer_ids: Optional[Iterable[str]] = None,
        note: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> Paper:
        """
        Move a paper to ``target``.

        Args:
            actor_id: Acting user ID
            paper_id: Paper ID
            target: Desired status
            expected_from: Status the caller last saw; a mismatch is a conflict
            reviewer_ids: Reviewers to assign when moving to UNDER_REVIEW
            note: Free-text note stored in the audit entry
            ip_address: Client IP address

        Returns:
            Updated paper

        Raises:
            AuthorizationError: Actor may not perform this transition
            InvalidTransition: Edge not in the transition table
            ConcurrentModification: Status changed concurrently
            AllocationFailure: DOI could not be allocated
            AuditWriteFailure: Audit entry could not be written
            TransitionTimeout: Transaction exceeded the deadline
        """
        target = self._coerce_status(target)
        expected = self._coerce_status(expected_from) if expected_from else None
        reviewer_ids = list(dict.fromkeys(reviewer_ids or []))
        context = {'paper_id': paper_id, 'target': target.value}

        # Targets without an action still go through the generic transition rule
        action = TRANSITION_ACTIONS.get(target)
        actor = self.policy.require(actor_id, action or "paper.transition", mutating=True,
                                    context=context, ip_address=ip_address)

        if action is None:
            self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_BLOCKED.value, paper_id, {
                'reason': 'invalid_target', 'target': target.value
            })
            raise InvalidTransition(f"No transition leads to {target.value}")

        if reviewer_ids and target != PaperStatus.UNDER_REVIEW:
            self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_BLOCKED.value, paper_id, {
                'reason': 'reviewers_not_allowed', 'target': target.value
            })
            raise ValidationError("Reviewers can only be assigned when starting review")

        for attempt in (1, 2):
            paper = self.repo.get(paper_id)
            if paper is None:
                self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_BLOCKED.value, paper_id, {
                    'reason': 'not_found', 'target': target.value
                })
                raise NotFound(f"Paper not found: {paper_id}")

            current = expected or paper.status
            try:
                validate_status_transition(current, target)
            except InvalidTransition as e:
                if attempt == 2:
                    # The status we retried from moved on under us
                    self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_CONFLICT.value, paper_id, {
                        'from': current.value, 'to': target.value
                    })
                    raise ConcurrentModification(
                        f"Paper {paper_id} changed to {current.value} during the transition"
                    ) from e
                self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_BLOCKED.value, paper_id, {
                    'reason': 'invalid_transition', 'from': current.value, 'to': target.value
                })
                raise

            try:
                reviewers = [self._validate_reviewer(r) for r in reviewer_ids]
            except ValidationError as e:
                self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_BLOCKED.value, paper_id, {
                    'reason': 'invalid_reviewer', 'message': e.message
                })
                raise

            try:
                updated = self._commit_transition(
                    actor, paper, current, target, reviewers, note, ip_address
                )
            except _StatusChanged:
                if expected is None and attempt == 1:
                    self.logger.info(f"Status of {paper_id} changed concurrently, retrying once")
                    continue
                self._audit_rejection(actor, actor_id, AuditAction.TRANSITION_CONFLICT.value, paper_id, {
                    'from': current.value, 'to': target.value
                })
                raise ConcurrentModification(
                    f"Paper {paper_id} is no longer {current.value}"
                )
            except (TransitionTimeout, AllocationFailure) as e:
                self.logger.error(f"Transition {current.value} -> {target.value} of {paper_id} failed: {e}")
                self._audit_rejection(actor, actor_id, 'paper.transition.failed', paper_id, {
                    'reason': e.code, 'from': current.value, 'to': target.value
                })
                raise

            self._after_transition(actor, current, updated, note)
            return updated

        # Unreachable: the second attempt either returns or raises
        raise ConcurrentModification(f"Paper {paper_id} changed concurrently")

    def _commit_transition(
        self,
        actor: User,
        paper: Paper,
        current: PaperStatus,
        target: PaperStatus,
        reviewers: List[User],
        note: Optional[str],
        ip_address: Optional[str]
    ) -> Paper:
        started = time.monotonic()
        action = TRANSITION_ACTIONS[target]

        with self.db.transaction() as conn:
            now = self.clock()
            now_iso = to_iso(now)
            doi = None
            published_at = None
            if target == PaperStatus.PUBLISHED:
                doi = self.doi.allocate(now.year, conn=conn)
                published_at = now_iso

            if not self.repo.compare_and_set_status(
                conn, paper.paper_id, current, target, now_iso,
                doi=doi, published_at=published_at
            ):
                raise _StatusChanged()

            assigned = []
            for reviewer in reviewers:
                if self.repo.is_reviewer(paper.paper_id, reviewer.user_id):
                    continue
                self.repo.add_reviewer(conn, ReviewerAssignment(
                    assignment_id=new_id(),
                    paper_id=paper.paper_id,
                    reviewer_id=reviewer.user_id,
                    assigned_by=actor.user_id,
                    assigned_at=now_iso,
                ))
                assigned.append(reviewer.user_id)

            detail: Dict[str, Any] = {'from': current.value, 'to': target.value}
            if doi:
                detail['doi'] = doi
            if assigned:
                detail['reviewers'] = assigned
            if note:
                detail['note'] = note
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='paper',
                target_id=paper.paper_id,
                detail=detail,
                ip_address=ip_address,
                conn=conn,
            )

            self._check_deadline(started, paper.paper_id)

        self.logger.info(
            f"Paper {paper.paper_id}: {current.value} -> {target.value} by {actor.user_id}"
            + (f" (DOI {doi})" if doi else "")
        )
        return self.repo.require(paper.paper_id)

    def _after_transition(self, actor: User, previous: PaperStatus, paper: Paper, note: Optional[str]):
        self._fire(HookEvent.PAPER_UPDATED, paper.summary())

        if paper.status in NOTIFY_STATUSES:
            recipient = paper.corresponding_author
            self._fire(HookEvent.PAPER_STATUS_CHANGED, {
                'paper_id': paper.paper_id,
                'title': paper.title,
                'previous_status': previous.value,
                'status': paper.status.value,
                'doi': paper.doi,
                'recipient': recipient.to_dict() if recipient else None,
                'note': note,
            })

        if paper.status == PaperStatus.PUBLISHED and paper.file_url:
            self._fire(HookEvent.PAPER_BACKUP_REQUESTED, self._backup_payload(paper, actor.user_id))

    @staticmethod
    def _backup_payload(paper: Paper, requested_by: str) -> Dict[str, Any]:
        return {
            'paper_id': paper.paper_id,
            'file_url': paper.file_url,
            'title': paper.title,
            'original_name': paper.original_name,
            'requested_by': requested_by,
        }

    # Review activity

    def assign_reviewer(self, actor_id: str, paper_id: str, reviewer_id: str) -> ReviewerAssignment:
        """
        Assign a REVIEWER or EDITOR to an open paper.

        Raises:
            ValidationError: Unknown or ineligible reviewer, duplicate, or closed paper
        """
        action = AuditAction.REVIEWER_ASSIGNED.value
        actor = self.policy.require(actor_id, "paper.reviewers", mutating=True,
                                    context={'paper_id': paper_id})
        self._open_paper(actor, actor_id, action, paper_id)

        try:
            self._validate_reviewer(reviewer_id)
            if self.repo.is_reviewer(paper_id, reviewer_id):
                raise ValidationError(f"Reviewer {reviewer_id} is already assigned to {paper_id}")
        except ValidationError as e:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {
                'reason': e.code, 'reviewer_id': reviewer_id, 'message': e.message
            })
            raise

        now_iso = to_iso(self.clock())
        assignment = ReviewerAssignment(
            assignment_id=new_id(),
            paper_id=paper_id,
            reviewer_id=reviewer_id,
            assigned_by=actor.user_id,
            assigned_at=now_iso,
        )
        with self._open_paper_transaction(actor, actor_id, action, paper_id) as conn:
            self.repo.add_reviewer(conn, assignment)
            self.repo.touch(conn, paper_id, now_iso)
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='paper',
                target_id=paper_id,
                detail={'reviewer_id': reviewer_id},
                conn=conn,
            )

        self._fire(HookEvent.PAPER_UPDATED, self.repo.require(paper_id).summary())
        return assignment

    def remove_reviewer(self, actor_id: str, paper_id: str, reviewer_id: str):
        action = AuditAction.REVIEWER_REMOVED.value
        actor = self.policy.require(actor_id, "paper.reviewers", mutating=True,
                                    context={'paper_id': paper_id})
        self._open_paper(actor, actor_id, action, paper_id)

        if not self.repo.is_reviewer(paper_id, reviewer_id):
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {
                'reason': 'not_assigned', 'reviewer_id': reviewer_id
            })
            raise NotFound(f"Reviewer {reviewer_id} is not assigned to {paper_id}")

        now_iso = to_iso(self.clock())
        with self._open_paper_transaction(actor, actor_id, action, paper_id) as conn:
            if not self.repo.remove_reviewer(conn, paper_id, reviewer_id):
                raise NotFound(f"Reviewer {reviewer_id} is not assigned to {paper_id}")
            self.repo.touch(conn, paper_id, now_iso)
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='paper',
                target_id=paper_id,
                detail={'reviewer_id': reviewer_id},
                conn=conn,
            )

        self._fire(HookEvent.PAPER_UPDATED, self.repo.require(paper_id).summary())

    def add_comment(self, actor_id: str, paper_id: str, content: str) -> Comment:
        action = AuditAction.COMMENT_ADDED.value
        actor = self.policy.require(actor_id, "paper.comments", mutating=True,
                                    context={'paper_id': paper_id})
        if not content or not content.strip():
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'empty_content'})
            raise ValidationError("Content is required")
        self._open_paper(actor, actor_id, action, paper_id)

        comment = Comment(
            comment_id=new_id(),
            paper_id=paper_id,
            author_id=actor.user_id,
            content=content.strip(),
            created_at=to_iso(self.clock()),
        )
        with self._open_paper_transaction(actor, actor_id, action, paper_id) as conn:
            self.repo.add_comment(conn, comment)
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='paper',
                target_id=paper_id,
                detail={'comment_id': comment.comment_id},
                conn=conn,
            )

        self._fire(HookEvent.PAPER_UPDATED, self.repo.require(paper_id).summary())
        return comment

    # Post-publication

    def archive_paper(self, actor_id: str, paper_id: str) -> Paper:
        """Mark a published paper as archived."""
        action = AuditAction.PAPER_ARCHIVED.value
        actor = self.policy.require(actor_id, "paper.archive", mutating=True,
                                    context={'paper_id': paper_id})
        paper = self.repo.get(paper_id)
        if paper is None:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
            raise NotFound(f"Paper not found: {paper_id}")
        if paper.status != PaperStatus.PUBLISHED:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {
                'reason': 'not_published', 'status': paper.status.value
            })
            raise InvalidTransition(f"Only published papers can be archived ({paper.status.value})")
        if paper.archived_at:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'already_archived'})
            raise ValidationError(f"Paper {paper_id} is already archived")

        now_iso = to_iso(self.clock())
        with self.db.transaction() as conn:
            self.repo.set_archived(conn, paper_id, now_iso)
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='paper',
                target_id=paper_id,
                detail={'doi': paper.doi},
                conn=conn,
            )

        paper = self.repo.require(paper_id)
        self._fire(HookEvent.PAPER_UPDATED, paper.summary())
        return paper

    def update_publication_step(
        self,
        actor_id: str,
        paper_id: str,
        step: int,
        note: Optional[str] = None
    ) -> Paper:
        """
        Move a paper to another step of the publication tracker.

        Args:
            actor_id: Acting user ID (EDITOR or DEAN)
            paper_id: Paper ID
            step: Tracker step, 1 to len(PUBLICATION_STEPS)
            note: Internal note for the step (None keeps the current note)

        Returns:
            Updated paper
        """
        action = AuditAction.PUBLICATION_STEP.value
        actor = self.policy.require(actor_id, "paper.publication", mutating=True,
                                    context={'paper_id': paper_id, 'step': step})
        paper = self.repo.get(paper_id)
        if paper is None:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
            raise NotFound(f"Paper not found: {paper_id}")
        if isinstance(step, bool) or not isinstance(step, int) or not 1 <= step <= len(PUBLICATION_STEPS):
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {
                'reason': 'invalid_step', 'step': step
            })
            raise ValidationError(
                f"Publication step must be between 1 and {len(PUBLICATION_STEPS)}", code='invalid_step'
            )

        note = note.strip() if note else None
        with self.db.transaction() as conn:
            self.repo.set_publication_step(conn, paper_id, step, note, to_iso(self.clock()))
            self.audit.record(
                actor_id=actor.user_id,
                actor_email=actor.email,
                action=action,
                target_type='paper',
                target_id=paper_id,
                detail={
                    'from': paper.publication_step,
                    'to': step,
                    'label': PUBLICATION_STEPS[step - 1],
                    'note': note,
                },
                conn=conn,
            )

        paper = self.repo.require(paper_id)
        self._fire(HookEvent.PAPER_UPDATED, paper.summary())
        return paper

    def delete_paper(self, actor_id: str, paper_id: str) -> Dict[str, int]:
        """
        Delete a paper with its reviewer assignments and comments.

        Published papers keep their DOI record and can only be archived.

        Returns:
            Rows removed per table

        Raises:
            InvalidTransition: Paper is PUBLISHED
        """
        action = AuditAction.PAPER_DELETED.value
        actor = self.policy.require(actor_id, "paper.delete", mutating=True,
                                    context={'paper_id': paper_id})
        paper = self.repo.get(paper_id)
        if paper is None:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
            raise NotFound(f"Paper not found: {paper_id}")

        try:
            with self.db.transaction() as conn:
                status = self.repo.locked_status(conn, paper_id)
                if status is None or status == PaperStatus.PUBLISHED:
                    raise _PaperClosed(status)
                removed = self.repo.delete(conn, paper_id)
                self.audit.record(
                    actor_id=actor.user_id,
                    actor_email=actor.email,
                    action=action,
                    target_type='paper',
                    target_id=paper_id,
                    detail={'title': paper.title, 'status': status.value, 'removed': removed},
                    conn=conn,
                )
        except _PaperClosed as e:
            if e.status is None:
                self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
                raise NotFound(f"Paper not found: {paper_id}")
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {
                'reason': 'published', 'doi': (self.repo.get(paper_id) or paper).doi
            })
            raise InvalidTransition(f"Paper {paper_id} is published; archive it instead of deleting")

        self.logger.info(f"Paper {paper_id} deleted by {actor.user_id}")
        self._fire(HookEvent.PAPER_DELETED, {'paper_id': paper_id})
        return removed

    def request_backup(self, actor_id: str, paper_id: str) -> Dict[str, Any]:
        """Ask the cold-storage service to back up a paper's manuscript."""
        action = AuditAction.BACKUP_REQUESTED.value
        actor = self.policy.require(actor_id, "paper.backup", mutating=True,
                                    context={'paper_id': paper_id})
        paper = self.repo.get(paper_id)
        if paper is None:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'not_found'})
            raise NotFound(f"Paper not found: {paper_id}")
        if not paper.file_url:
            self._audit_rejection(actor, actor_id, f"{action}.blocked", paper_id, {'reason': 'no_file'})
            raise ValidationError(f"Paper {paper_id} has no file to back up")

        payload = self._backup_payload(paper, actor.user_id)
        self.audit.record(
            actor_id=actor.user_id,
            actor_email=actor.email,
            action=action,
            target_type='paper',
            target_id=paper_id,
            detail={'file_url': paper.file_url},
        )
        self._fire(HookEvent.PAPER_BACKUP_REQUESTED, payload)
        return payload

    def record_backup_result(self, paper_id: str, result: Dict[str, Any]) -> Paper:
        """
        Persist the storage location reported by the backup service.

        Args:
            paper_id: Paper ID
            result: ``{"success", "storage_url", "backed_up_at"}``

        Returns:
            Updated paper
        """
        if not result.get('success'):
            raise ValidationError(f"Backup of {paper_id} did not succeed: {result.get('error', 'unknown error')}")
        storage_url = result.get('storage_url')
        if not storage_url:
            raise ValidationError("Backup result is missing storage_url")

        backed_up_at = result.get('backed_up_at')
        try:
            moment = from_iso(backed_up_at) if backed_up_at else self.clock()
        except ValueError:
            raise ValidationError(f"Invalid backed_up_at timestamp: {backed_up_at!r}")

        with self.db.transaction() as conn:
            self.repo.set_backup(conn, paper_id, storage_url, to_iso(moment))
            self.audit.record(
                actor_id=SYSTEM_ACTOR,
                actor_email=None,
                action=AuditAction.BACKUP_RECORDED.value,
                target_type='paper',
                target_id=paper_id,
                detail={'storage_url': storage_url},
                conn=conn,
            )

        paper = self.repo.require(paper_id)
        self._fire(HookEvent.PAPER_UPDATED, paper.summary())
        return paper

    def backup_status(self, actor_id: str, paper_id: str) -> Dict[str, Any]:
        self.policy.require(actor_id, "paper.backup")
        paper = self.repo.require(paper_id)
        return {
            'paper_id': paper.paper_id,
            'has_backup': paper.backup_url is not None,
            'backup_url': paper.backup_url,
            'backup_at': paper.backup_at,
        }
