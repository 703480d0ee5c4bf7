"""
Editorial Core

Builds the editorial components around one store handle and one hook
manager. Create it once at process start and pass it to the API or CLI.
"""

import logging
from typing import Callable, Optional
from datetime import datetime

from editorial.administration import UserAdministration
from editorial.authorization.audit_logger import AuditLogger
from editorial.authorization.policy_engine import PolicyEngine
from editorial.authorization.user_manager import UserManager
from editorial.config import Settings
from editorial.storage.database import Database
from editorial.storage.integration_hooks import (
    BackupHook,
    HookEvent,
    INDEX_EVENTS,
    IntegrationHookManager,
    WebhookHook,
)
from editorial.workflow.doi import DoiAllocator
from editorial.workflow.engine import PaperWorkflowEngine


class EditorialCore:
    """Container for the wired editorial components."""

    def __init__(
        self,
        db: Database,
        settings: Optional[Settings] = None,
        hooks: Optional[IntegrationHookManager] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Wire components around an existing store handle.

        Args:
            db: Shared database handle
            settings: Runtime settings (defaults used if None)
            hooks: Outbound signal manager (None = synchronous manager without hooks)
            clock: Source of the current time for accounts, invites and the workflow
        """
        self.settings = settings or Settings()
        self.db = db
        self.logger = logging.getLogger(__name__)

        self.hooks = hooks or IntegrationHookManager(async_execution=False)
        self.users = UserManager(db, clock=clock)
        self.audit = AuditLogger(db)
        self.policy = PolicyEngine(self.users, self.audit)
        self.doi = DoiAllocator(db, org=self.settings.doi_org, dept=self.settings.doi_dept)
        self.workflow = PaperWorkflowEngine(
            db,
            users=self.users,
            policy=self.policy,
            audit_logger=self.audit,
            doi_allocator=self.doi,
            hooks=self.hooks,
            transition_timeout=self.settings.transition_timeout,
            clock=clock,
        )
        self.admin = UserAdministration(db, self.users, self.policy, self.audit)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'EditorialCore':
        """
        Build the core and register webhooks from settings.

        Args:
            settings: Runtime settings (read from environment if None)

        Returns:
            EditorialCore
        """
        settings = settings or Settings.from_env()
        db = Database(settings.database_path)
        hooks = IntegrationHookManager(async_execution=settings.async_hooks)
        core = cls(db, settings=settings, hooks=hooks)

        webhook_options = {
            'timeout': settings.webhook_timeout,
            'retry_count': settings.webhook_retries,
        }
        if settings.search_sync_url:
            hooks.register_hook(WebhookHook(
                "search_sync", settings.search_sync_url, events=INDEX_EVENTS, **webhook_options
            ))
        if settings.backup_url:
            hooks.register_hook(BackupHook(
                "cold_storage_backup", settings.backup_url,
                on_result=core.workflow.record_backup_result, **webhook_options
            ))
        if settings.notification_url:
            hooks.register_hook(WebhookHook(
                "notifications", settings.notification_url,
                events=[HookEvent.PAPER_STATUS_CHANGED], **webhook_options
            ))

        core.logger.info(f"Editorial core ready (database: {settings.database_path})")
        return core

    def close(self):
        """Deliver pending signals and close the store."""
        self.hooks.shutdown()
        self.db.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
