"""
Storage Layer

Provides:
- SQLite store handle shared by all editorial components
- Integration hooks for post-commit signals (search, backup, notification)
"""

from .database import Database, utc_now, to_iso, from_iso
from .integration_hooks import (
    IntegrationHookManager,
    IntegrationHook,
    WebhookHook,
    BackupHook,
    CallbackHook,
    HookEvent,
    HookPayload,
    HookResult,
    INDEX_EVENTS,
)

__all__ = [
    'Database',
    'utc_now',
    'to_iso',
    'from_iso',
    'IntegrationHookManager',
    'IntegrationHook',
    'WebhookHook',
    'BackupHook',
    'CallbackHook',
    'HookEvent',
    'HookPayload',
    'HookResult',
    'INDEX_EVENTS',
]
