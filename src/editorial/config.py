"""
Editorial Configuration

Runtime settings with defaults overridable from ``EDITORIAL_*`` environment
variables.
"""

import os
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """
    Editorial core settings.

    Attributes:
        database_path: SQLite database file
        doi_org: DOI registrant organization segment
        doi_dept: DOI department segment
        transition_timeout: Seconds a transition may take before it is rolled back
        api_key: Shared secret for service endpoints (None = open)
        search_sync_url: Webhook receiving paper index signals
        backup_url: Webhook of the cold-storage backup service
        notification_url: Webhook of the notification (email) service
        webhook_timeout: Outbound request timeout in seconds
        webhook_retries: Outbound attempts per signal
        async_hooks: Deliver outbound signals from a background worker
        log_level: Root logging level
        cors_origins: Allowed CORS origins for the API
    """
    database_path: str = "data/editorial.db"
    doi_org: str = "ISUFST"
    doi_dept: str = "CICT"
    transition_timeout: float = 10.0
    api_key: Optional[str] = None
    search_sync_url: Optional[str] = None
    backup_url: Optional[str] = None
    notification_url: Optional[str] = None
    webhook_timeout: int = 30
    webhook_retries: int = 3
    async_hooks: bool = True
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, **overrides) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            **overrides: Values taking precedence over the environment

        Returns:
            Settings instance
        """
        settings = cls(
            database_path=os.getenv("EDITORIAL_DB_PATH", "data/editorial.db"),
            doi_org=os.getenv("EDITORIAL_DOI_ORG", "ISUFST"),
            doi_dept=os.getenv("EDITORIAL_DOI_DEPT", "CICT"),
            transition_timeout=float(os.getenv("EDITORIAL_TRANSITION_TIMEOUT", "10")),
            api_key=os.getenv("EDITORIAL_API_KEY"),
            search_sync_url=os.getenv("EDITORIAL_SEARCH_SYNC_URL"),
            backup_url=os.getenv("EDITORIAL_BACKUP_URL"),
            notification_url=os.getenv("EDITORIAL_NOTIFY_URL"),
            webhook_timeout=int(os.getenv("EDITORIAL_WEBHOOK_TIMEOUT", "30")),
            webhook_retries=int(os.getenv("EDITORIAL_WEBHOOK_RETRIES", "3")),
            async_hooks=_env_bool("EDITORIAL_ASYNC_HOOKS", True),
            log_level=os.getenv("EDITORIAL_LOG_LEVEL", "INFO"),
            cors_origins=_env_list("EDITORIAL_CORS_ORIGINS", ["*"]),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(settings, key, value)
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (api_key masked)."""
        data = asdict(self)
        if data['api_key']:
            data['api_key'] = '***'
        return data


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
