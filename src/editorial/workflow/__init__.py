"""
Paper Workflow

Provides:
- Paper lifecycle states and transition table
- Atomic per-year DOI allocation
- Workflow engine for transitions, review activity and post-publication tasks
"""

from .states import (
    PaperStatus,
    ALLOWED_TRANSITIONS,
    TRANSITION_ACTIONS,
    PUBLICATION_STEPS,
    validate_status_transition,
)
from .doi import DoiAllocator, format_doi
from .models import Paper, PaperAuthor, ReviewerAssignment, Comment
from .repository import PaperRepository
from .engine import PaperWorkflowEngine

__all__ = [
    'PaperStatus',
    'ALLOWED_TRANSITIONS',
    'TRANSITION_ACTIONS',
    'PUBLICATION_STEPS',
    'validate_status_transition',
    'DoiAllocator',
    'format_doi',
    'Paper',
    'PaperAuthor',
    'ReviewerAssignment',
    'Comment',
    'PaperRepository',
    'PaperWorkflowEngine',
]
