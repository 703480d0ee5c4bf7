"""
Workflow data models.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List

from .states import PaperStatus


@dataclass
class PaperAuthor:
    """Author listed on a paper, in byline order."""
    name: str
    email: Optional[str] = None
    is_corresponding: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaperAuthor':
        return cls(
            name=data['name'],
            email=data.get('email'),
            is_corresponding=bool(data.get('is_corresponding', False)),
        )


@dataclass
class ReviewerAssignment:
    assignment_id: str
    paper_id: str
    reviewer_id: str
    assigned_by: str
    assigned_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Comment:
    comment_id: str
    paper_id: str
    author_id: str
    content: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Paper:
    """
    Paper record.

    Attributes:
        paper_id: Unique paper identifier
        title: Paper title
        abstract: Abstract text
        status: Lifecycle status
        submitted_by: Submitting user ID
        authors: Authors in byline order
        category: Subject category
        keywords: Free keywords
        doi: Assigned on publish, immutable afterwards
        file_url: Uploaded manuscript reference
        original_name: Original manuscript file name
        created_at: ISO submission timestamp
        updated_at: ISO timestamp of last change
        published_at: ISO publish timestamp
        archived_at: ISO archive timestamp
        backup_url: Cold-storage location of the manuscript
        backup_at: ISO timestamp of the last successful backup
        publication_step: Position in the publication tracker (1-based)
        publication_note: Internal note for the current tracker step
    """
    paper_id: str
    title: str
    abstract: str
    status: PaperStatus
    submitted_by: str
    authors: List[PaperAuthor] = field(default_factory=list)
    category: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    doi: Optional[str] = None
    file_url: Optional[str] = None
    original_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    published_at: Optional[str] = None
    archived_at: Optional[str] = None
    backup_url: Optional[str] = None
    backup_at: Optional[str] = None
    publication_step: int = 1
    publication_note: Optional[str] = None

    @property
    def corresponding_author(self) -> Optional[PaperAuthor]:
        """Corresponding author, falling back to the first listed author."""
        for author in self.authors:
            if author.is_corresponding:
                return author
        return self.authors[0] if self.authors else None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data

    def summary(self) -> Dict[str, Any]:
        """Fields pushed to the search index."""
        return {
            'paper_id': self.paper_id,
            'title': self.title,
            'abstract': self.abstract,
            'authors': [a.name for a in self.authors],
            'keywords': self.keywords,
            'category': self.category,
            'status': self.status.value,
            'doi': self.doi,
            'published_at': self.published_at,
        }
