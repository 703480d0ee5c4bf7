"""
Paper Repository

SQL access for papers and the records they own. Mutations take the
connection of an open transaction; the workflow engine decides the
transaction boundaries.
"""

import json
import secrets
import sqlite3
import logging
from typing import Optional, Dict, Any, List, Tuple

from editorial.errors import NotFound, ValidationError
from editorial.storage.database import Database
from .models import Paper, PaperAuthor, ReviewerAssignment, Comment
from .states import PaperStatus


def new_id() -> str:
    return secrets.token_urlsafe(16)


class PaperRepository:
    """Persistence for papers, reviewer assignments and comments."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = logging.getLogger(__name__)

    def _row_to_paper(self, row: sqlite3.Row) -> Paper:
        authors = [
            PaperAuthor(
                name=a['name'],
                email=a['email'],
                is_corresponding=bool(a['is_corresponding'])
            )
            for a in self.db.fetchall(
                "SELECT * FROM paper_authors WHERE paper_id = ? ORDER BY position",
                (row['paper_id'],)
            )
        ]
        return Paper(
            paper_id=row['paper_id'],
            title=row['title'],
            abstract=row['abstract'],
            status=PaperStatus(row['status']),
            submitted_by=row['submitted_by'],
            authors=authors,
            category=row['category'],
            keywords=json.loads(row['keywords'] or '[]'),
            doi=row['doi'],
            file_url=row['file_url'],
            original_name=row['original_name'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            published_at=row['published_at'],
            archived_at=row['archived_at'],
            backup_url=row['backup_url'],
            backup_at=row['backup_at'],
            publication_step=row['publication_step'],
            publication_note=row['publication_note'],
        )

    # Papers

    def insert(self, conn: sqlite3.Connection, paper: Paper):
        conn.execute("""
            INSERT INTO papers (
                paper_id, title, abstract, category, keywords, status,
                file_url, original_name, submitted_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            paper.paper_id,
            paper.title,
            paper.abstract,
            paper.category,
            json.dumps(paper.keywords),
            paper.status.value,
            paper.file_url,
            paper.original_name,
            paper.submitted_by,
            paper.created_at,
            paper.updated_at,
        ))
        conn.executemany("""
            INSERT INTO paper_authors (paper_id, position, name, email, is_corresponding)
            VALUES (?, ?, ?, ?, ?)
        """, [
            (paper.paper_id, position, a.name, a.email, int(a.is_corresponding))
            for position, a in enumerate(paper.authors)
        ])

    def get(self, paper_id: str) -> Optional[Paper]:
        row = self.db.fetchone("SELECT * FROM papers WHERE paper_id = ?", (paper_id,))
        return self._row_to_paper(row) if row else None

    def require(self, paper_id: str) -> Paper:
        paper = self.get(paper_id)
        if paper is None:
            raise NotFound(f"Paper not found: {paper_id}")
        return paper

    def list_papers(
        self,
        status: Optional[PaperStatus] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        submitted_by: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Paper], int]:
        """
        List papers, newest first.

        Args:
            status: Filter by status
            category: Filter by category
            search: Case-insensitive match on title, abstract or DOI
            submitted_by: Filter by submitting user
            page: 1-based page number
            page_size: Page size (capped at 100)

        Returns:
            (papers on this page, total matching)
        """
        conditions = []
        params: List[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if category:
            conditions.append("category = ?")
            params.append(category)
        if submitted_by:
            conditions.append("submitted_by = ?")
            params.append(submitted_by)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                "(LOWER(title) LIKE ? OR LOWER(abstract) LIKE ? OR LOWER(COALESCE(doi, '')) LIKE ?)"
            )
            params.extend([pattern, pattern, pattern])

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        page = max(1, page)
        page_size = max(1, min(page_size, 100))

        total = self.db.fetchone(f"SELECT COUNT(*) AS count FROM papers{where}", params)['count']
        rows = self.db.fetchall(
            f"SELECT * FROM papers{where} ORDER BY created_at DESC, paper_id LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size]
        )
        return [self._row_to_paper(r) for r in rows], total

    def compare_and_set_status(
        self,
        conn: sqlite3.Connection,
        paper_id: str,
        expected: PaperStatus,
        new: PaperStatus,
        updated_at: str,
        doi: Optional[str] = None,
        published_at: Optional[str] = None
    ) -> bool:
        """
        Move a paper from ``expected`` to ``new`` in one statement.

        Returns:
            False if the paper was no longer in ``expected``
        """
        cursor = conn.execute("""
            UPDATE papers
            SET status = ?,
                doi = COALESCE(?, doi),
                published_at = COALESCE(?, published_at),
                updated_at = ?
            WHERE paper_id = ? AND status = ?
        """, (new.value, doi, published_at, updated_at, paper_id, expected.value))
        return cursor.rowcount == 1

    def set_archived(self, conn: sqlite3.Connection, paper_id: str, archived_at: str):
        conn.execute(
            "UPDATE papers SET archived_at = ?, updated_at = ? WHERE paper_id = ?",
            (archived_at, archived_at, paper_id)
        )

    def set_backup(self, conn: sqlite3.Connection, paper_id: str, backup_url: str, backup_at: str):
        cursor = conn.execute(
            "UPDATE papers SET backup_url = ?, backup_at = ? WHERE paper_id = ?",
            (backup_url, backup_at, paper_id)
        )
        if cursor.rowcount == 0:
            raise NotFound(f"Paper not found: {paper_id}")

    def set_publication_step(
        self,
        conn: sqlite3.Connection,
        paper_id: str,
        step: int,
        note: Optional[str],
        updated_at: str
    ):
        """Record the tracker step; a None note keeps the current one."""
        conn.execute("""
            UPDATE papers
            SET publication_step = ?,
                publication_note = COALESCE(?, publication_note),
                updated_at = ?
            WHERE paper_id = ?
        """, (step, note, updated_at, paper_id))

    def locked_status(self, conn: sqlite3.Connection, paper_id: str) -> Optional[PaperStatus]:
        """
        Current status read inside a write transaction.

        The write lock is held, so the status cannot change before commit.
        """
        row = conn.execute("SELECT status FROM papers WHERE paper_id = ?", (paper_id,)).fetchone()
        return PaperStatus(row['status']) if row else None

    def touch(self, conn: sqlite3.Connection, paper_id: str, updated_at: str):
        conn.execute("UPDATE papers SET updated_at = ? WHERE paper_id = ?", (updated_at, paper_id))

    def delete(self, conn: sqlite3.Connection, paper_id: str) -> Dict[str, int]:
        """
        Delete a paper and everything it owns.

        Returns:
            Rows removed per table
        """
        removed = {}
        for table in ('paper_comments', 'reviewer_assignments', 'paper_authors', 'papers'):
            cursor = conn.execute(f"DELETE FROM {table} WHERE paper_id = ?", (paper_id,))
            removed[table] = cursor.rowcount
        return removed

    # Reviewer assignments

    def add_reviewer(self, conn: sqlite3.Connection, assignment: ReviewerAssignment):
        try:
            conn.execute("""
                INSERT INTO reviewer_assignments (
                    assignment_id, paper_id, reviewer_id, assigned_by, assigned_at
                ) VALUES (?, ?, ?, ?, ?)
            """, (
                assignment.assignment_id,
                assignment.paper_id,
                assignment.reviewer_id,
                assignment.assigned_by,
                assignment.assigned_at,
            ))
        except sqlite3.IntegrityError:
            raise ValidationError(
                f"Reviewer {assignment.reviewer_id} is already assigned to {assignment.paper_id}"
            )

    def remove_reviewer(self, conn: sqlite3.Connection, paper_id: str, reviewer_id: str) -> bool:
        cursor = conn.execute(
            "DELETE FROM reviewer_assignments WHERE paper_id = ? AND reviewer_id = ?",
            (paper_id, reviewer_id)
        )
        return cursor.rowcount > 0

    def list_reviewers(self, paper_id: str) -> List[ReviewerAssignment]:
        rows = self.db.fetchall(
            "SELECT * FROM reviewer_assignments WHERE paper_id = ? ORDER BY assigned_at, assignment_id",
            (paper_id,)
        )
        return [ReviewerAssignment(**dict(r)) for r in rows]

    def is_reviewer(self, paper_id: str, reviewer_id: str) -> bool:
        row = self.db.fetchone(
            "SELECT 1 FROM reviewer_assignments WHERE paper_id = ? AND reviewer_id = ?",
            (paper_id, reviewer_id)
        )
        return row is not None

    # Comments

    def add_comment(self, conn: sqlite3.Connection, comment: Comment):
        conn.execute("""
            INSERT INTO paper_comments (comment_id, paper_id, author_id, content, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (comment.comment_id, comment.paper_id, comment.author_id, comment.content, comment.created_at))

    def list_comments(self, paper_id: str) -> List[Comment]:
        rows = self.db.fetchall(
            "SELECT * FROM paper_comments WHERE paper_id = ? ORDER BY created_at DESC, comment_id DESC",
            (paper_id,)
        )
        return [Comment(**dict(r)) for r in rows]
