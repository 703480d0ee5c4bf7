"""
Editorial API Layer

FastAPI-based REST API for the editorial workflow: paper submission and
transitions, review activity, user administration and audit queries.

The acting user is taken from the ``X-Actor-Id`` header set by the upstream
authentication gateway. Service-to-service endpoints (account sync, backup
callbacks, invite acceptance) are protected by ``X-API-Key``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from editorial.config import Settings
from editorial.core import EditorialCore
from editorial.errors import EditorialError, FatalOperationError, MalformedDOI


# Pydantic Models for Request/Response

class UserSyncRequest(BaseModel):
    """Identity reported by the authentication gateway after login."""
    user_id: str
    email: str
    name: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    affiliation: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    role: str = Field(..., description="AUTHOR, REVIEWER, EDITOR or DEAN")


class ActiveUpdateRequest(BaseModel):
    is_active: bool


class InviteRequest(BaseModel):
    email: str
    role: str = Field("AUTHOR", description="Role granted on acceptance")


class InviteAcceptRequest(BaseModel):
    """Identity created by the gateway for an invite link."""
    user_id: str
    name: Optional[str] = None


class AuthorModel(BaseModel):
    name: str
    email: Optional[str] = None
    is_corresponding: bool = False


class PaperSubmitRequest(BaseModel):
    """Request model for paper submission."""
    title: str
    abstract: str = ""
    authors: List[AuthorModel] = Field(default_factory=list)
    category: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    file_url: Optional[str] = Field(None, description="Uploaded manuscript reference")
    original_name: Optional[str] = None


class TransitionRequest(BaseModel):
    """Request model for a status transition."""
    target: str = Field(..., description="UNDER_REVIEW, ACCEPTED, REJECTED or PUBLISHED")
    expected_from: Optional[str] = Field(None, description="Status the client last saw")
    reviewer_ids: List[str] = Field(default_factory=list)
    note: Optional[str] = None


class PublicationStepRequest(BaseModel):
    step: int = Field(..., description="Publication tracker step, starting at 1")
    note: Optional[str] = None


class ReviewerRequest(BaseModel):
    reviewer_id: str


class CommentRequest(BaseModel):
    content: str


class BackupResultRequest(BaseModel):
    """Callback body from the cold-storage backup service."""
    success: bool
    storage_url: Optional[str] = None
    backed_up_at: Optional[str] = None
    error: Optional[str] = None


class EditorialAPI:
    """
    FastAPI application for the editorial workflow.

    Features:
    - Paper submission, listing and status transitions
    - Reviewer assignment and comments
    - Archive, delete and cold-storage backup
    - User administration, invites and profile
    - Publication tracker steps
    - Route guard decisions and audit log queries
    """

    def __init__(
        self,
        core: Optional[EditorialCore] = None,
        settings: Optional[Settings] = None
    ):
        """
        Initialize Editorial API.

        Args:
            core: Wired editorial core (built from settings if None)
            settings: Runtime settings (read from environment if None)
        """
        self.logger = logging.getLogger(__name__)
        self.settings = settings or (core.settings if core else Settings.from_env())
        self.core = core or EditorialCore.from_settings(self.settings)
        self.api_key = self.settings.api_key
        self.app = self._create_app()

    def _verify_api_key(self, x_api_key: Optional[str] = Header(None)):
        """Verify API key if authentication is enabled."""
        if self.api_key and x_api_key != self.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")
        return True

    @staticmethod
    def _actor(x_actor_id: Optional[str] = Header(None)) -> Optional[str]:
        """Authenticated user ID forwarded by the gateway."""
        return x_actor_id or None

    @staticmethod
    def _client_ip(request: Request) -> Optional[str]:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else None

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI application."""
        app = FastAPI(
            title="Editorial API",
            description="Editorial workflow: submission, review, publication and audit",
            version="1.0.0"
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.exception_handler(EditorialError)
        async def editorial_error_handler(request: Request, exc: EditorialError):
            if isinstance(exc, FatalOperationError):
                self.logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

        core = self.core
        workflow = core.workflow

        # Health check endpoint
        @app.get("/health", tags=["Health"])
        def health_check():
            """Health check endpoint."""
            return {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "hooks": core.hooks.list_hooks(),
            }

        # Route guard
        @app.get("/api/access", tags=["Authorization"])
        def check_access(
            request: Request,
            path: str = Query(..., description="Route path or action name"),
            actor_id: Optional[str] = Depends(self._actor)
        ):
            """Decide whether the actor may open ``path``."""
            decision = core.policy.authorize(actor_id, path, ip_address=self._client_ip(request))
            return decision.to_dict()

        # Users
        @app.post("/api/users/sync", tags=["Users"])
        def sync_user(
            body: UserSyncRequest,
            authenticated: bool = Depends(self._verify_api_key)
        ):
            """Provision the account of a freshly authenticated identity."""
            return core.users.ensure_user(body.user_id, body.email, name=body.name).to_dict()

        @app.get("/api/profile", tags=["Users"])
        def get_profile(actor_id: Optional[str] = Depends(self._actor)):
            actor = core.policy.require(actor_id, "/dashboard")
            return (actor or core.users.require_user(actor_id)).to_dict()

        @app.put("/api/profile", tags=["Users"])
        def update_profile(
            body: ProfileUpdateRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            core.policy.require(actor_id, "/dashboard", mutating=True)
            return core.users.update_profile(actor_id, **body.model_dump(exclude_unset=True)).to_dict()

        @app.get("/api/users", tags=["Users"])
        def list_users(
            role: Optional[str] = None,
            search: Optional[str] = None,
            page: int = Query(1, ge=1),
            page_size: int = Query(20, ge=1, le=100),
            actor_id: Optional[str] = Depends(self._actor)
        ):
            users, total = core.admin.list_users(actor_id, role=role, search=search,
                                                 page=page, page_size=page_size)
            return {
                "users": [u.to_dict() for u in users],
                "total": total,
                "page": page,
                "page_size": page_size,
                "total_pages": (total + page_size - 1) // page_size,
            }

        @app.put("/api/users/{user_id}/role", tags=["Users"])
        def update_role(
            user_id: str,
            body: RoleUpdateRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            return core.admin.change_role(actor_id, user_id, body.role).to_dict()

        @app.put("/api/users/{user_id}/active", tags=["Users"])
        def update_active(
            user_id: str,
            body: ActiveUpdateRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            return core.admin.set_active(actor_id, user_id, body.is_active).to_dict()

        @app.post("/api/invites", status_code=201, tags=["Users"])
        def create_invite(
            body: InviteRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            """Invite an email address; the token is returned for delivery."""
            return core.admin.create_invite(actor_id, body.email, body.role).to_dict()

        @app.get("/api/invites", tags=["Users"])
        def list_invites(
            status: Optional[str] = Query("PENDING", description="PENDING, ACCEPTED, EXPIRED, CANCELLED or ALL"),
            actor_id: Optional[str] = Depends(self._actor)
        ):
            status = None if status and status.upper() == "ALL" else status
            return {"invites": [i.to_dict() for i in core.admin.list_invites(actor_id, status=status)]}

        @app.delete("/api/invites/{invite_id}", tags=["Users"])
        def cancel_invite(invite_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return core.admin.cancel_invite(actor_id, invite_id).to_dict()

        @app.post("/api/invites/{token}/accept", status_code=201, tags=["Users"])
        def accept_invite(
            token: str,
            body: InviteAcceptRequest,
            authenticated: bool = Depends(self._verify_api_key)
        ):
            """Create the account of an invitee with the invited role."""
            return core.users.accept_invite(token, body.user_id, name=body.name).to_dict()

        # Papers
        @app.post("/api/papers", status_code=201, tags=["Papers"])
        def submit_paper(
            body: PaperSubmitRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            paper = workflow.submit_paper(
                actor_id,
                title=body.title,
                abstract=body.abstract,
                authors=[a.model_dump() for a in body.authors],
                category=body.category,
                keywords=body.keywords,
                file_url=body.file_url,
                original_name=body.original_name,
            )
            return paper.to_dict()

        @app.get("/api/papers", tags=["Papers"])
        def list_papers(
            status: Optional[str] = None,
            category: Optional[str] = None,
            search: Optional[str] = None,
            page: int = Query(1, ge=1),
            page_size: int = Query(20, ge=1, le=100),
            actor_id: Optional[str] = Depends(self._actor)
        ):
            papers, total = workflow.list_papers(
                actor_id, status=status, category=category, search=search,
                page=page, page_size=page_size
            )
            return {"papers": [p.to_dict() for p in papers], "total": total}

        @app.get("/api/papers/{paper_id}", tags=["Papers"])
        def get_paper(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return workflow.get_paper(actor_id, paper_id).to_dict()

        @app.delete("/api/papers/{paper_id}", tags=["Papers"])
        def delete_paper(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            removed = workflow.delete_paper(actor_id, paper_id)
            return {"success": True, "paper_id": paper_id, "removed": removed}

        @app.post("/api/papers/{paper_id}/transitions", tags=["Papers"])
        def transition_paper(
            paper_id: str,
            body: TransitionRequest,
            request: Request,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            """Move a paper to another status."""
            paper = workflow.transition(
                actor_id,
                paper_id,
                body.target,
                expected_from=body.expected_from,
                reviewer_ids=body.reviewer_ids,
                note=body.note,
                ip_address=self._client_ip(request),
            )
            return paper.to_dict()

        @app.post("/api/papers/{paper_id}/archive", tags=["Papers"])
        def archive_paper(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return workflow.archive_paper(actor_id, paper_id).to_dict()

        @app.put("/api/papers/{paper_id}/publication-step", tags=["Papers"])
        def update_publication_step(
            paper_id: str,
            body: PublicationStepRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            return workflow.update_publication_step(actor_id, paper_id, body.step, note=body.note).to_dict()

        @app.get("/api/papers/{paper_id}/history", tags=["Papers"])
        def paper_history(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return {"paper_id": paper_id, "entries": workflow.get_history(actor_id, paper_id)}

        # Review activity
        @app.get("/api/papers/{paper_id}/reviewers", tags=["Review"])
        def list_reviewers(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return [a.to_dict() for a in workflow.list_reviewers(actor_id, paper_id)]

        @app.post("/api/papers/{paper_id}/reviewers", status_code=201, tags=["Review"])
        def assign_reviewer(
            paper_id: str,
            body: ReviewerRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            return workflow.assign_reviewer(actor_id, paper_id, body.reviewer_id).to_dict()

        @app.delete("/api/papers/{paper_id}/reviewers/{reviewer_id}", tags=["Review"])
        def remove_reviewer(
            paper_id: str,
            reviewer_id: str,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            workflow.remove_reviewer(actor_id, paper_id, reviewer_id)
            return {"success": True}

        @app.get("/api/papers/{paper_id}/comments", tags=["Review"])
        def list_comments(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return [c.to_dict() for c in workflow.list_comments(actor_id, paper_id)]

        @app.post("/api/papers/{paper_id}/comments", status_code=201, tags=["Review"])
        def add_comment(
            paper_id: str,
            body: CommentRequest,
            actor_id: Optional[str] = Depends(self._actor)
        ):
            return workflow.add_comment(actor_id, paper_id, body.content).to_dict()

        # Backup
        @app.post("/api/papers/{paper_id}/backup", status_code=202, tags=["Backup"])
        def request_backup(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            """Queue a cold-storage backup of the paper's manuscript."""
            payload = workflow.request_backup(actor_id, paper_id)
            return {"queued": True, "paper_id": payload['paper_id']}

        @app.get("/api/papers/{paper_id}/backup", tags=["Backup"])
        def backup_status(paper_id: str, actor_id: Optional[str] = Depends(self._actor)):
            return workflow.backup_status(actor_id, paper_id)

        @app.post("/api/papers/{paper_id}/backup/result", tags=["Backup"])
        def backup_result(
            paper_id: str,
            body: BackupResultRequest,
            authenticated: bool = Depends(self._verify_api_key)
        ):
            paper = workflow.record_backup_result(paper_id, body.model_dump())
            return {"paper_id": paper.paper_id, "backup_url": paper.backup_url, "backup_at": paper.backup_at}

        # Audit
        @app.get("/api/audit-logs", tags=["Audit"])
        def get_audit_logs(
            action: Optional[str] = None,
            search: Optional[str] = None,
            page: int = Query(1, ge=1),
            page_size: int = Query(20, ge=1, le=100),
            actor_id: Optional[str] = Depends(self._actor)
        ):
            """Query audit log entries, newest first."""
            core.policy.require(actor_id, "audit.read")
            logs, total = core.audit.query(action=action, search=search, page=page, page_size=page_size)
            return {"logs": [e.to_dict() for e in logs], "total": total}

        @app.get("/api/audit-logs/statistics", tags=["Audit"])
        def get_audit_statistics(actor_id: Optional[str] = Depends(self._actor)):
            core.policy.require(actor_id, "audit.read")
            return core.audit.get_statistics()

        # DOI
        @app.get("/api/doi/{doi:path}", tags=["DOI"])
        def parse_doi(doi: str):
            """Validate a DOI and split it into year and serial."""
            try:
                year, serial = core.doi.parse(doi)
            except MalformedDOI as e:
                return JSONResponse(status_code=400, content={
                    "detail": e.to_dict(), "doi": doi, "valid": False
                })
            return {"doi": doi, "valid": True, "year": year, "serial": serial}

        return app

    def run(self, host: str = "0.0.0.0", port: int = 8000):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Factory function to create Editorial API app.

    Usage:
        uvicorn editorial.api:create_app --factory
    """
    return EditorialAPI(settings=settings).app
