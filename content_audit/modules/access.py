"""
Ownership lookups and suggestion lifecycle transitions shared by the
page-facing services.

A record owned by somebody else is reported exactly like a missing one.
"""

from typing import Union

from sqlalchemy.orm import Session

from content_audit.database.models import (
    AuditPage, AuditProject, AutoOptimizeChange, ChangeStatus, InternalLinkSuggestion,
)
from content_audit.errors import NotFoundError, PreconditionFailedError

Suggestion = Union[AutoOptimizeChange, InternalLinkSuggestion]


def get_owned_project(db: Session, user_id: str, project_id: int) -> AuditProject:
    project = db.get(AuditProject, project_id)
    if project is None or project.owner_id != user_id:
        raise NotFoundError("Project not found")
    return project


def get_owned_page(db: Session, user_id: str, page_id: int) -> AuditPage:
    page = db.get(AuditPage, page_id)
    if page is None or page.project.owner_id != user_id:
        raise NotFoundError("Page not found")
    return page


def get_owned_suggestion(db: Session, model: type, user_id: str, suggestion_id: int) -> Suggestion:
    record = db.get(model, suggestion_id)
    if record is None or record.page.project.owner_id != user_id:
        raise NotFoundError("Suggestion not found")
    return record


def transition(record: Suggestion, status: ChangeStatus) -> None:
    """Move a suggestion out of ``suggested``; applied and rejected are final."""
    if status == ChangeStatus.SUGGESTED:
        raise PreconditionFailedError("Suggestions cannot be moved back to suggested")
    if record.status != ChangeStatus.SUGGESTED.value:
        raise PreconditionFailedError(
            f"Suggestion is already {record.status}. Only suggested items can be {status.value}."
        )
    record.status = status.value
