"""
Messaging endpoints - /api/messages/*

Every route acts for the signed-in user; thread access is checked by
participation, so nobody can read a thread they are not part of.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from rest_api.routers._common import Pagination, get_pagination, get_tenant_id, get_user_id
from rest_api.services.domain import MessagingService
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user
from shared.utils.admin_schemas import MessageSend
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.post("", status_code=status.HTTP_201_CREATED)
def send_message(
    body: MessageSend,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    """Start a conversation (to_user_id) or reply in one (thread_id)."""
    return ok(MessagingService(db).send_message(
        from_user_id=get_user_id(user),
        body=body.body,
        tenant_id=get_tenant_id(user),
        to_user_id=body.to_user_id,
        subject=body.subject,
        thread_id=body.thread_id,
        thread_type=body.thread_type,
    ))


@router.get("/threads")
def list_threads(
    include_archived: bool = False,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    result = MessagingService(db).list_threads(
        get_user_id(user),
        tenant_id=get_tenant_id(user),
        include_archived=include_archived,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return ok({**result, "pagination": pagination.to_dict(total=result["total_count"])})


@router.get("/threads/{thread_id}")
def get_thread(
    thread_id: int,
    mark_as_read: bool = True,
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(MessagingService(db).get_thread(
        thread_id, get_user_id(user), mark_as_read=mark_as_read, limit=limit, offset=offset
    ))


@router.get("/unread")
def unread_count(db: Session = Depends(get_db), user: dict = Depends(current_user)) -> dict:
    return ok(MessagingService(db).unread_count(get_user_id(user), get_tenant_id(user)))


@router.delete("/{message_id}")
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    """Senders may delete their own messages."""
    return ok(MessagingService(db).delete_message(message_id, get_user_id(user)))


@router.post("/threads/{thread_id}/archive")
def archive_thread(
    thread_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(MessagingService(db).archive_thread(thread_id, get_user_id(user)))


@router.post("/threads/{thread_id}/read")
def mark_thread_read(
    thread_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(MessagingService(db).mark_thread_read(thread_id, get_user_id(user)))


@router.get("/recipients")
def recipients(
    search: str | None = None,
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(MessagingService(db).messageable_users(
        get_user_id(user), get_tenant_id(user), search=search, limit=limit
    ))
