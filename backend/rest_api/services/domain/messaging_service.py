"""
Messaging Domain Service.

One-to-one and group threads between users of a tenant, with read
tracking through each participant's last_read_at.
"""

from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session, aliased

from rest_api.models import Message, MessageParticipant, MessageThread, User, UserRole
from rest_api.models.base import utcnow
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_notification_event,
)
from shared.config.constants import Limits, MessageThreadType
from shared.config.logging import messaging_logger as logger
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import MESSAGE_RECEIVED
from shared.utils.exceptions import ForbiddenError, NotFoundError, ValidationError
from shared.utils.validators import escape_like_pattern, sanitize_search_term


def _display_name(user: User | None) -> str:
    if user is None:
        return "Unknown"
    return (user.full_name or "").strip() or "Unknown"


class MessagingService:
    """Domain service for message threads."""

    def __init__(self, db: Session):
        self._db = db

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_user(self, user_id: int, role: str) -> User:
        user = self._db.scalar(select(User).where(User.id == user_id, User.is_active.is_(True)))
        if not user:
            raise NotFoundError(role, user_id, detail=f"{role} not found")
        return user

    def _participation(self, thread_id: int, user_id: int) -> MessageParticipant | None:
        return self._db.scalar(
            select(MessageParticipant).where(
                MessageParticipant.thread_id == thread_id,
                MessageParticipant.user_id == user_id,
                MessageParticipant.is_active.is_(True),
            )
        )

    def _require_participation(self, thread_id: int, user_id: int) -> MessageParticipant:
        participant = self._participation(thread_id, user_id)
        if participant is None:
            raise NotFoundError("Thread", thread_id, detail="Thread not found or access denied")
        return participant

    def _find_shared_thread(self, user_a: int, user_b: int, tenant_id: int) -> MessageThread | None:
        pa = aliased(MessageParticipant)
        pb = aliased(MessageParticipant)
        return self._db.scalar(
            select(MessageThread)
            .join(pa, and_(pa.thread_id == MessageThread.id, pa.user_id == user_a, pa.is_active.is_(True)))
            .join(pb, and_(pb.thread_id == MessageThread.id, pb.user_id == user_b, pb.is_active.is_(True)))
            .where(
                MessageThread.tenant_id == tenant_id,
                MessageThread.is_archived.is_(False),
                MessageThread.is_active.is_(True),
            )
            .order_by(MessageThread.id)
            .limit(1)
        )

    @staticmethod
    def message_output(message: Message, sender: User | None = None) -> dict[str, Any]:
        return {
            "id": message.id,
            "thread_id": message.thread_id,
            "sender_id": message.sender_id,
            "sender_name": _display_name(sender) if sender is not None else None,
            "body": message.body,
            "created_at": message.created_at,
        }

    def _unread_in_thread(self, thread_id: int, user_id: int, last_read_at) -> int:
        query = select(func.count(Message.id)).where(
            Message.thread_id == thread_id,
            Message.sender_id != user_id,
            Message.is_active.is_(True),
        )
        if last_read_at is not None:
            query = query.where(Message.created_at > last_read_at)
        return self._db.scalar(query) or 0

    def _thread_output(self, thread: MessageThread, user_id: int) -> dict[str, Any]:
        participants = self._db.execute(
            select(MessageParticipant, User)
            .join(User, User.id == MessageParticipant.user_id)
            .where(
                MessageParticipant.thread_id == thread.id,
                MessageParticipant.is_active.is_(True),
            )
            .order_by(MessageParticipant.id)
        ).all()
        mine = next((p for p, _ in participants if p.user_id == user_id), None)

        last = self._db.execute(
            select(Message, User)
            .join(User, User.id == Message.sender_id)
            .where(Message.thread_id == thread.id, Message.is_active.is_(True))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        ).first()

        return {
            "id": thread.id,
            "subject": thread.subject,
            "thread_type": thread.thread_type,
            "is_archived": thread.is_archived,
            "last_message_at": thread.last_message_at,
            "participants": [
                {"user_id": u.id, "name": _display_name(u), "avatar_url": u.avatar_url}
                for _, u in participants
            ],
            "last_message": self.message_output(*last) if last else None,
            "unread_count": self._unread_in_thread(
                thread.id, user_id, mine.last_read_at if mine else None
            ),
        }

    # =========================================================================
    # Sending
    # =========================================================================

    def send_message(
        self,
        from_user_id: int,
        body: str,
        tenant_id: int,
        to_user_id: int | None = None,
        subject: str | None = None,
        thread_id: int | None = None,
        thread_type: str = MessageThreadType.GENERAL,
    ) -> dict[str, Any]:
        """
        Send a message.

        With `thread_id` the sender must participate in that thread. Without
        it, an open thread shared with `to_user_id` is reused, or a new one
        is created.
        """
        body = (body or "").strip()
        if not body:
            raise ValidationError("Message body is required")
        if len(body) > Limits.MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message exceeds {Limits.MAX_MESSAGE_LENGTH} characters", length=len(body)
            )
        if thread_type not in MessageThreadType.ALL:
            raise ValidationError(f"Invalid thread type: {thread_type}", thread_type=thread_type)

        sender = self._get_user(from_user_id, "Sender")

        if thread_id is not None:
            thread = self._db.scalar(
                select(MessageThread).where(
                    MessageThread.id == thread_id, MessageThread.is_active.is_(True)
                )
            )
            if thread is None:
                raise NotFoundError("Thread", thread_id)
            if self._participation(thread_id, from_user_id) is None:
                raise ForbiddenError("reply to a thread you are not part of", thread_id=thread_id)
        else:
            if to_user_id is None:
                raise ValidationError("Recipient is required for a new conversation")
            if to_user_id == from_user_id:
                raise ValidationError("Cannot send a message to yourself")
            self._get_user(to_user_id, "Recipient")

            thread = self._find_shared_thread(from_user_id, to_user_id, tenant_id)
            if thread is None:
                thread = MessageThread(tenant_id=tenant_id, subject=subject, thread_type=thread_type)
                thread.set_created_by(from_user_id)
                self._db.add(thread)
                self._db.flush()
                self._db.add_all([
                    MessageParticipant(thread_id=thread.id, user_id=from_user_id),
                    MessageParticipant(thread_id=thread.id, user_id=to_user_id),
                ])

        now = utcnow()
        message = Message(
            tenant_id=thread.tenant_id,
            thread_id=thread.id,
            sender_id=from_user_id,
            body=body,
        )
        message.set_created_by(from_user_id)
        self._db.add(message)
        thread.last_message_at = now
        self._db.flush()

        # Sending counts as reading the thread
        sender_participation = self._participation(thread.id, from_user_id)
        if sender_participation is not None:
            sender_participation.last_read_at = now

        recipients = self._db.execute(
            select(User)
            .join(MessageParticipant, MessageParticipant.user_id == User.id)
            .where(
                MessageParticipant.thread_id == thread.id,
                MessageParticipant.is_active.is_(True),
                MessageParticipant.user_id != from_user_id,
                User.is_active.is_(True),
            )
        ).scalars().all()
        sender_name = (sender.full_name or "").strip() or "Someone"
        for recipient in recipients:
            # One event per recipient so each delivery retries on its own
            write_notification_event(
                self._db,
                tenant_id=thread.tenant_id,
                event_type=MESSAGE_RECEIVED,
                aggregate_type="message_thread",
                aggregate_id=thread.id,
                recipients=[recipient_from_user(recipient)],
                data={
                    "thread_id": thread.id,
                    "message_id": message.id,
                    "sender_name": sender_name,
                    "preview": body[: Limits.MESSAGE_PREVIEW_CHARS],
                },
                actor_user_id=from_user_id,
            )

        safe_commit(self._db)
        logger.info(
            "Message sent",
            thread_id=thread.id,
            message_id=message.id,
            sender_id=from_user_id,
            recipients=len(recipients),
        )
        return self.message_output(message, sender)

    # =========================================================================
    # Reading
    # =========================================================================

    def list_threads(
        self,
        user_id: int,
        tenant_id: int | None = None,
        include_archived: bool = False,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> dict[str, Any]:
        query = (
            select(MessageThread)
            .join(MessageParticipant, MessageParticipant.thread_id == MessageThread.id)
            .where(
                MessageParticipant.user_id == user_id,
                MessageParticipant.is_active.is_(True),
                MessageThread.is_active.is_(True),
            )
        )
        if not include_archived:
            query = query.where(MessageThread.is_archived.is_(False))
        if tenant_id is not None:
            query = query.where(MessageThread.tenant_id == tenant_id)

        total = self._db.scalar(select(func.count()).select_from(query.subquery())) or 0
        threads = self._db.execute(
            query.order_by(
                MessageThread.last_message_at.desc().nulls_last(), MessageThread.id.desc()
            )
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        ).scalars().all()

        return {
            "threads": [self._thread_output(t, user_id) for t in threads],
            "total_count": total,
        }

    def get_thread(
        self,
        thread_id: int,
        user_id: int,
        mark_as_read: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Thread and its visible messages in chronological order. Participants only."""
        participant = self._require_participation(thread_id, user_id)
        thread = self._db.get(MessageThread, thread_id)

        recent = self._db.execute(
            select(Message, User)
            .join(User, User.id == Message.sender_id)
            .where(Message.thread_id == thread_id, Message.is_active.is_(True))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        ).all()
        messages = [self.message_output(m, u) for m, u in reversed(recent)]

        output = self._thread_output(thread, user_id)
        if mark_as_read:
            participant.last_read_at = utcnow()
            safe_commit(self._db)
            output["unread_count"] = 0
        return {"thread": output, "messages": messages}

    def unread_count(self, user_id: int, tenant_id: int | None = None) -> dict[str, int]:
        query = (
            select(func.count(Message.id))
            .join(MessageParticipant, MessageParticipant.thread_id == Message.thread_id)
            .join(MessageThread, MessageThread.id == Message.thread_id)
            .where(
                MessageParticipant.user_id == user_id,
                MessageParticipant.is_active.is_(True),
                MessageThread.is_archived.is_(False),
                Message.sender_id != user_id,
                Message.is_active.is_(True),
                or_(
                    MessageParticipant.last_read_at.is_(None),
                    Message.created_at > MessageParticipant.last_read_at,
                ),
            )
        )
        if tenant_id is not None:
            query = query.where(MessageThread.tenant_id == tenant_id)
        return {"count": self._db.scalar(query) or 0}

    # =========================================================================
    # Thread management
    # =========================================================================

    def delete_message(self, message_id: int, user_id: int) -> dict[str, bool]:
        """Soft delete one of the caller's own messages."""
        message = self._db.scalar(
            select(Message).where(
                Message.id == message_id,
                Message.sender_id == user_id,
                Message.is_active.is_(True),
            )
        )
        if message is None:
            return {"success": False}
        message.soft_delete(user_id)
        safe_commit(self._db)
        return {"success": True}

    def archive_thread(self, thread_id: int, user_id: int) -> dict[str, bool]:
        self._require_participation(thread_id, user_id)
        self._db.execute(
            update(MessageThread)
            .where(MessageThread.id == thread_id)
            .values(is_archived=True, updated_at=utcnow(), updated_by_id=user_id)
        )
        safe_commit(self._db)
        logger.info("Thread archived", thread_id=thread_id, user_id=user_id)
        return {"success": True}

    def mark_thread_read(self, thread_id: int, user_id: int) -> dict[str, bool]:
        participant = self._participation(thread_id, user_id)
        if participant is None:
            return {"success": False}
        participant.last_read_at = utcnow()
        safe_commit(self._db)
        return {"success": True}

    def messageable_users(
        self,
        user_id: int,
        tenant_id: int,
        search: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Active users of the tenant other than the caller, for composing."""
        query = (
            select(User, UserRole.role)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                UserRole.tenant_id == tenant_id,
                UserRole.is_active.is_(True),
                User.is_active.is_(True),
                User.id != user_id,
            )
            .order_by(User.last_name, User.first_name, User.id)
        )
        term = sanitize_search_term(search)
        if term:
            pattern = f"%{escape_like_pattern(term)}%"
            query = query.where(
                or_(
                    User.first_name.ilike(pattern, escape="\\"),
                    User.last_name.ilike(pattern, escape="\\"),
                    User.email.ilike(pattern, escape="\\"),
                )
            )

        users: dict[int, dict[str, Any]] = {}
        for user, role in self._db.execute(query).all():
            if user.id in users:
                continue
            users[user.id] = {
                "id": user.id,
                "name": _display_name(user),
                "email": user.email,
                "avatar_url": user.avatar_url,
                "role": role,
            }
            if len(users) >= limit:
                break
        return list(users.values())
