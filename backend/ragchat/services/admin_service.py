"""
Admin Service: user management and chat analytics for administrators.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ragchat.core.errors import ConversationNotFound, TargetUserNotFound
from ragchat.models.chat_history import (
    Conversation,
    Message,
    MessageFeedback,
    Participant,
)
from ragchat.models.user import Role, User, UserRole
from ragchat.services.credential_store import ADMIN_ROLE, USER_ROLE, credential_store

logger = logging.getLogger(__name__)


def _page_bounds(page: int, limit: int) -> tuple:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    return page, limit


def _round_avg(value: Optional[float]) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


class AdminService:
    # --- users ---

    def list_users(
        self,
        db: Session,
        q: Optional[str] = None,
        role: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Paginated user listing; each row carries its role names."""
        page, limit = _page_bounds(page, limit)

        query = db.query(User)
        if q:
            pattern = f"%{q.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(User.email).like(pattern),
                    func.lower(User.display_name).like(pattern),
                )
            )
        if status == "active":
            query = query.filter(User.is_active.is_(True))
        elif status == "inactive":
            query = query.filter(User.is_active.is_(False))
        if role:
            query = query.filter(
                User.id.in_(
                    db.query(UserRole.user_id)
                    .join(Role, Role.id == UserRole.role_id)
                    .filter(Role.name == role)
                )
            )

        total = query.count()
        users = (
            query.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        data = [
            {
                "id": u.id,
                "email": u.email,
                "display_name": u.display_name,
                "is_active": u.is_active,
                "has_password": u.has_password,
                "created_at": u.created_at,
                "roles": credential_store.get_role_names(db, u.id),
            }
            for u in users
        ]
        return {"page": page, "limit": limit, "total": total, "data": data}

    def grant_admin(self, db: Session, user_id: int) -> List[str]:
        user = credential_store.get_user_by_id(db, user_id)
        if user is None:
            raise TargetUserNotFound()
        if credential_store.assign_role(db, user_id, ADMIN_ROLE):
            logger.info(f"Granted admin role to user {user_id}")
        db.commit()
        return credential_store.get_role_names(db, user_id)

    def revoke_admin(self, db: Session, user_id: int) -> List[str]:
        """Remove admin and make sure the user keeps the baseline role."""
        user = credential_store.get_user_by_id(db, user_id)
        if user is None:
            raise TargetUserNotFound()
        credential_store.remove_role(db, user_id, ADMIN_ROLE)
        credential_store.assign_role(db, user_id, USER_ROLE)
        db.commit()
        logger.info(f"Revoked admin role from user {user_id}")
        return credential_store.get_role_names(db, user_id)

    # --- chat analytics ---

    def list_conversations(
        self,
        db: Session,
        q: Optional[str] = None,
        owner: Optional[int] = None,
        participant: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Conversation summaries across all users, closed ones included."""
        page, limit = _page_bounds(page, limit)

        message_stats = (
            db.query(
                Message.conversation_id.label("conversation_id"),
                func.count(Message.id).label("messages_count"),
                func.max(Message.created_at).label("last_message_at"),
            )
            .group_by(Message.conversation_id)
            .subquery()
        )
        participant_stats = (
            db.query(
                Participant.conversation_id.label("conversation_id"),
                func.count(Participant.user_id).label("participants_count"),
            )
            .group_by(Participant.conversation_id)
            .subquery()
        )
        rating_stats = (
            db.query(
                Message.conversation_id.label("conversation_id"),
                func.avg(MessageFeedback.rating).label("avg_rating"),
                func.count(MessageFeedback.id).label("ratings_count"),
            )
            .join(MessageFeedback, MessageFeedback.message_id == Message.id)
            .group_by(Message.conversation_id)
            .subquery()
        )

        query = (
            db.query(
                Conversation,
                User.email,
                User.display_name,
                message_stats.c.messages_count,
                message_stats.c.last_message_at,
                participant_stats.c.participants_count,
                rating_stats.c.avg_rating,
                rating_stats.c.ratings_count,
            )
            .join(User, User.id == Conversation.owner_user_id)
            .outerjoin(message_stats, message_stats.c.conversation_id == Conversation.id)
            .outerjoin(
                participant_stats, participant_stats.c.conversation_id == Conversation.id
            )
            .outerjoin(rating_stats, rating_stats.c.conversation_id == Conversation.id)
        )
        if q:
            query = query.filter(func.lower(Conversation.title).like(f"%{q.strip().lower()}%"))
        if owner is not None:
            query = query.filter(Conversation.owner_user_id == owner)
        if participant is not None:
            query = query.filter(
                Conversation.id.in_(
                    db.query(Participant.conversation_id).filter(
                        Participant.user_id == participant
                    )
                )
            )

        total = query.count()
        rows = (
            query.order_by(
                func.coalesce(message_stats.c.last_message_at, Conversation.created_at).desc(),
                Conversation.id.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        data = []
        for (
            conversation,
            owner_email,
            owner_name,
            messages_count,
            last_message_at,
            participants_count,
            avg_rating,
            ratings_count,
        ) in rows:
            data.append(
                {
                    "id": conversation.id,
                    "title": conversation.title,
                    "owner_user_id": conversation.owner_user_id,
                    "owner_email": owner_email,
                    "owner_display_name": owner_name,
                    "is_active": conversation.is_active,
                    "created_at": conversation.created_at,
                    "closed_at": conversation.closed_at,
                    "messages_count": messages_count or 0,
                    "participants_count": participants_count or 0,
                    "last_message_at": last_message_at,
                    "avg_rating": _round_avg(avg_rating),
                    "ratings_count": ratings_count or 0,
                }
            )
        return {"page": page, "limit": limit, "total": total, "data": data}

    def get_conversation(self, db: Session, conversation_id: int) -> Dict[str, Any]:
        conversation = db.get(Conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFound()

        participants = (
            db.query(Participant, User)
            .join(User, User.id == Participant.user_id)
            .filter(Participant.conversation_id == conversation_id)
            .order_by(Participant.added_at)
            .all()
        )
        messages = (
            db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )

        return {
            "id": conversation.id,
            "title": conversation.title,
            "owner_user_id": conversation.owner_user_id,
            "created_at": conversation.created_at,
            "closed_at": conversation.closed_at,
            "is_active": conversation.is_active,
            "participants": [
                {
                    "user_id": p.user_id,
                    "is_owner": p.is_owner,
                    "added_at": p.added_at,
                    "display_name": u.display_name,
                    "email": u.email,
                }
                for p, u in participants
            ],
            "messages": [
                {
                    "id": m.id,
                    "sender": m.sender,
                    "sender_user_id": m.sender_user_id,
                    "sender_email": m.sender_user.email if m.sender_user else None,
                    "sender_display_name": (
                        m.sender_user.display_name if m.sender_user else None
                    ),
                    "content": m.content,
                    "latency_ms": m.latency_ms,
                    "metadata": m.meta,
                    "created_at": m.created_at,
                    "feedback": [
                        {
                            "user_id": f.user_id,
                            "rating": f.rating,
                            "comment": f.comment,
                            "created_at": f.created_at,
                        }
                        for f in m.feedback
                    ],
                }
                for m in messages
            ],
        }

    def get_feedback_summary(self, db: Session) -> List[Dict[str, Any]]:
        """Rating totals and averages per rating user."""
        results = (
            db.query(
                User.id,
                User.email,
                User.display_name,
                func.count(MessageFeedback.id).label("total"),
                func.avg(MessageFeedback.rating).label("avg_rating"),
                func.min(MessageFeedback.rating),
                func.max(MessageFeedback.rating),
            )
            .join(MessageFeedback, MessageFeedback.user_id == User.id)
            .group_by(User.id, User.email, User.display_name)
            .order_by(func.count(MessageFeedback.id).desc(), User.id)
            .all()
        )

        return [
            {
                "user_id": user_id,
                "email": email,
                "display_name": display_name,
                "total": total,
                "avg_rating": _round_avg(avg_rating),
                "min_rating": min_rating,
                "max_rating": max_rating,
            }
            for user_id, email, display_name, total, avg_rating, min_rating, max_rating in results
        ]

    def list_feedback(
        self,
        db: Session,
        conversation: Optional[int] = None,
        user: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        page, limit = _page_bounds(page, limit)

        query = (
            db.query(MessageFeedback, Message, User.email)
            .join(Message, Message.id == MessageFeedback.message_id)
            .join(User, User.id == MessageFeedback.user_id)
        )
        if conversation is not None:
            query = query.filter(Message.conversation_id == conversation)
        if user is not None:
            query = query.filter(MessageFeedback.user_id == user)

        total = query.count()
        rows = (
            query.order_by(MessageFeedback.created_at.desc(), MessageFeedback.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        data = [
            {
                "id": feedback.id,
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "message_sender": message.sender,
                "message_content": message.content,
                "user_id": feedback.user_id,
                "user_email": email,
                "rating": feedback.rating,
                "comment": feedback.comment,
                "created_at": feedback.created_at,
            }
            for feedback, message, email in rows
        ]
        return {"page": page, "limit": limit, "total": total, "data": data}


admin_service = AdminService()
