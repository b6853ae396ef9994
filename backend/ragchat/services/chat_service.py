"""
Conversation pipeline: conversations, membership, messages, feedback and the
RAG-backed ask flow.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ragchat.core.errors import (
    ConversationNotFound,
    InvalidContent,
    InvalidLatency,
    InvalidRating,
    InvalidRequest,
    InvalidSender,
    InvalidSenderUser,
    MessageNotFound,
    TargetUserNotFound,
    RagUnavailable,
)
from ragchat.core.security import utcnow
from ragchat.models.chat_history import (
    SENDER_KINDS,
    Conversation,
    Message,
    MessageFeedback,
    Participant,
)
from ragchat.models.user import User
from ragchat.services.rag_client import RagClient, RagClientError

logger = logging.getLogger(__name__)

RAG_FAILURE_MESSAGE = (
    "There was a problem getting an answer from the assistant. Please try again later."
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_latency(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidLatency()
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise InvalidLatency()
    if not math.isfinite(parsed) or parsed < 0:
        raise InvalidLatency()
    return int(round(parsed))


def parse_rating(value: Any) -> int:
    if _is_number(value) and float(value).is_integer():
        rating = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        rating = int(value.strip())
    else:
        raise InvalidRating()
    if rating < 1 or rating > 5:
        raise InvalidRating()
    return rating


class ChatService:
    # --- membership ---

    def get_active_membership(
        self, db: Session, conversation_id: int, user_id: int
    ) -> Optional[Participant]:
        return (
            db.query(Participant)
            .join(
                Conversation,
                and_(
                    Conversation.id == Participant.conversation_id,
                    Conversation.is_active.is_(True),
                ),
            )
            .filter(
                Participant.conversation_id == conversation_id,
                Participant.user_id == user_id,
            )
            .first()
        )

    def _require_membership(
        self, db: Session, conversation_id: int, user_id: int
    ) -> Participant:
        membership = self.get_active_membership(db, conversation_id, user_id)
        if membership is None:
            raise ConversationNotFound()
        return membership

    def _insert_participant(
        self, db: Session, conversation_id: int, user_id: int
    ) -> Participant:
        """Insert-or-ignore on the (conversation, user) key."""
        existing = db.get(Participant, (conversation_id, user_id))
        if existing is not None:
            return existing
        try:
            with db.begin_nested():
                db.add(Participant(conversation_id=conversation_id, user_id=user_id))
        except IntegrityError:
            logger.debug(f"Participant {user_id} already in conversation {conversation_id}")
        return db.get(Participant, (conversation_id, user_id))

    # --- conversations ---

    def create_conversation(
        self, db: Session, user_id: int, title: Optional[str] = None
    ) -> Conversation:
        """Create the conversation and its owner participant in one transaction."""
        title = title.strip() if isinstance(title, str) else None
        try:
            conversation = Conversation(owner_user_id=user_id, title=title or None)
            db.add(conversation)
            db.flush()
            db.add(Participant(conversation_id=conversation.id, user_id=user_id, is_owner=True))
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(conversation)
        logger.info(f"User {user_id} created conversation {conversation.id}")
        return conversation

    def list_conversations(
        self, db: Session, user_id: int, page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        stats = (
            db.query(
                Message.conversation_id.label("conversation_id"),
                func.count(Message.id).label("messages_count"),
                func.max(Message.created_at).label("last_message_at"),
            )
            .group_by(Message.conversation_id)
            .subquery()
        )
        query = (
            db.query(Conversation, stats.c.messages_count, stats.c.last_message_at)
            .join(
                Participant,
                and_(
                    Participant.conversation_id == Conversation.id,
                    Participant.user_id == user_id,
                ),
            )
            .outerjoin(stats, stats.c.conversation_id == Conversation.id)
            .filter(Conversation.is_active.is_(True))
        )
        total = query.count()
        rows = (
            query.order_by(
                func.coalesce(stats.c.last_message_at, Conversation.created_at).desc(),
                Conversation.id.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        data = []
        for conversation, messages_count, last_message_at in rows:
            data.append(
                {
                    **self._conversation_fields(conversation),
                    "messages_count": messages_count or 0,
                    "last_message_at": last_message_at,
                    "participants": [
                        {
                            "user_id": p.user_id,
                            "is_owner": p.is_owner,
                            "added_at": p.added_at,
                        }
                        for p in conversation.participants
                    ],
                }
            )
        return {"page": page, "limit": limit, "total": total, "data": data}

    def get_conversation(
        self, db: Session, conversation_id: int, user_id: int
    ) -> Dict[str, Any]:
        self._require_membership(db, conversation_id, user_id)
        conversation = db.get(Conversation, conversation_id)

        messages_count, last_message_at = (
            db.query(func.count(Message.id), func.max(Message.created_at))
            .filter(Message.conversation_id == conversation_id)
            .one()
        )
        return {
            **self._conversation_fields(conversation),
            "participants": self._participant_details(db, conversation_id),
            "messages_count": messages_count or 0,
            "last_message_at": last_message_at,
        }

    def close_conversation(
        self, db: Session, conversation_id: int, user_id: int
    ) -> Conversation:
        """Soft-close. Only the owner may close, and only an active conversation."""
        conversation = (
            db.query(Conversation)
            .filter(
                Conversation.id == conversation_id,
                Conversation.owner_user_id == user_id,
                Conversation.is_active.is_(True),
            )
            .first()
        )
        if conversation is None:
            raise ConversationNotFound()

        conversation.is_active = False
        conversation.closed_at = conversation.closed_at or utcnow()
        db.commit()
        logger.info(f"Conversation {conversation_id} closed by owner {user_id}")
        return conversation

    def add_participant(
        self, db: Session, conversation_id: int, owner_id: int, user_id: int
    ) -> Participant:
        conversation = (
            db.query(Conversation)
            .filter(
                Conversation.id == conversation_id,
                Conversation.owner_user_id == owner_id,
                Conversation.is_active.is_(True),
            )
            .first()
        )
        if conversation is None:
            raise ConversationNotFound()

        user = db.get(User, user_id)
        if user is None or not user.is_active:
            raise TargetUserNotFound()

        participant = self._insert_participant(db, conversation_id, user_id)
        db.commit()
        return participant

    # --- messages ---

    def list_messages(
        self, db: Session, conversation_id: int, user_id: int
    ) -> List[Message]:
        self._require_membership(db, conversation_id, user_id)
        return (
            db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )

    def post_message(
        self,
        db: Session,
        conversation_id: int,
        user_id: int,
        content: Any,
        sender: Any = "user",
        latency_ms: Any = None,
        sender_user_id: Optional[int] = None,
    ) -> Message:
        if not isinstance(content, str) or not content.strip():
            raise InvalidContent()

        self._require_membership(db, conversation_id, user_id)

        if sender is None:
            sender = "user"
        if sender not in SENDER_KINDS:
            raise InvalidSender()
        latency = parse_latency(latency_ms)

        if sender == "user":
            # Users only ever speak for themselves
            resolved_sender_id = user_id
        elif sender_user_id is not None:
            resolved_sender_id = sender_user_id
            if sender_user_id != user_id and (
                self.get_active_membership(db, conversation_id, sender_user_id) is None
            ):
                raise InvalidSenderUser()
        else:
            resolved_sender_id = None

        return self._record_message(
            db,
            conversation_id,
            sender=sender,
            content=content.strip(),
            sender_user_id=resolved_sender_id,
            latency_ms=latency,
        )

    def _record_message(
        self,
        db: Session,
        conversation_id: int,
        sender: str,
        content: str,
        sender_user_id: Optional[int] = None,
        latency_ms: Optional[int] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sender=sender,
            sender_user_id=sender_user_id,
            content=content,
            latency_ms=latency_ms,
            meta=meta,
        )
        db.add(message)
        db.commit()
        return message

    async def ask(
        self,
        db: Session,
        rag_client: RagClient,
        conversation_id: int,
        user_id: int,
        question: Any,
        k: Any = None,
        evaluate: Any = None,
    ) -> Tuple[Message, Message]:
        """
        Record the question, ask the RAG service and record its outcome.

        The question is committed before the call and is never rolled back.
        A failed call is recorded as a system message before the error is
        raised, so the transcript always shows what happened.
        """
        try:
            payload = rag_client.build_payload(question, k=k, evaluate=evaluate)
        except RagClientError as e:
            raise InvalidRequest(e.message)

        self._require_membership(db, conversation_id, user_id)

        user_message = self._record_message(
            db, conversation_id, sender="user", content=payload["question"], sender_user_id=user_id
        )

        # No transaction is open past this point until the call resolves
        try:
            result = await rag_client.query(payload)
        except RagClientError as e:
            logger.error(
                f"RAG query failed for conversation {conversation_id}: {e.message} (status={e.status})"
            )
            self._record_message(
                db,
                conversation_id,
                sender="system",
                content=RAG_FAILURE_MESSAGE,
                meta={"rag": {"request": payload, "error": e.to_dict()}},
            )
            if e.is_client_error:
                raise InvalidRequest(e.message, details=e.details)
            raise RagUnavailable(e.message)

        bot_message = self._record_message(
            db,
            conversation_id,
            sender="bot",
            content=result.answer,
            latency_ms=result.latency_ms,
            meta={
                "rag": {
                    "request": result.request,
                    "response": {
                        "sources": result.sources,
                        "evaluation": result.evaluation,
                    },
                    "raw": result.raw,
                }
            },
        )
        return user_message, bot_message

    # --- feedback ---

    def submit_feedback(
        self,
        db: Session,
        message_id: int,
        user_id: int,
        rating: Any,
        comment: Optional[str] = None,
    ) -> MessageFeedback:
        """Rate a message; a second rating by the same user replaces the first."""
        rating = parse_rating(rating)
        comment = comment.strip() if isinstance(comment, str) else None
        comment = comment or None

        visible = (
            db.query(Message.id)
            .join(
                Conversation,
                and_(
                    Conversation.id == Message.conversation_id,
                    Conversation.is_active.is_(True),
                ),
            )
            .join(
                Participant,
                and_(
                    Participant.conversation_id == Message.conversation_id,
                    Participant.user_id == user_id,
                ),
            )
            .filter(Message.id == message_id)
            .first()
        )
        if visible is None:
            raise MessageNotFound()

        feedback = self._get_feedback(db, message_id, user_id)
        if feedback is None:
            try:
                with db.begin_nested():
                    feedback = MessageFeedback(
                        message_id=message_id,
                        user_id=user_id,
                        rating=rating,
                        comment=comment,
                        created_at=utcnow(),
                    )
                    db.add(feedback)
            except IntegrityError:
                feedback = self._get_feedback(db, message_id, user_id)

        feedback.rating = rating
        feedback.comment = comment
        feedback.created_at = utcnow()
        db.commit()
        return feedback

    def _get_feedback(
        self, db: Session, message_id: int, user_id: int
    ) -> Optional[MessageFeedback]:
        return (
            db.query(MessageFeedback)
            .filter(
                MessageFeedback.message_id == message_id,
                MessageFeedback.user_id == user_id,
            )
            .first()
        )

    # --- serialization helpers ---

    @staticmethod
    def _conversation_fields(conversation: Conversation) -> Dict[str, Any]:
        return {
            "id": conversation.id,
            "title": conversation.title,
            "owner_user_id": conversation.owner_user_id,
            "created_at": conversation.created_at,
            "closed_at": conversation.closed_at,
            "is_active": conversation.is_active,
        }

    @staticmethod
    def _participant_details(db: Session, conversation_id: int) -> List[Dict[str, Any]]:
        rows = (
            db.query(Participant, User)
            .join(User, User.id == Participant.user_id)
            .filter(Participant.conversation_id == conversation_id)
            .order_by(Participant.added_at)
            .all()
        )
        return [
            {
                "user_id": p.user_id,
                "is_owner": p.is_owner,
                "added_at": p.added_at,
                "display_name": u.display_name,
                "email": u.email,
            }
            for p, u in rows
        ]


chat_service = ChatService()
