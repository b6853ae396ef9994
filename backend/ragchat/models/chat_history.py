"""
Chat database models.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    ForeignKey,
    Boolean,
    JSON,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from ragchat.core.security import utcnow
from ragchat.database import Base

SENDER_KINDS = ("user", "bot", "system")


class Conversation(Base):
    """Conversation model. Closed conversations are kept with is_active=False."""

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    closed_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    participants = relationship(
        "Participant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Participant.added_at",
    )
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Participant(Base):
    """Conversation membership."""

    __tablename__ = "participants"

    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    is_owner = Column(Boolean, default=False, nullable=False)
    added_at = Column(DateTime, default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="participants")
    user = relationship("User")


class Message(Base):
    """Message model."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender = Column(String(16), nullable=False)  # 'user', 'bot' or 'system'
    sender_user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    content = Column(Text, nullable=False)
    latency_ms = Column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
    sender_user = relationship("User")
    feedback = relationship(
        "MessageFeedback",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageFeedback.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "sender IN ('user', 'bot', 'system')", name="ck_messages_sender"
        ),
    )


class MessageFeedback(Base):
    """One rating per (message, user)."""

    __tablename__ = "message_feedback"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(
        Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    message = relationship("Message", back_populates="feedback")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_feedback_message_user"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating"),
    )
