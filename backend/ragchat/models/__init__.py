"""
Database models for the RAG chat backend.

All SQLAlchemy models are imported here so metadata is complete before
``create_all``.
"""

from ragchat.models.user import User, Role, UserRole, OAuthAccount
from ragchat.models.chat_history import (
    Conversation,
    Participant,
    Message,
    MessageFeedback,
)
from ragchat.models.user_session import UserSession

__all__ = [
    "User",
    "Role",
    "UserRole",
    "OAuthAccount",
    "Conversation",
    "Participant",
    "Message",
    "MessageFeedback",
    "UserSession",
]
