"""
Server-side session store.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ragchat.core.security import utcnow
from ragchat.database import Base


class UserSession(Base):
    """A browser session, keyed by the hash of its cookie token."""

    __tablename__ = "user_sessions"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    roles = Column(JSON, nullable=True)  # cached role names of the principal

    # Short-lived slots, cleared on consumption
    pending_verification_user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    pending_oauth_email = Column(String, nullable=True)
    oauth_state = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    user = relationship("User", foreign_keys=[user_id])

    def __repr__(self):
        return f"<UserSession(user_id={self.user_id}, expires_at={self.expires_at})>"
