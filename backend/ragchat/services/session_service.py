"""
Session service - server-side sessions bound to a cookie token.

A request works on a ``SessionContext``: a typed snapshot of the session row
holding the authenticated principal and the short-lived pending slots used by
the login protocols. Handlers mutate the context through its methods and the
service persists it (and sets/clears the cookie) once the handler is done.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Response
from sqlalchemy.orm import Session

from ragchat.config import settings
from ragchat.core.security import generate_session_token, hash_session_token, utcnow
from ragchat.models.user_session import UserSession

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    token: Optional[str] = None
    user_id: Optional[int] = None
    roles: List[str] = field(default_factory=list)
    pending_verification_user_id: Optional[int] = None
    pending_oauth_email: Optional[str] = None
    oauth_state: Optional[str] = None
    expires_at: Optional[datetime] = None

    dirty: bool = False
    destroyed: bool = False
    previous_token: Optional[str] = None
    cookie_changed: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and not self.destroyed

    def bind(self, user_id: int, roles: List[str]) -> None:
        """Authenticate the session. The token is rotated on save."""
        if self.token is not None:
            self.previous_token = self.token
            self.token = None
        self.user_id = user_id
        self.roles = list(roles)
        self.pending_verification_user_id = None
        self.destroyed = False
        self.dirty = True

    def set_roles(self, roles: List[str]) -> None:
        self.roles = list(roles)
        self.dirty = True

    def set_pending_verification(self, user_id: int) -> None:
        self.pending_verification_user_id = user_id
        self.dirty = True

    def take_pending_verification(self) -> Optional[int]:
        user_id = self.pending_verification_user_id
        if user_id is not None:
            self.pending_verification_user_id = None
            self.dirty = True
        return user_id

    def set_pending_oauth_email(self, email: str) -> None:
        self.pending_oauth_email = email
        self.dirty = True

    def take_pending_oauth_email(self) -> Optional[str]:
        email = self.pending_oauth_email
        if email is not None:
            self.pending_oauth_email = None
            self.dirty = True
        return email

    def set_oauth_state(self, state: str) -> None:
        self.oauth_state = state
        self.dirty = True

    def take_oauth_state(self) -> Optional[str]:
        state = self.oauth_state
        if state is not None:
            self.oauth_state = None
            self.dirty = True
        return state

    def destroy(self) -> None:
        """Logout: drop the principal and every pending slot."""
        self.user_id = None
        self.roles = []
        self.pending_verification_user_id = None
        self.pending_oauth_email = None
        self.oauth_state = None
        self.destroyed = True
        self.dirty = True


class SessionService:
    def load(self, db: Session, token: Optional[str]) -> SessionContext:
        """Load the session for a cookie token; unknown or expired tokens yield a fresh context."""
        if not token:
            return SessionContext()

        row = db.get(UserSession, hash_session_token(token))
        if row is None:
            return SessionContext()

        if row.expires_at <= utcnow():
            logger.debug("Session expired, discarding")
            db.delete(row)
            db.commit()
            return SessionContext()

        return SessionContext(
            token=token,
            user_id=row.user_id,
            roles=list(row.roles or []),
            pending_verification_user_id=row.pending_verification_user_id,
            pending_oauth_email=row.pending_oauth_email,
            oauth_state=row.oauth_state,
            expires_at=row.expires_at,
        )

    def save(self, db: Session, ctx: SessionContext) -> None:
        if not ctx.dirty:
            return

        if ctx.previous_token:
            self._delete(db, ctx.previous_token)
            ctx.previous_token = None

        if ctx.destroyed:
            if ctx.token:
                self._delete(db, ctx.token)
            db.commit()
            ctx.token = None
            ctx.cookie_changed = True
            ctx.dirty = False
            return

        if ctx.token is None:
            ctx.token = generate_session_token()
            ctx.cookie_changed = True

        token_hash = hash_session_token(ctx.token)
        row = db.get(UserSession, token_hash)
        if row is None:
            row = UserSession(token_hash=token_hash)
            db.add(row)

        now = utcnow()
        row.user_id = ctx.user_id
        row.roles = list(ctx.roles)
        row.pending_verification_user_id = ctx.pending_verification_user_id
        row.pending_oauth_email = ctx.pending_oauth_email
        row.oauth_state = ctx.oauth_state
        row.last_seen_at = now
        row.expires_at = now + timedelta(hours=settings.SESSION_TTL_HOURS)
        db.commit()

        ctx.expires_at = row.expires_at
        ctx.dirty = False

    def apply_cookie(self, response: Response, ctx: SessionContext) -> None:
        if not ctx.cookie_changed:
            return
        if ctx.token is None:
            response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
        else:
            response.set_cookie(
                key=settings.SESSION_COOKIE_NAME,
                value=ctx.token,
                max_age=settings.SESSION_TTL_HOURS * 3600,
                httponly=True,
                samesite="lax",
                secure=settings.SESSION_COOKIE_SECURE,
                path="/",
            )
        ctx.cookie_changed = False

    def commit(self, db: Session, ctx: SessionContext, response: Response) -> None:
        """Persist the context and reflect it in the response cookie."""
        self.save(db, ctx)
        self.apply_cookie(response, ctx)

    def _delete(self, db: Session, token: str) -> None:
        db.query(UserSession).filter(
            UserSession.token_hash == hash_session_token(token)
        ).delete(synchronize_session=False)


session_service = SessionService()
