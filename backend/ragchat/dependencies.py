"""
Shared API dependencies.
"""

from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ragchat.config import settings
from ragchat.core.errors import AccountInactive, AuthenticationRequired, Forbidden
from ragchat.database import get_db
from ragchat.models.user import User
from ragchat.services.auth_service import AuthService
from ragchat.services.credential_store import credential_store
from ragchat.services.email_service import EmailSender
from ragchat.services.google_oauth import GoogleOAuthClient
from ragchat.services.rag_client import RagClient
from ragchat.services.role_service import role_service
from ragchat.services.session_service import SessionContext, session_service


def get_session_context(
    request: Request, db: Session = Depends(get_db)
) -> SessionContext:
    """Load the server-side session named by the request cookie."""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    return session_service.load(db, token)


def get_current_user(
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
) -> User:
    """
    Return the authenticated user for the session.
    """
    if not role_service.is_authenticated(session):
        raise AuthenticationRequired()

    user = credential_store.get_user_by_id(db, session.user_id)
    if user is None:
        raise AuthenticationRequired()

    if not user.is_active:
        raise AccountInactive()

    return user


def require_role(role_name: str) -> Callable[..., User]:
    """Build a dependency that admits only users holding ``role_name``."""

    def checker(
        db: Session = Depends(get_db),
        session: SessionContext = Depends(get_session_context),
        current_user: User = Depends(get_current_user),
    ) -> User:
        allowed = role_service.has_role(db, session, role_name)
        # Persist a refreshed role cache; the cookie does not change
        session_service.save(db, session)
        if not allowed:
            raise Forbidden(role_name)
        return current_user

    return checker


# --- Collaborators owned by the application ---


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_rag_client(request: Request) -> RagClient:
    return request.app.state.rag_client


def get_google_client(request: Request) -> GoogleOAuthClient:
    return request.app.state.google_client


def get_auth_service(
    email_sender: EmailSender = Depends(get_email_sender),
) -> AuthService:
    return AuthService(email_sender)
