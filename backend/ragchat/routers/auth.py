"""
Authentication API endpoints.
"""

import logging
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ragchat.config import settings
from ragchat.core.errors import AppError, OAuthNotConfigured
from ragchat.core.rate_limit import limiter
from ragchat.core.security import codes_match, generate_oauth_state
from ragchat.database import get_db
from ragchat.dependencies import (
    get_auth_service,
    get_google_client,
    get_session_context,
)
from ragchat.schemas import (
    LoginRequest,
    RegisterRequest,
    ResendCodeRequest,
    SetPasswordRequest,
    UserResponse,
    VerifyRequest,
)
from ragchat.services.auth_service import (
    Authenticated,
    AuthService,
    NeedsRegistration,
    NeedsVerification,
    RegisteredAwaitingGoogleLink,
)
from ragchat.services.google_oauth import GoogleOAuthClient, GoogleOAuthError
from ragchat.services.session_service import SessionContext, session_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _frontend(path: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}{path}"


def _authenticated_body(outcome: Authenticated) -> dict:
    return {
        "ok": True,
        "user": UserResponse.model_validate(outcome.user),
        "roles": outcome.roles,
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """
    Register a local account. When a Google sign-in is waiting for this
    email, the caller must repeat the Google sign-in to finish linking.
    """
    outcome = auth_service.register(
        db, session, email=body.email, display_name=body.display_name, password=body.password
    )
    session_service.commit(db, session, response)

    if isinstance(outcome, RegisteredAwaitingGoogleLink):
        return {"ok": True, "requiresGoogleLink": True, "email": outcome.email}
    return _authenticated_body(outcome)


@router.post("/login")
@limiter.limit("5/minute")
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """Email + password login. Non-admin users continue with an emailed code."""
    outcome = await auth_service.login(db, session, body.email, body.password)
    session_service.commit(db, session, response)

    if isinstance(outcome, NeedsVerification):
        return {
            "ok": True,
            "requiresVerification": True,
            "email": outcome.email,
            "delivered": outcome.delivered,
        }
    return _authenticated_body(outcome)


@router.post("/verify")
@limiter.limit("5/minute")
async def verify(
    request: Request,
    response: Response,
    body: VerifyRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """Complete a login with the emailed code."""
    outcome = auth_service.verify_code(db, session, body.code, email=body.email)
    session_service.commit(db, session, response)
    return _authenticated_body(outcome)


@router.post("/verify/resend")
@limiter.limit("5/minute")
async def resend_code(
    request: Request,
    response: Response,
    body: ResendCodeRequest = ResendCodeRequest(),
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    outcome = await auth_service.resend_code(db, session, email=body.email)
    session_service.commit(db, session, response)
    return {"ok": True, "email": outcome.email, "delivered": outcome.delivered}


@router.get("/google")
async def google_start(
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    google: GoogleOAuthClient = Depends(get_google_client),
):
    """Redirect to Google's consent screen."""
    if not google.is_configured():
        raise OAuthNotConfigured()

    state = generate_oauth_state()
    session.set_oauth_state(state)
    redirect = RedirectResponse(google.authorization_url(state), status_code=302)
    session_service.commit(db, session, redirect)
    return redirect


@router.get("/google/callback")
async def google_callback(
    code: str = "",
    state: str = "",
    error: str = "",
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    google: GoogleOAuthClient = Depends(get_google_client),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Finish Google sign-in and send the browser to the page matching the
    outcome: profile, code entry, registration, or back to login on failure.
    """
    expected_state = session.take_oauth_state()

    if error or not code:
        target = _frontend(f"/login?error={quote(error or 'oauth_failed')}")
    elif not expected_state or not codes_match(state, expected_state):
        logger.warning("Google callback with mismatched state")
        target = _frontend("/login?error=oauth_state")
    else:
        try:
            profile = await google.exchange_code(code)
            outcome = await auth_service.resolve_oauth(db, session, profile)
        except GoogleOAuthError as e:
            logger.error(f"Google sign-in failed: {e}")
            target = _frontend("/login?error=oauth_failed")
        except AppError as e:
            target = _frontend(f"/login?error={e.code}")
        else:
            if isinstance(outcome, Authenticated):
                target = _frontend("/profile")
            elif isinstance(outcome, NeedsVerification):
                target = _frontend(f"/verify?email={quote(outcome.email)}")
            elif isinstance(outcome, NeedsRegistration):
                target = _frontend(f"/register?email={quote(outcome.email)}")
            else:
                target = _frontend("/login?error=oauth_failed")

    redirect = RedirectResponse(target, status_code=302)
    session_service.commit(db, session, redirect)
    return redirect


@router.post("/set-password")
async def set_password(
    response: Response,
    body: SetPasswordRequest,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """Set a first local password, or replace the current one."""
    auth_service.set_password(db, session, body.password, body.current_password)
    session_service.commit(db, session, response)
    return {"ok": True}


@router.post("/logout")
async def logout(
    response: Response,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    auth_service.logout(session)
    session_service.commit(db, session, response)
    return {"ok": True}
