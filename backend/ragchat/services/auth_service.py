"""
Authentication Service.

Drives a credential assertion (email + password, or a Google profile) to one
of the login outcomes below, and owns registration, code verification and
password setup. Failures are raised as ``AppError`` subclasses.

OAuth linking across registration is two-step: when Google returns an email
with no local account, the caller registers (``RegisteredAwaitingGoogleLink``)
and then repeats the Google sign-in, which creates the link.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ragchat.config import settings
from ragchat.core import security
from ragchat.core.errors import (
    AccountInactive,
    AuthenticationRequired,
    CodeInvalidOrExpired,
    CurrentPasswordInvalid,
    CurrentPasswordRequired,
    EmailTaken,
    InvalidCredentials,
    InvalidRequest,
    NoLocalPassword,
    UserNotFound,
    WeakPassword,
)
from ragchat.models.user import User
from ragchat.services.credential_store import (
    ADMIN_ROLE,
    USER_ROLE,
    credential_store,
    normalize_email,
)
from ragchat.services.email_service import EmailSender
from ragchat.services.google_oauth import OAuthProfile
from ragchat.services.session_service import SessionContext
from ragchat.services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authenticated:
    user: User
    roles: List[str]


@dataclass(frozen=True)
class NeedsVerification:
    email: str
    delivered: bool = True


@dataclass(frozen=True)
class NeedsRegistration:
    email: str


@dataclass(frozen=True)
class RegisteredAwaitingGoogleLink:
    email: str


LoginOutcome = Union[Authenticated, NeedsVerification]
OAuthOutcome = Union[Authenticated, NeedsVerification, NeedsRegistration]
RegistrationOutcome = Union[Authenticated, RegisteredAwaitingGoogleLink]


class AuthService:
    def __init__(self, email_sender: EmailSender):
        self.verification = VerificationService(email_sender)

    # --- primary factor ---

    async def login(
        self, db: Session, session: SessionContext, email: str, password: str
    ) -> LoginOutcome:
        """Local credential protocol."""
        if not email or not password:
            raise InvalidRequest("Email and password are required")

        user = credential_store.get_user_by_email(db, email)
        if user is None:
            raise UserNotFound()
        if not user.is_active:
            raise AccountInactive()
        if not user.password_hash:
            raise NoLocalPassword()
        if not security.verify_password(password, user.password_hash):
            logger.info(f"Failed password login for user {user.id}")
            raise InvalidCredentials()

        return await self._after_primary_factor(db, session, user)

    async def resolve_oauth(
        self, db: Session, session: SessionContext, profile: OAuthProfile
    ) -> OAuthOutcome:
        """OAuth protocol: linked identity, link-by-email, or registration needed."""
        link = credential_store.get_oauth_account(
            db, profile.provider, profile.provider_user_id
        )
        if link is not None:
            user = credential_store.get_user_by_id(db, link.user_id)
        else:
            user = credential_store.get_user_by_email(db, profile.email)
            if user is None:
                logger.info(f"{profile.provider} sign-in for unknown email, registration required")
                session.set_pending_oauth_email(profile.email)
                return NeedsRegistration(email=profile.email)

            link = credential_store.link_oauth_account(
                db, user.id, profile.provider, profile.provider_user_id
            )
            if link.user_id != user.id:
                user = credential_store.get_user_by_id(db, link.user_id)
            logger.info(f"Linked {profile.provider} identity to user {link.user_id}")

        if user is None:
            raise UserNotFound()
        if not user.is_active:
            raise AccountInactive()

        return await self._after_primary_factor(db, session, user)

    async def _after_primary_factor(
        self, db: Session, session: SessionContext, user: User
    ) -> LoginOutcome:
        roles = credential_store.get_role_names(db, user.id)
        if ADMIN_ROLE in roles:
            # Administrators skip the emailed code
            session.bind(user.id, roles)
            logger.info(f"Admin user {user.id} authenticated")
            return Authenticated(user=user, roles=roles)

        delivered = await self.verification.issue(db, user)
        session.set_pending_verification(user.id)
        return NeedsVerification(email=user.email, delivered=delivered)

    # --- second factor ---

    def verify_code(
        self,
        db: Session,
        session: SessionContext,
        code: str,
        email: Optional[str] = None,
    ) -> Authenticated:
        user = None
        if session.pending_verification_user_id is not None:
            user = credential_store.get_user_by_id(db, session.pending_verification_user_id)
        elif email:
            user = credential_store.get_user_by_email(db, email)

        if user is None or not self.verification.check(user, code):
            raise CodeInvalidOrExpired()
        if not user.is_active:
            raise AccountInactive()

        self.verification.consume(db, user)
        session.take_pending_verification()
        roles = credential_store.get_role_names(db, user.id)
        session.bind(user.id, roles)
        logger.info(f"User {user.id} completed verification")
        return Authenticated(user=user, roles=roles)

    async def resend_code(
        self, db: Session, session: SessionContext, email: Optional[str] = None
    ) -> NeedsVerification:
        """Re-issue a code for a login still waiting on verification."""
        user = None
        if session.pending_verification_user_id is not None:
            user = credential_store.get_user_by_id(db, session.pending_verification_user_id)
        elif email:
            user = credential_store.get_user_by_email(db, email)
            if user is not None and not user.verification_code:
                user = None

        if user is None or not user.is_active:
            raise CodeInvalidOrExpired()

        delivered = await self.verification.issue(db, user)
        return NeedsVerification(email=user.email, delivered=delivered)

    # --- account lifecycle ---

    def register(
        self,
        db: Session,
        session: SessionContext,
        email: str,
        display_name: str,
        password: str,
    ) -> RegistrationOutcome:
        email = normalize_email(email)
        display_name = (display_name or "").strip()
        if not email or not display_name or not password:
            raise InvalidRequest("Missing fields")
        self._check_password_strength(password)

        if credential_store.get_user_by_email(db, email) is not None:
            raise EmailTaken()

        try:
            user = credential_store.create_user(
                db,
                email=email,
                display_name=display_name,
                password_hash=security.get_password_hash(password),
            )
            credential_store.assign_role(db, user.id, USER_ROLE)
            db.commit()
        except IntegrityError:
            # Lost a race against a concurrent registration
            db.rollback()
            raise EmailTaken()
        db.refresh(user)
        logger.info(f"Registered user {user.id}")

        if session.take_pending_oauth_email() is not None:
            # Google sign-in must be repeated to create the link
            return RegisteredAwaitingGoogleLink(email=user.email)

        roles = credential_store.get_role_names(db, user.id)
        session.bind(user.id, roles)
        return Authenticated(user=user, roles=roles)

    def set_password(
        self,
        db: Session,
        session: SessionContext,
        password: str,
        current_password: Optional[str] = None,
    ) -> None:
        if not session.is_authenticated:
            raise AuthenticationRequired()
        user = credential_store.get_user_by_id(db, session.user_id)
        if user is None:
            raise AuthenticationRequired()

        self._check_password_strength(password)

        if user.password_hash:
            if not current_password:
                raise CurrentPasswordRequired()
            if not security.verify_password(current_password, user.password_hash):
                raise CurrentPasswordInvalid()

        credential_store.set_password_hash(db, user, security.get_password_hash(password))
        logger.info(f"Password updated for user {user.id}")

    def update_account(
        self,
        db: Session,
        session: SessionContext,
        display_name: Optional[str] = None,
        current_password: Optional[str] = None,
        new_password: Optional[str] = None,
        confirm_password: Optional[str] = None,
    ) -> bool:
        """Profile edit: optional display name and password change. Returns whether anything changed."""
        if not session.is_authenticated:
            raise AuthenticationRequired()
        user = credential_store.get_user_by_id(db, session.user_id)
        if user is None:
            raise AuthenticationRequired()

        name = display_name.strip() if isinstance(display_name, str) else None
        if display_name is not None and not name:
            raise InvalidRequest("Display name must not be empty")

        changed = False
        if current_password or new_password or confirm_password:
            if not new_password or not confirm_password:
                raise InvalidRequest("New password and confirmation are required")
            if new_password != confirm_password:
                raise InvalidRequest("Passwords do not match")
            self.set_password(db, session, new_password, current_password)
            changed = True

        if name is not None and name != user.display_name:
            credential_store.set_display_name(db, user, name)
            changed = True
        return changed

    def logout(self, session: SessionContext) -> None:
        session.destroy()

    @staticmethod
    def _check_password_strength(password: Optional[str]) -> None:
        if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
            raise WeakPassword(
                f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long"
            )
