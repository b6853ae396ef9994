"""
Verification code issuer for the emailed second factor.
"""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from ragchat.config import settings
from ragchat.core import security
from ragchat.models.user import User
from ragchat.services.credential_store import credential_store
from ragchat.services.email_service import EmailSender

logger = logging.getLogger(__name__)

CODE_SUBJECT = "Your verification code"


class VerificationService:
    def __init__(self, email_sender: EmailSender):
        self.email_sender = email_sender

    async def issue(self, db: Session, user: User) -> bool:
        """
        Store a fresh code on the user row and email it. Returns whether the
        email was handed off successfully; the code is stored either way.
        """
        code = security.generate_verification_code()
        ttl = settings.VERIFICATION_CODE_TTL_MINUTES
        credential_store.store_verification_code(
            db, user, code, security.utcnow() + timedelta(minutes=ttl)
        )

        body = (
            f"Hello {user.display_name or user.email},\n\n"
            f"Your verification code is {code}. It expires in {ttl} minutes.\n"
            "If you did not try to sign in, you can ignore this email."
        )
        delivered = await self.email_sender.send(user.email, CODE_SUBJECT, body)
        if not delivered:
            logger.warning(f"Verification code for user {user.id} could not be delivered")
        return delivered

    def check(self, user: User, submitted: str) -> bool:
        if not user.verification_code or not user.verification_expires_at:
            return False
        if security.utcnow() > user.verification_expires_at:
            return False
        return security.codes_match((submitted or "").strip(), user.verification_code)

    def consume(self, db: Session, user: User) -> None:
        credential_store.clear_verification_code(db, user)
