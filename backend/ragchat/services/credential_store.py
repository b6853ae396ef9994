"""
Credential store: data access for users, roles and OAuth identity links.

No policy lives here; the identity service decides what the data means.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ragchat.models.user import OAuthAccount, Role, User, UserRole

logger = logging.getLogger(__name__)

DEFAULT_ROLES = ("admin", "user", "analyst")
ADMIN_ROLE = "admin"
USER_ROLE = "user"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class CredentialStore:
    # --- users ---

    def get_user_by_id(self, db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, db: Session, email: str) -> Optional[User]:
        """Get a user by email (case-insensitive)."""
        return (
            db.query(User)
            .filter(func.lower(User.email) == normalize_email(email))
            .first()
        )

    def create_user(
        self,
        db: Session,
        email: str,
        display_name: Optional[str],
        password_hash: Optional[str],
    ) -> User:
        """Insert an active user. Raises IntegrityError on a duplicate email."""
        user = User(
            email=normalize_email(email),
            display_name=display_name,
            password_hash=password_hash,
            is_active=True,
        )
        db.add(user)
        db.flush()
        return user

    def set_password_hash(self, db: Session, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        db.commit()

    def set_display_name(self, db: Session, user: User, display_name: str) -> None:
        user.display_name = display_name
        db.commit()

    def store_verification_code(
        self, db: Session, user: User, code: str, expires_at: datetime
    ) -> None:
        user.verification_code = code
        user.verification_expires_at = expires_at
        db.commit()

    def clear_verification_code(self, db: Session, user: User) -> None:
        user.verification_code = None
        user.verification_expires_at = None
        db.commit()

    # --- roles ---

    def ensure_default_roles(self, db: Session) -> None:
        existing = {name for (name,) in db.query(Role.name).all()}
        for name in DEFAULT_ROLES:
            if name not in existing:
                db.add(Role(name=name))
        db.commit()

    def get_role(self, db: Session, name: str) -> Optional[Role]:
        return db.query(Role).filter(Role.name == name).first()

    def get_role_names(self, db: Session, user_id: int) -> List[str]:
        rows = (
            db.query(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(UserRole.user_id == user_id)
            .order_by(Role.name)
            .all()
        )
        return [name for (name,) in rows]

    def assign_role(self, db: Session, user_id: int, role_name: str) -> bool:
        """
        Insert-or-ignore a role assignment. Returns True when a row was added.
        Does not commit; callers own the transaction.
        """
        role = self.get_role(db, role_name)
        if role is None:
            role = Role(name=role_name)
            db.add(role)
            db.flush()
        existing = (
            db.query(UserRole)
            .filter(UserRole.user_id == user_id, UserRole.role_id == role.id)
            .first()
        )
        if existing is not None:
            return False
        try:
            with db.begin_nested():
                db.add(UserRole(user_id=user_id, role_id=role.id))
        except IntegrityError:
            return False
        return True

    def remove_role(self, db: Session, user_id: int, role_name: str) -> None:
        role = self.get_role(db, role_name)
        if role is None:
            return
        db.query(UserRole).filter(
            UserRole.user_id == user_id, UserRole.role_id == role.id
        ).delete(synchronize_session=False)

    # --- OAuth links ---

    def get_oauth_account(
        self, db: Session, provider: str, provider_user_id: str
    ) -> Optional[OAuthAccount]:
        return (
            db.query(OAuthAccount)
            .filter(
                OAuthAccount.provider == provider,
                OAuthAccount.provider_user_id == provider_user_id,
            )
            .first()
        )

    def link_oauth_account(
        self, db: Session, user_id: int, provider: str, provider_user_id: str
    ) -> OAuthAccount:
        """
        Insert-or-ignore the (provider, provider_user_id) link and return the
        stored row. When a concurrent request created the link first, its row
        is returned.
        """
        try:
            with db.begin_nested():
                db.add(
                    OAuthAccount(
                        user_id=user_id,
                        provider=provider,
                        provider_user_id=provider_user_id,
                    )
                )
        except IntegrityError:
            logger.info(
                f"OAuth link {provider}:{provider_user_id} already exists, keeping stored link"
            )
        db.commit()
        return self.get_oauth_account(db, provider, provider_user_id)


credential_store = CredentialStore()
