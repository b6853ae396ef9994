"""
Role resolution for the session principal.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from ragchat.services.credential_store import credential_store
from ragchat.services.session_service import SessionContext

logger = logging.getLogger(__name__)


class RoleService:
    def get_roles(self, db: Session, user_id: int) -> List[str]:
        return credential_store.get_role_names(db, user_id)

    def is_authenticated(self, session: SessionContext) -> bool:
        return session.is_authenticated

    def has_role(self, db: Session, session: SessionContext, role_name: str) -> bool:
        """
        Check the role set cached on the session against the store. The store
        wins; a stale cache is refreshed in place.
        """
        if not session.is_authenticated:
            return False

        cached = role_name in session.roles
        roles = self.get_roles(db, session.user_id)
        authoritative = role_name in roles
        if cached != authoritative:
            logger.info(
                f"Role cache for user {session.user_id} was stale ({role_name}), refreshing"
            )
            session.set_roles(roles)
        return authoritative


role_service = RoleService()
