"""
Profile endpoints for the signed-in user.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ragchat.database import get_db
from ragchat.dependencies import get_auth_service, get_current_user, get_session_context
from ragchat.models.user import User
from ragchat.schemas import AccountUpdate
from ragchat.services.auth_service import AuthService
from ragchat.services.credential_store import credential_store
from ragchat.services.session_service import SessionContext

router = APIRouter()
me_router = APIRouter()


@me_router.get("/me")
async def read_me(
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
) -> Any:
    """Who is signed in. Never fails; anonymous callers get isAuthenticated false."""
    if not session.is_authenticated:
        return {"isAuthenticated": False}

    user = credential_store.get_user_by_id(db, session.user_id)
    if user is None or not user.is_active:
        return {"isAuthenticated": False}

    return {
        "isAuthenticated": True,
        "user": {
            "display_name": user.display_name,
            "email": user.email,
            "roles": credential_store.get_role_names(db, user.id),
            "has_password": user.has_password,
        },
    }


@router.get("")
async def read_account(current_user: User = Depends(get_current_user)) -> Any:
    return {
        "ok": True,
        "data": {
            "id": current_user.id,
            "display_name": current_user.display_name or "",
            "email": current_user.email,
            "hasPassword": current_user.has_password,
        },
    }


@router.put("")
async def update_account(
    body: AccountUpdate,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context),
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """Update the display name and/or change the password."""
    changed = auth_service.update_account(
        db,
        session,
        display_name=body.display_name,
        current_password=body.current_password,
        new_password=body.new_password,
        confirm_password=body.confirm_password,
    )
    return {"ok": True, "changed": changed}
