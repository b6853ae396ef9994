"""
API endpoints for administrators: user management and chat analytics.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ragchat.database import get_db
from ragchat.dependencies import require_role
from ragchat.services.admin_service import admin_service
from ragchat.services.credential_store import ADMIN_ROLE

router = APIRouter(dependencies=[Depends(require_role(ADMIN_ROLE))])


@router.get("/users")
async def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    """List users with their roles."""
    return {"ok": True, **admin_service.list_users(db, q, role, status, page, limit)}


@router.post("/users/{user_id}/grant-admin")
async def grant_admin(user_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "roles": admin_service.grant_admin(db, user_id)}


@router.post("/users/{user_id}/revoke-admin")
async def revoke_admin(user_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "roles": admin_service.revoke_admin(db, user_id)}


@router.get("/chat/conversations")
async def list_conversations(
    q: Optional[str] = None,
    owner: Optional[int] = None,
    participant: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    """Conversation summaries across all users."""
    return {
        "ok": True,
        **admin_service.list_conversations(db, q, owner, participant, page, limit),
    }


@router.get("/chat/conversations/{conversation_id}")
async def get_conversation(conversation_id: int, db: Session = Depends(get_db)):
    """Full transcript with sender info and feedback."""
    return {"ok": True, "data": admin_service.get_conversation(db, conversation_id)}


@router.get("/chat/feedback/summary")
async def get_feedback_summary(db: Session = Depends(get_db)):
    """Rating totals and averages per user."""
    return {"ok": True, "data": admin_service.get_feedback_summary(db)}


@router.get("/chat/feedback/messages")
async def list_feedback(
    conversation: Optional[int] = None,
    user: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    return {
        "ok": True,
        **admin_service.list_feedback(db, conversation, user, page, limit),
    }
