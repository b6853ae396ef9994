from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from ragchat.database import get_db
from ragchat.dependencies import get_current_user, get_rag_client
from ragchat.models.user import User
from ragchat.schemas import (
    AskRequest,
    ConversationCreate,
    ConversationResponse,
    FeedbackCreate,
    FeedbackResponse,
    MessageCreate,
    MessageResponse,
    ParticipantAdd,
    ParticipantResponse,
)
from ragchat.services.chat_service import chat_service
from ragchat.services.rag_client import RagClient

router = APIRouter()


@router.get("/conversations")
async def list_conversations(
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """List the caller's active conversations, most recently active first."""
    result = chat_service.list_conversations(db, current_user.id, page, limit)
    return {"ok": True, **result}


@router.post("/conversations", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: ConversationCreate = Body(default=ConversationCreate()),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Create a new conversation owned by the caller."""
    conversation = chat_service.create_conversation(db, current_user.id, request.title)
    return {"ok": True, "data": ConversationResponse.model_validate(conversation)}


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    return {
        "ok": True,
        "data": chat_service.get_conversation(db, conversation_id, current_user.id),
    }


@router.delete("/conversations/{conversation_id}")
async def close_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Close a conversation (owner only). History is kept."""
    conversation = chat_service.close_conversation(db, conversation_id, current_user.id)
    return {
        "ok": True,
        "data": {
            "id": conversation.id,
            "is_active": conversation.is_active,
            "closed_at": conversation.closed_at,
        },
    }


@router.post("/conversations/{conversation_id}/participants")
async def add_participant(
    conversation_id: int,
    request: ParticipantAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    participant = chat_service.add_participant(
        db, conversation_id, current_user.id, request.user_id
    )
    return {"ok": True, "data": ParticipantResponse.model_validate(participant)}


@router.get("/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Get messages for a conversation, each with its feedback."""
    messages = chat_service.list_messages(db, conversation_id, current_user.id)
    return {"ok": True, "data": [MessageResponse.model_validate(m) for m in messages]}


@router.post(
    "/conversations/{conversation_id}/messages", status_code=status.HTTP_201_CREATED
)
async def post_message(
    conversation_id: int,
    request: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Append a message without calling the answering service."""
    message = chat_service.post_message(
        db,
        conversation_id,
        current_user.id,
        content=request.content,
        sender=request.sender,
        latency_ms=request.latency_ms,
        sender_user_id=request.sender_user_id,
    )
    return {"ok": True, "data": MessageResponse.model_validate(message)}


@router.post("/conversations/{conversation_id}/ask", status_code=status.HTTP_201_CREATED)
async def ask(
    conversation_id: int,
    request: AskRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    rag_client: RagClient = Depends(get_rag_client),
) -> Any:
    """Ask the RAG service; both the question and the answer are stored."""
    user_message, bot_message = await chat_service.ask(
        db,
        rag_client,
        conversation_id,
        current_user.id,
        question=request.question,
        k=request.k,
        evaluate=request.evaluate,
    )
    return {
        "ok": True,
        "data": {
            "user": MessageResponse.model_validate(user_message),
            "bot": MessageResponse.model_validate(bot_message),
        },
    }


@router.post("/messages/{message_id}/feedback")
async def submit_feedback(
    message_id: int,
    request: FeedbackCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Rate a message (1-5). Rating again replaces the earlier rating."""
    feedback = chat_service.submit_feedback(
        db, message_id, current_user.id, request.rating, request.comment
    )
    return {"ok": True, "data": FeedbackResponse.model_validate(feedback)}
