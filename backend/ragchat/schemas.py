from typing import Any, List, Optional
from datetime import datetime
from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator


# --- Auth ---
class RegisterRequest(BaseModel):
    email: EmailStr
    display_name: str = Field(..., validation_alias=AliasChoices("display_name", "name"))
    password: str


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class VerifyRequest(BaseModel):
    code: str
    email: Optional[str] = None

    @field_validator("code", mode="before")
    @classmethod
    def code_as_text(cls, value: Any) -> Any:
        # Numeric codes posted as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ResendCodeRequest(BaseModel):
    email: Optional[str] = None


class SetPasswordRequest(BaseModel):
    password: str
    current_password: Optional[str] = None


# --- User ---
class UserResponse(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    is_active: bool
    has_password: bool

    class Config:
        from_attributes = True


class AccountUpdate(BaseModel):
    display_name: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None
    confirm_password: Optional[str] = None


# --- Conversation ---
class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ParticipantAdd(BaseModel):
    user_id: int


class ParticipantResponse(BaseModel):
    user_id: int
    is_owner: bool
    added_at: datetime

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    id: int
    title: Optional[str] = None
    owner_user_id: int
    created_at: datetime
    closed_at: Optional[datetime] = None
    is_active: bool
    participants: List[ParticipantResponse] = []

    class Config:
        from_attributes = True


# --- Message ---
class MessageCreate(BaseModel):
    # Loosely typed so the service can report field-specific errors
    content: Any = None
    sender: Any = None
    latency_ms: Any = None
    sender_user_id: Optional[int] = None


class AskRequest(BaseModel):
    question: Any = None
    k: Any = None
    evaluate: Any = None


class FeedbackCreate(BaseModel):
    rating: Any = None
    comment: Optional[str] = None


class FeedbackResponse(BaseModel):
    id: int
    message_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender: str
    sender_user_id: Optional[int] = None
    content: str
    latency_ms: Optional[int] = None
    # ORM attribute is `meta`; the column and the API field are "metadata"
    metadata: Optional[Any] = Field(
        None, validation_alias=AliasChoices("meta", "metadata")
    )
    created_at: datetime
    feedback: List[FeedbackResponse] = []

    class Config:
        from_attributes = True
