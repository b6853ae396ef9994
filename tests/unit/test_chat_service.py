"""
Tests for the conversation pipeline
"""
import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError

from ragchat.core.errors import (
    ConversationNotFound,
    InvalidContent,
    InvalidLatency,
    InvalidRating,
    InvalidRequest,
    InvalidSender,
    InvalidSenderUser,
    MessageNotFound,
    RagUnavailable,
    TargetUserNotFound,
)
from ragchat.models.chat_history import Conversation, Message, MessageFeedback, Participant
from ragchat.services.chat_service import RAG_FAILURE_MESSAGE, chat_service, parse_rating


@pytest.fixture
def owner(create_user):
    return create_user("owner@example.com")


@pytest.fixture
def other(create_user):
    return create_user("other@example.com")


@pytest.fixture
def conversation(test_db, owner, other):
    # Both users exist before the shared session opens a transaction
    return chat_service.create_conversation(test_db, owner.id, "  Onboarding  ")


@pytest.mark.unit
class TestConversations:
    def test_create_adds_owner_participant(self, test_db, conversation, owner):
        assert conversation.title == "Onboarding"
        participants = test_db.query(Participant).all()
        assert len(participants) == 1
        assert participants[0].user_id == owner.id
        assert participants[0].is_owner

    def test_failed_owner_insert_creates_nothing(self, test_db, owner):
        def reject(mapper, connection, target):
            raise IntegrityError("INSERT INTO participants", {}, Exception("rejected"))

        event.listen(Participant, "before_insert", reject)
        try:
            with pytest.raises(IntegrityError):
                chat_service.create_conversation(test_db, owner.id, "Doomed")
        finally:
            event.remove(Participant, "before_insert", reject)

        assert test_db.query(Conversation).count() == 0
        assert test_db.query(Participant).count() == 0

    def test_add_participant_is_idempotent(self, test_db, conversation, owner, other):
        chat_service.add_participant(test_db, conversation.id, owner.id, other.id)
        chat_service.add_participant(test_db, conversation.id, owner.id, other.id)

        count = (
            test_db.query(Participant)
            .filter(Participant.conversation_id == conversation.id, Participant.user_id == other.id)
            .count()
        )
        assert count == 1

    def test_only_owner_adds_participants(self, test_db, conversation, other, owner):
        with pytest.raises(ConversationNotFound):
            chat_service.add_participant(test_db, conversation.id, other.id, owner.id)

    def test_add_unknown_user(self, test_db, conversation, owner):
        with pytest.raises(TargetUserNotFound):
            chat_service.add_participant(test_db, conversation.id, owner.id, 9999)

    def test_close_then_retarget(self, test_db, conversation, owner):
        closed = chat_service.close_conversation(test_db, conversation.id, owner.id)

        assert closed.is_active is False
        assert closed.closed_at is not None
        with pytest.raises(ConversationNotFound):
            chat_service.close_conversation(test_db, conversation.id, owner.id)
        with pytest.raises(ConversationNotFound):
            chat_service.post_message(test_db, conversation.id, owner.id, "hello")

    def test_non_owner_cannot_close(self, test_db, conversation, owner, other):
        chat_service.add_participant(test_db, conversation.id, owner.id, other.id)

        with pytest.raises(ConversationNotFound):
            chat_service.close_conversation(test_db, conversation.id, other.id)

    def test_list_orders_by_last_activity(self, test_db, owner, other):
        first = chat_service.create_conversation(test_db, owner.id, "first")
        second = chat_service.create_conversation(test_db, owner.id, "second")
        chat_service.post_message(test_db, first.id, owner.id, "bump")

        result = chat_service.list_conversations(test_db, owner.id, page=1, limit=500)

        assert result["limit"] == 100
        assert result["total"] == 2
        assert [c["id"] for c in result["data"]] == [first.id, second.id]
        assert result["data"][0]["messages_count"] == 1
        assert chat_service.list_conversations(test_db, other.id)["total"] == 0


@pytest.mark.unit
class TestPostMessage:
    def test_user_sender_is_always_caller(self, test_db, conversation, owner, other):
        message = chat_service.post_message(
            test_db, conversation.id, owner.id, " hi ", sender="user", sender_user_id=other.id
        )

        assert message.content == "hi"
        assert message.sender_user_id == owner.id

    def test_latency_rounded(self, test_db, conversation, owner):
        message = chat_service.post_message(
            test_db, conversation.id, owner.id, "answer", sender="bot", latency_ms="41.6"
        )

        assert message.latency_ms == 42
        assert message.sender_user_id is None

    @pytest.mark.parametrize("latency", [-1, "abc", float("inf"), True])
    def test_invalid_latency(self, test_db, conversation, owner, latency):
        with pytest.raises(InvalidLatency):
            chat_service.post_message(
                test_db, conversation.id, owner.id, "x", sender="bot", latency_ms=latency
            )

    def test_invalid_content_and_sender(self, test_db, conversation, owner):
        with pytest.raises(InvalidContent):
            chat_service.post_message(test_db, conversation.id, owner.id, "   ")
        with pytest.raises(InvalidSender):
            chat_service.post_message(test_db, conversation.id, owner.id, "x", sender="robot")

    def test_sender_override_must_participate(self, test_db, conversation, owner, other):
        with pytest.raises(InvalidSenderUser):
            chat_service.post_message(
                test_db, conversation.id, owner.id, "x", sender="system", sender_user_id=other.id
            )

        chat_service.add_participant(test_db, conversation.id, owner.id, other.id)
        message = chat_service.post_message(
            test_db, conversation.id, owner.id, "x", sender="system", sender_user_id=other.id
        )
        assert message.sender_user_id == other.id

    def test_non_participant(self, test_db, conversation, other):
        with pytest.raises(ConversationNotFound):
            chat_service.post_message(test_db, conversation.id, other.id, "hello")

    def test_membership_checked_before_sender(self, test_db, conversation, other):
        with pytest.raises(ConversationNotFound):
            chat_service.post_message(
                test_db, conversation.id, other.id, "hello", sender="robot", latency_ms=-1
            )


@pytest.mark.unit
class TestFeedback:
    def test_upsert_replaces_rating(self, test_db, conversation, owner):
        message = chat_service.post_message(test_db, conversation.id, owner.id, "q")

        first = chat_service.submit_feedback(test_db, message.id, owner.id, 2, "meh")
        second = chat_service.submit_feedback(test_db, message.id, owner.id, "5", "  great ")

        assert test_db.query(MessageFeedback).count() == 1
        assert second.id == first.id
        assert second.rating == 5
        assert second.comment == "great"

    @pytest.mark.parametrize("rating", [0, 6, 2.5, "abc", None, True])
    def test_invalid_rating(self, rating):
        with pytest.raises(InvalidRating):
            parse_rating(rating)

    def test_outsider_cannot_rate(self, test_db, conversation, owner, other):
        message = chat_service.post_message(test_db, conversation.id, owner.id, "q")

        with pytest.raises(MessageNotFound):
            chat_service.submit_feedback(test_db, message.id, other.id, 4)

    def test_closed_conversation_messages_not_rateable(self, test_db, conversation, owner):
        message = chat_service.post_message(test_db, conversation.id, owner.id, "q")
        chat_service.close_conversation(test_db, conversation.id, owner.id)

        with pytest.raises(MessageNotFound):
            chat_service.submit_feedback(test_db, message.id, owner.id, 4)


@pytest.mark.unit
@pytest.mark.asyncio
class TestAsk:
    async def test_success_records_both_turns(
        self, test_db, conversation, owner, rag_client, rag_stub
    ):
        rag_stub.handler = rag_stub.answer(
            "Forty-two", sources=[{"id": "s1"}], eval={"score": 0.8}, latency_ms=250
        )

        user_message, bot_message = await chat_service.ask(
            test_db, rag_client, conversation.id, owner.id, "Meaning of life?", k=3
        )

        assert user_message.sender == "user"
        assert user_message.sender_user_id == owner.id
        assert bot_message.sender == "bot"
        assert bot_message.content == "Forty-two"
        assert bot_message.latency_ms == 250
        rag_meta = bot_message.meta["rag"]
        assert rag_meta["request"] == {"question": "Meaning of life?", "k": 3, "evaluate": True}
        assert rag_meta["response"] == {"sources": [{"id": "s1"}], "evaluation": {"score": 0.8}}
        assert rag_meta["raw"]["answer"] == "Forty-two"

    async def test_timeout_keeps_question_and_records_system_turn(
        self, test_db, conversation, owner, rag_client, rag_stub
    ):
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        rag_stub.handler = timeout

        with pytest.raises(RagUnavailable):
            await chat_service.ask(test_db, rag_client, conversation.id, owner.id, "Hello?")

        messages = (
            test_db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .order_by(Message.id)
            .all()
        )
        assert [m.sender for m in messages] == ["user", "system"]
        assert messages[0].content == "Hello?"
        assert messages[1].content == RAG_FAILURE_MESSAGE
        error = messages[1].meta["rag"]["error"]
        assert error["status"] is None
        assert messages[1].meta["rag"]["request"]["question"] == "Hello?"

    async def test_provider_rejection_is_invalid_request(
        self, test_db, conversation, owner, rag_client, rag_stub
    ):
        rag_stub.handler = lambda request: httpx.Response(400, json={"detail": "bad"})

        with pytest.raises(InvalidRequest):
            await chat_service.ask(test_db, rag_client, conversation.id, owner.id, "q")

        system = test_db.query(Message).filter(Message.sender == "system").one()
        assert system.meta["rag"]["error"]["status"] == 400

    async def test_invalid_input_persists_nothing(
        self, test_db, conversation, owner, rag_client, rag_stub
    ):
        with pytest.raises(InvalidRequest):
            await chat_service.ask(test_db, rag_client, conversation.id, owner.id, "   ")
        with pytest.raises(InvalidRequest):
            await chat_service.ask(test_db, rag_client, conversation.id, owner.id, "q", k=0)

        assert test_db.query(Message).count() == 0
        assert rag_stub.requests == []

    async def test_non_participant(self, test_db, conversation, other, rag_client, rag_stub):
        with pytest.raises(ConversationNotFound):
            await chat_service.ask(test_db, rag_client, conversation.id, other.id, "q")

        assert test_db.query(Message).count() == 0
        assert rag_stub.requests == []
