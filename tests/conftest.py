"""
pytest configuration - shared fixtures
"""
import sys
import os
import re
from unittest.mock import AsyncMock, Mock
from typing import Any, Callable, Dict, Generator, List, Optional
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Add backend directory to sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../backend"))

from ragchat.config import settings

# Cheap hashes for tests
settings.BCRYPT_ROUNDS = 4

from ragchat.core.rate_limit import limiter
from ragchat.core.security import get_password_hash
from ragchat.database import Database
from ragchat.dependencies import get_email_sender, get_google_client, get_rag_client
from ragchat.main import create_app
from ragchat.models.user import User
from ragchat.services.credential_store import credential_store
from ragchat.services.google_oauth import GoogleOAuthClient, OAuthProfile
from ragchat.services.rag_client import RagClient

limiter.enabled = False

DEFAULT_PASSWORD = "Password123!"
RAG_URL = "http://rag.test/rag/query"


class RecordingEmailSender:
    """Email sender that keeps every message instead of delivering it."""

    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    async def send(self, to_email: str, subject: str, body: str) -> bool:
        if self.fail:
            return False
        self.sent.append({"to": to_email, "subject": subject, "body": body})
        return True

    def last_code(self, email: str) -> Optional[str]:
        for message in reversed(self.sent):
            if message["to"] == email:
                match = re.search(r"\b(\d{6})\b", message["body"])
                return match.group(1) if match else None
        return None


class RagStub:
    """Programmable RAG endpoint served through httpx.MockTransport."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = self.answer(
            "Default answer"
        )

    @staticmethod
    def answer(text: str, **extra: Any) -> Callable[[httpx.Request], httpx.Response]:
        def _handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"answer": text, **extra})

        return _handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append({"url": str(request.url), "body": request.content})
        return self.handler(request)


@pytest.fixture
def database() -> Generator[Database, None, None]:
    """In-memory SQLite database with the default roles"""
    db = Database("sqlite:///:memory:")
    db.create_all()
    with db.session() as session:
        credential_store.ensure_default_roles(session)

    yield db

    db.drop_all()
    db.dispose()


@pytest.fixture
def test_db(database) -> Generator[Session, None, None]:
    """Single session for service-level tests"""
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def rag_stub() -> RagStub:
    return RagStub()


@pytest.fixture
def rag_client(rag_stub) -> RagClient:
    return RagClient(
        url=RAG_URL,
        timeout_ms=2000,
        transport=httpx.MockTransport(rag_stub),
    )


@pytest.fixture
def google_client() -> Mock:
    """Google client with a stubbed code exchange"""
    client = Mock(spec=GoogleOAuthClient)
    client.is_configured.return_value = True
    client.authorization_url.side_effect = (
        lambda state: f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"
    )
    client.exchange_code = AsyncMock(
        return_value=OAuthProfile(
            provider="google", provider_user_id="google-sub-1", email="g.user@example.com"
        )
    )
    return client


@pytest.fixture
def app(database, email_sender, rag_client, google_client):
    application = create_app(database=database)
    application.dependency_overrides[get_email_sender] = lambda: email_sender
    application.dependency_overrides[get_rag_client] = lambda: rag_client
    application.dependency_overrides[get_google_client] = lambda: google_client
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def make_client(app) -> Callable[[], TestClient]:
    """Independent clients (separate cookie jars) for multi-user scenarios"""
    return lambda: TestClient(app)


@pytest.fixture
def create_user(database) -> Callable[..., User]:
    def _create_user(
        email: str,
        password: Optional[str] = DEFAULT_PASSWORD,
        roles=("user",),
        is_active: bool = True,
        display_name: Optional[str] = None,
    ) -> User:
        with database.session() as db:
            user = credential_store.create_user(
                db,
                email=email,
                display_name=display_name or email.split("@")[0],
                password_hash=get_password_hash(password) if password else None,
            )
            user.is_active = is_active
            for role in roles:
                credential_store.assign_role(db, user.id, role)
            db.commit()
            return user

    return _create_user


@pytest.fixture
def login(email_sender) -> Callable[..., Dict[str, Any]]:
    """Sign a client in, completing the emailed-code step when required"""

    def _login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD):
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        body = response.json()
        if body.get("requiresVerification"):
            code = email_sender.last_code(email)
            response = client.post("/auth/verify", json={"code": code})
            assert response.status_code == 200, response.text
            body = response.json()
        return body

    return _login
