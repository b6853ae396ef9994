"""
Sign-in flows through the HTTP API
"""
import pytest

from ragchat.config import settings
from ragchat.models.user import OAuthAccount, User
from ragchat.schemas import VerifyRequest
from ragchat.services.google_oauth import GoogleOAuthError, OAuthProfile

PASSWORD = "Password123!"


@pytest.mark.e2e
class TestRegister:
    def test_register_then_duplicate(self, client, make_client, database):
        response = client.post(
            "/auth/register",
            json={"email": "a@example.com", "display_name": "Ann", "password": PASSWORD},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["ok"] is True
        assert body["user"]["email"] == "a@example.com"
        assert body["roles"] == ["user"]
        assert settings.SESSION_COOKIE_NAME in response.cookies

        duplicate = make_client().post(
            "/auth/register",
            json={"email": "a@example.com", "display_name": "Other", "password": PASSWORD},
        )

        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "email_taken"
        with database.session() as db:
            assert db.query(User).count() == 1

    def test_register_session_is_authenticated(self, client):
        client.post(
            "/auth/register",
            json={"email": "a@example.com", "display_name": "Ann", "password": PASSWORD},
        )

        me = client.get("/me").json()

        assert me["isAuthenticated"] is True
        assert me["user"]["email"] == "a@example.com"
        assert me["user"]["has_password"] is True

    def test_missing_fields(self, client):
        response = client.post("/auth/register", json={"email": "a@example.com"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_weak_password(self, client):
        response = client.post(
            "/auth/register",
            json={"email": "a@example.com", "display_name": "Ann", "password": "short"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "weak_password"


@pytest.mark.e2e
class TestLogin:
    def test_two_step_login(self, client, create_user, email_sender):
        create_user("user@example.com")

        response = client.post(
            "/auth/login", json={"email": "user@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "requiresVerification": True,
            "email": "user@example.com",
            "delivered": True,
        }
        assert client.get("/me").json() == {"isAuthenticated": False}

        code = email_sender.last_code("user@example.com")
        verified = client.post("/auth/verify", json={"code": code})

        assert verified.status_code == 200
        assert verified.json()["user"]["email"] == "user@example.com"
        assert client.get("/me").json()["isAuthenticated"] is True

        replay = client.post("/auth/verify", json={"code": code, "email": "user@example.com"})
        assert replay.status_code == 401
        assert replay.json()["error"] == "code_invalid_or_expired"

    def test_numeric_code_is_checked(self, client, create_user, email_sender):
        create_user("user@example.com")
        client.post("/auth/login", json={"email": "user@example.com", "password": PASSWORD})
        code = email_sender.last_code("user@example.com")
        wrong = "111111" if code != "111111" else "222222"

        rejected = client.post("/auth/verify", json={"code": int(wrong)})

        assert rejected.status_code == 401
        assert rejected.json()["error"] == "code_invalid_or_expired"
        assert VerifyRequest(code=int(wrong)).code == wrong

    def test_admin_bypasses_code(self, client, create_user, email_sender):
        create_user("admin@example.com", roles=("admin", "user"))

        response = client.post(
            "/auth/login", json={"email": "admin@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["roles"] == ["admin", "user"]
        assert email_sender.sent == []
        assert client.get("/me").json()["isAuthenticated"] is True

    @pytest.mark.parametrize(
        "email,password,status,error",
        [
            ("nobody@example.com", PASSWORD, 401, "user_not_found"),
            ("user@example.com", "wrong-password", 401, "invalid_credentials"),
            ("off@example.com", PASSWORD, 403, "account_inactive"),
        ],
    )
    def test_failures(self, client, create_user, email, password, status, error):
        create_user("user@example.com")
        create_user("off@example.com", is_active=False)

        response = client.post("/auth/login", json={"email": email, "password": password})

        assert response.status_code == status
        assert response.json()["ok"] is False
        assert response.json()["error"] == error

    def test_resend_code(self, client, create_user, email_sender):
        create_user("user@example.com")
        client.post("/auth/login", json={"email": "user@example.com", "password": PASSWORD})

        response = client.post("/auth/verify/resend", json={})

        assert response.status_code == 200
        assert response.json()["email"] == "user@example.com"
        assert len(email_sender.sent) == 2

    def test_logout(self, client, create_user, login):
        create_user("user@example.com")
        login(client, "user@example.com")

        first = client.post("/auth/logout")
        second = client.post("/auth/logout")

        assert first.json() == {"ok": True}
        assert second.status_code == 200
        assert client.get("/me").json() == {"isAuthenticated": False}


@pytest.mark.e2e
class TestGoogleSignIn:
    def _start(self, client) -> str:
        response = client.get("/auth/google", follow_redirects=False)
        assert response.status_code == 302
        return response.headers["location"].split("state=")[1]

    def test_not_configured(self, client, google_client):
        google_client.is_configured.return_value = False

        response = client.get("/auth/google", follow_redirects=False)

        assert response.status_code == 503
        assert response.json()["error"] == "oauth_not_configured"

    def test_unknown_email_goes_to_registration(self, client, google_client, database):
        state = self._start(client)

        response = client.get(
            f"/auth/google/callback?code=abc&state={state}", follow_redirects=False
        )

        assert response.status_code == 302
        assert response.headers["location"].endswith("/register?email=g.user%40example.com")
        with database.session() as db:
            assert db.query(User).count() == 0
            assert db.query(OAuthAccount).count() == 0

    def test_register_then_repeat_google_links_account(
        self, client, google_client, database, email_sender
    ):
        state = self._start(client)
        client.get(f"/auth/google/callback?code=abc&state={state}", follow_redirects=False)

        registered = client.post(
            "/auth/register",
            json={"email": "g.user@example.com", "display_name": "G", "password": PASSWORD},
        )

        assert registered.status_code == 201
        assert registered.json()["requiresGoogleLink"] is True
        assert client.get("/me").json()["isAuthenticated"] is False

        state = self._start(client)
        response = client.get(
            f"/auth/google/callback?code=abc&state={state}", follow_redirects=False
        )

        assert "/verify?email=" in response.headers["location"]
        with database.session() as db:
            link = db.query(OAuthAccount).one()
            assert link.provider_user_id == "google-sub-1"
        code = email_sender.last_code("g.user@example.com")
        assert client.post("/auth/verify", json={"code": code}).status_code == 200

    def test_admin_linked_goes_to_profile(self, client, google_client, create_user):
        create_user("boss@example.com", roles=("admin",))
        google_client.exchange_code.return_value = OAuthProfile(
            provider="google", provider_user_id="boss-sub", email="boss@example.com"
        )
        state = self._start(client)

        response = client.get(
            f"/auth/google/callback?code=abc&state={state}", follow_redirects=False
        )

        assert response.headers["location"].endswith("/profile")
        assert client.get("/me").json()["isAuthenticated"] is True

    def test_state_mismatch(self, client, google_client):
        self._start(client)

        response = client.get(
            "/auth/google/callback?code=abc&state=forged", follow_redirects=False
        )

        assert response.headers["location"].endswith("/login?error=oauth_state")
        google_client.exchange_code.assert_not_called()

    def test_exchange_failure(self, client, google_client):
        google_client.exchange_code.side_effect = GoogleOAuthError("boom")
        state = self._start(client)

        response = client.get(
            f"/auth/google/callback?code=abc&state={state}", follow_redirects=False
        )

        assert response.headers["location"].endswith("/login?error=oauth_failed")


@pytest.mark.e2e
class TestSetPassword:
    def test_requires_session(self, client):
        response = client.post("/auth/set-password", json={"password": "NewPassword1"})

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_required"

    def test_change_password(self, client, create_user, login):
        create_user("user@example.com")
        login(client, "user@example.com")

        missing = client.post("/auth/set-password", json={"password": "NewPassword1"})
        changed = client.post(
            "/auth/set-password",
            json={"password": "NewPassword1", "current_password": PASSWORD},
        )

        assert missing.status_code == 400
        assert missing.json()["error"] == "current_password_required"
        assert changed.json() == {"ok": True}
