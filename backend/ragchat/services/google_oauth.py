"""
Google OAuth client: authorization redirect and code exchange.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from jose import jwt, JWTError

from ragchat.config import Settings

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_ISSUERS = {"accounts.google.com", "https://accounts.google.com"}
PROVIDER = "google"


class GoogleOAuthError(Exception):
    """Raised when the provider exchange fails or returns an unusable identity."""


@dataclass(frozen=True)
class OAuthProfile:
    provider: str
    provider_user_id: str
    email: str
    name: Optional[str] = None


class GoogleOAuthClient:
    def __init__(
        self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.GOOGLE_REDIRECT_URI
        self.transport = transport

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthProfile:
        """
        Exchange the authorization code and read the identity from the ID token.

        The ID token comes straight from Google's token endpoint over TLS, so
        its claims are read without re-verifying the signature; audience and
        issuer are still checked.
        """
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self.transport) as client:
                response = await client.post(GOOGLE_TOKEN_URL, data=data)
        except httpx.HTTPError as e:
            raise GoogleOAuthError(f"token exchange failed: {e}") from e

        if response.status_code != 200:
            raise GoogleOAuthError(f"token exchange returned {response.status_code}")

        id_token = response.json().get("id_token")
        if not id_token:
            raise GoogleOAuthError("token response has no id_token")

        try:
            claims = jwt.get_unverified_claims(id_token)
        except JWTError as e:
            raise GoogleOAuthError(f"malformed id_token: {e}") from e

        if claims.get("aud") != self.client_id:
            raise GoogleOAuthError("id_token audience mismatch")
        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise GoogleOAuthError("id_token issuer mismatch")

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise GoogleOAuthError("id_token lacks sub or email")
        if claims.get("email_verified") is False:
            raise GoogleOAuthError("Google email is not verified")

        return OAuthProfile(
            provider=PROVIDER,
            provider_user_id=str(subject),
            email=email.strip().lower(),
            name=claims.get("name"),
        )
