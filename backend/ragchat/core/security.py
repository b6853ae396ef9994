"""
Security utilities: password hashing, verification codes and session tokens.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timezone

import bcrypt

from ragchat.config import settings

# Use bcrypt directly instead of passlib to avoid initialization issues
# passlib has problems with bcrypt 5.0.0+ during initialization

VERIFICATION_CODE_DIGITS = 6


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    if not plain_password or not hashed_password:
        return False
    # Ensure password is bytes for bcrypt
    if isinstance(plain_password, str):
        plain_password = plain_password.encode("utf-8")
    if isinstance(hashed_password, str):
        hashed_password = hashed_password.encode("utf-8")
    try:
        return bcrypt.checkpw(plain_password, hashed_password)
    except ValueError:
        # Malformed stored hash
        return False


def get_password_hash(password: str) -> str:
    """Generate a password hash."""
    # Ensure password is bytes for bcrypt
    if isinstance(password, str):
        password = password.encode("utf-8")
    # Generate salt and hash
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password, salt)
    # Return as string
    return hashed.decode("utf-8")


def generate_verification_code() -> str:
    """Six random decimal digits, zero-padded."""
    return f"{secrets.randbelow(10 ** VERIFICATION_CODE_DIGITS):0{VERIFICATION_CODE_DIGITS}d}"


def codes_match(submitted: str, stored: str) -> bool:
    return hmac.compare_digest(submitted.encode("utf-8"), stored.encode("utf-8"))


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def generate_oauth_state() -> str:
    return secrets.token_urlsafe(24)


def hash_session_token(token: str) -> str:
    """Keyed SHA-256 of the cookie token; only the hash is stored."""
    return hmac.new(
        settings.SECRET_KEY.encode("utf-8"), token.encode("utf-8"), hashlib.sha256
    ).hexdigest()
