"""
Configuration settings for the RAG chat backend.

Loads environment variables from .env file and provides typed configuration.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:5173", "http://localhost:3000"],
        description="Allowed CORS origins",
    )
    FRONTEND_URL: str = Field(
        default="",
        description="Base URL used for post-login redirects (empty = same origin)",
    )

    # Security / Session Configuration
    SECRET_KEY: str = Field(
        default="change-me-in-production",
        description="Secret used to derive session token hashes",
    )
    SESSION_COOKIE_NAME: str = Field(default="ragchat_session")
    SESSION_COOKIE_SECURE: bool = Field(
        default=False, description="Set the Secure flag on the session cookie"
    )
    SESSION_TTL_HOURS: int = Field(
        default=24, description="Server-side session lifetime in hours"
    )
    VERIFICATION_CODE_TTL_MINUTES: int = Field(
        default=10, description="Lifetime of emailed verification codes"
    )
    PASSWORD_MIN_LENGTH: int = Field(default=8)
    BCRYPT_ROUNDS: int = Field(default=12)

    # Database Configuration
    DATABASE_URL: str = Field(
        default="sqlite:///./data/ragchat.db", description="SQLAlchemy database URL"
    )
    DATABASE_ECHO: bool = Field(
        default=False, description="Echo SQL queries (for debugging)"
    )

    # Email Configuration
    EMAIL_BACKEND: str = Field(
        default="console", description="Email backend: 'console' or 'resend'"
    )
    RESEND_API_KEY: Optional[str] = Field(default=None)
    EMAIL_FROM: str = Field(default="no-reply@example.com")

    # Google OAuth Configuration
    GOOGLE_CLIENT_ID: Optional[str] = Field(default=None)
    GOOGLE_CLIENT_SECRET: Optional[str] = Field(default=None)
    GOOGLE_REDIRECT_URI: str = Field(
        default="http://localhost:3000/auth/google/callback"
    )

    # RAG Service Configuration
    RAG_API_URL: Optional[str] = Field(
        default=None, description="Full query URL; overrides base URL + path"
    )
    RAG_BASE_URL: str = Field(default="http://localhost:8000")
    RAG_QUERY_PATH: str = Field(default="/rag/query")
    RAG_API_KEY: Optional[str] = Field(default=None)
    RAG_TIMEOUT_MS: int = Field(
        default=60000, description="Hard timeout for RAG requests in milliseconds"
    )
    RAG_DEFAULT_TOP_K: int = Field(default=5)
    RAG_DEFAULT_EVALUATE: bool = Field(default=True)

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
