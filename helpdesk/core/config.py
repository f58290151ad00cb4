"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Helpdesk Core API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Security
    # WHY: Tokens are issued by the external auth provider; we only verify them
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None  # Supabase issues "authenticated"

    # Database
    DATABASE_URL: str

    # URLs
    FRONTEND_URL: str = "http://localhost:5173"
    BACKEND_URL: str = "http://localhost:8000"

    # Blob storage
    # WHY: "s3" for production buckets, "local" for single-node deployments and tests
    BLOB_STORE_BACKEND: str = "s3"
    ATTACHMENT_BUCKET: str = "ticket-attachments"
    S3_ENDPOINT: Optional[str] = None
    S3_ACCESS_KEY: Optional[str] = None
    S3_SECRET_KEY: Optional[str] = None
    S3_REGION: str = "us-east-1"
    LOCAL_BLOB_ROOT: str = "./var/blobs"
    BLOB_SIGNING_SECRET: Optional[str] = None
    BLOB_TIMEOUT_SECONDS: float = 10.0

    # Attachments
    ATTACHMENT_URL_TTL_SECONDS: int = 3600
    MAX_ATTACHMENT_BYTES: int = 10 * 1024 * 1024  # 10MB

    # Bulk updates
    BULK_UPDATE_MAX_TICKETS: int = 100

    # Email notifications
    RESEND_API_KEY: Optional[str] = None
    NOTIFICATION_FROM_EMAIL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @property
    def blob_signing_secret(self) -> str:
        """
        Secret used to sign local blob URLs.

        WHY: Falls back to the JWT secret so a single-node deployment
        needs no extra key material.
        """
        return self.BLOB_SIGNING_SECRET or self.JWT_SECRET

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
