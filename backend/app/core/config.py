"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
import json
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "CofO Registry"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    PORTAL_BASE_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str
    CREATE_TABLES_ON_STARTUP: bool = True

    # JWT Authentication (tokens are issued by the identity service)
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    # Document storage
    STORAGE_PROVIDER: str = "dev"   # dev | s3
    LOCAL_STORAGE_DIR: str = "./storage"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "eu-west-2"
    S3_BUCKET_NAME: str = "cofo-registry-documents"
    DOCUMENT_FOLDER: str = "cofo_documents"
    SIGNATURE_FOLDER: str = "signatures"
    CERTIFICATE_FOLDER: str = "certificates"

    # Document validation
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_DOCUMENT_EXTENSIONS: str = ".jpg,.jpeg,.png,.gif,.webp,.pdf,.doc,.docx"
    ALLOWED_DOCUMENT_MIME_TYPES: str = (
        "image/jpeg,image/png,image/gif,image/webp,application/pdf,application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )

    # Notification delivery
    NOTIFY_SMS_PROVIDER: str = "dev"    # dev | twilio
    NOTIFY_EMAIL_PROVIDER: str = "dev"  # dev | resend
    SMS_FROM: str = ""
    EMAIL_FROM: str = ""
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    RESEND_API_KEY: str = ""

    # Payments
    PAYMENT_PROVIDER: str = "dev"  # dev | paystack
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    COFO_APPLICATION_FEE: int = 5000000  # kobo

    # Workflow
    CASE_NUMBER_PREFIX: str = "COFO"
    TRANSFER_CODE_TTL_MINUTES: int = 15
    TRANSFER_RESEND_COOLDOWN_SECONDS: int = 60
    REVIEW_SLA_DAYS: Optional[int] = None  # unset disables the stale-case sweep
    STALE_CASE_SWEEP_MINUTES: int = 60
    IDEMPOTENCY_TTL_HOURS: int = 24

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'

    @field_validator("REVIEW_SLA_DAYS", mode="before")
    @classmethod
    def blank_sla_is_disabled(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return [item.strip() for item in self.CORS_ORIGINS.split(",") if item.strip()]

    @property
    def allowed_extensions_list(self) -> List[str]:
        return [e.strip().lower() for e in self.ALLOWED_DOCUMENT_EXTENSIONS.split(",") if e.strip()]

    @property
    def allowed_mime_types_list(self) -> List[str]:
        return [m.strip().lower() for m in self.ALLOWED_DOCUMENT_MIME_TYPES.split(",") if m.strip()]


# Create settings instance
settings = Settings()
