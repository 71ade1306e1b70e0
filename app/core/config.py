import os
import logging
from pydantic import BaseModel, Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

class AISettings(BaseModel):
    openrouter_api_key: Optional[str] = Field(default=os.getenv("OPENROUTER_API_KEY"))
    openrouter_url: str = Field(default=os.getenv("OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions"))
    model_name: str = Field(default=os.getenv("AI_MODEL_NAME", "google/gemini-2.0-flash-001"))
    kill_switch: bool = Field(default=os.getenv("AI_KILL_SWITCH", "false").lower() == "true")
    temperature: float = 0.2

class StorageSettings(BaseModel):
    # "local" keeps blobs on disk, "s3" uses the configured bucket
    backend: str = Field(default=os.getenv("STORAGE_BACKEND", "local"))
    local_root: str = Field(default=os.getenv("LOCAL_BLOB_ROOT", "./data/blobs"))
    s3_bucket: str = Field(default=os.getenv("S3_BUCKET_NAME", "resume-review-bucket"))
    aws_region: str = Field(default=os.getenv("AWS_REGION", "ap-southeast-2"))

class IngestionSettings(BaseModel):
    upload_timeout_seconds: float = Field(default=float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "30")))
    analysis_timeout_seconds: float = Field(default=float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "120")))
    record_prefix: str = "resume:"
    max_upload_mb: int = Field(default=int(os.getenv("MAX_UPLOAD_MB", "20")))
    preview_dpi: int = Field(default=int(os.getenv("PREVIEW_DPI", "150")))
    # Finished ingestions kept per session for status polling
    history_size: int = 20

class Config(BaseModel):
    app_name: str = "Resume Review API"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database (backs the key-value store)
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./database.db")

    # Auth
    secret_key: str = os.getenv("SECRET_KEY", "dev-only-insecure-key-DO-NOT-USE-IN-PROD")
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # Collaborators
    ai: AISettings = AISettings()
    storage: StorageSettings = StorageSettings()
    ingestion: IngestionSettings = IngestionSettings()

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:5173,"
                "http://127.0.0.1:3000,http://127.0.0.1:5173",
            ).split(",")
            if o.strip()
        ]
    )

    # Rate limiting
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    upload_rate_limit: str = os.getenv("UPLOAD_RATE_LIMIT", "10/minute")

settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    _critical_missing = []
    if "dev-only" in settings.secret_key or "change-it" in settings.secret_key:
        _critical_missing.append("SECRET_KEY")
    if _critical_missing:
        raise RuntimeError(
            f"FATAL: The following secrets must be set for non-development environments: "
            f"{', '.join(_critical_missing)}. Set them as environment variables."
        )
else:
    if "dev-only" in settings.secret_key:
        _logger.warning("Using insecure default SECRET_KEY, only acceptable in development.")
