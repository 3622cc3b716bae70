"""
Application settings (Pydantic v2)
 - environment variables plus the first .env file found among the candidates
 - defaults mirror the production edge functions (chunk window, thresholds, models)
"""

from typing import Optional, List
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(case_sensitive=True)

    # Base
    PROJECT_NAME: str = "Acervo"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: Optional[str] = None
    DEBUG: bool = False

    # CORS whitelist (comma separated). Unset means "*".
    ALLOWED_ORIGINS: Optional[str] = None

    # Auth
    DISABLE_AUTH: bool = False
    DEV_USER_ID: str = "00000000-0000-0000-0000-000000000001"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None

    # Database
    DATABASE_URL: str = "sqlite:///./acervo.db"

    # Blob storage: "local" or "s3"
    STORAGE_BACKEND: str = "local"
    UPLOAD_DIR: str = "./storage/documentos"
    S3_ENDPOINT: Optional[str] = None
    S3_ACCESS_KEY: Optional[str] = None
    S3_SECRET_KEY: Optional[str] = None
    S3_BUCKET_NAME: Optional[str] = "documentos"
    S3_REGION: Optional[str] = None
    S3_SECURE: Optional[bool] = None

    # LLM / embedding provider (OpenAI compatible)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    EMBEDDING_MODEL_NAME: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_MAX_TOKENS: int = 8000
    EMBEDDING_CONCURRENCY: int = 4
    CHAT_MODEL_NAME: str = "gpt-4o-mini"
    GENERATION_MAX_TOKENS: int = 1000
    GROUNDED_TEMPERATURE: float = 0.3
    FALLBACK_TEMPERATURE: float = 0.5
    TAGGING_TEMPERATURE: float = 0.3
    TAGGING_MAX_CHARS: int = 8000
    TAGGING_MAX_CHUNKS: int = 10

    # Provider resilience
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    PROVIDER_MAX_RETRIES: int = 3
    PROVIDER_RETRY_DELAY: float = 1.0
    PROVIDER_MAX_RETRY_DELAY: float = 20.0
    QUERY_TIMEOUT_SECONDS: float = 120.0

    # Document processing
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    SUPPORTED_FILE_TYPES: str = "pdf,docx,txt"
    CHUNK_SIZE: int = 1200
    CHUNK_OVERLAP: int = 200
    MAX_CHUNK_TOKENS: int = 8000

    # Retrieval
    SIMILARITY_THRESHOLD: float = 0.5
    DEFAULT_TOP_K: int = 5
    MAX_TOP_K: int = 50

    # Provenance logging
    QUERY_LOG_MAX_ATTEMPTS: int = 2
    QUERY_LOG_RETRY_QUEUE_SIZE: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"

    def get_supported_file_types(self) -> List[str]:
        """Supported upload extensions, without the dot"""
        return [ext.strip().lower().lstrip(".") for ext in self.SUPPORTED_FILE_TYPES.split(",") if ext.strip()]

    def get_allowed_origins(self) -> List[str]:
        """CORS origins; permissive when nothing is configured"""
        if not self.ALLOWED_ORIGINS:
            return ["*"]
        parts = [p.strip() for p in self.ALLOWED_ORIGINS.split(",")]
        return [p for p in parts if p]


def _detect_env_files() -> List[Path]:
    """Find candidate .env files, in priority order.

    1. backend/.env
    2. repository root /.env
    3. backend/.env.dev (last resort)
    """
    here = Path(__file__).resolve()
    backend_dir = here.parents[2]  # backend/
    project_root = here.parents[3]

    candidates = [
        backend_dir / ".env",
        project_root / ".env",
        backend_dir / ".env.dev",
    ]
    return [p for p in candidates if p.exists()]


_env_files = _detect_env_files()
settings = Settings(_env_file=_env_files or None)
