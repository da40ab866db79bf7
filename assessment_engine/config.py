import logging
from typing import List, Optional

from pydantic_settings import BaseSettings

# Set up logging for this module
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Database
    MONGO_URI: str = "mongodb://localhost:27017/assessment_engine"
    MONGO_DB_NAME: Optional[str] = None  # Falls back to the path in MONGO_URI

    # JWT identity resolution (tokens are issued elsewhere)
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"

    # Judge0-compatible execution sandbox
    JUDGE0_API_URL: str = "https://ce.judge0.com"
    JUDGE0_API_KEY: Optional[str] = None
    SANDBOX_CPU_LIMIT_SECONDS: float = 5.0
    SANDBOX_MEMORY_LIMIT_KB: int = 256000
    SANDBOX_HTTP_TIMEOUT_SECONDS: float = 20.0
    SANDBOX_CASE_TIMEOUT_SECONDS: float = 15.0
    SANDBOX_MAX_CONCURRENCY: int = 8

    # Proctoring thresholds (tab switches)
    PROCTORING_FLAG_THRESHOLD: int = 3
    PROCTORING_TERMINATE_THRESHOLD: int = 5

    # Test statistics recomputation
    STATISTICS_MAX_RETRIES: int = 3
    STATISTICS_RETRY_BACKOFF_SECONDS: float = 0.2

    # Background sweep for lapsed attempts
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 60

    # Optional external collaborators
    ELIGIBILITY_SERVICE_URL: Optional[str] = None
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    COLLABORATOR_TIMEOUT_SECONDS: float = 5.0

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


# Log settings loading (redact sensitive values)
settings = Settings()
logging.getLogger().setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger.info("[CONFIG] Settings loaded successfully")
logger.info(f"[CONFIG] Mongo URI: {settings.MONGO_URI[:10]}**** (redacted)")
logger.info(f"[CONFIG] JWT Secret: {settings.JWT_SECRET_KEY[:4]}**** (redacted)")
logger.info(f"[CONFIG] Sandbox endpoint: {settings.JUDGE0_API_URL}")
logger.info(
    f"[CONFIG] Proctoring thresholds: flag={settings.PROCTORING_FLAG_THRESHOLD} "
    f"terminate={settings.PROCTORING_TERMINATE_THRESHOLD}"
)
if settings.PROCTORING_TERMINATE_THRESHOLD <= settings.PROCTORING_FLAG_THRESHOLD:
    logger.warning(
        "[CONFIG] PROCTORING_TERMINATE_THRESHOLD should be higher than "
        "PROCTORING_FLAG_THRESHOLD; attempts will be terminated as soon as they are flagged"
    )
