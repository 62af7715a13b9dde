"""Configuration settings for the CRM contact extraction chatbot"""
from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings using Pydantic for validation and environment variable loading"""

    # Gemini AI configuration
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-pro"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TEMPERATURE: float = 0.1  # Low temperature for consistent extraction
    GEMINI_MAX_RETRIES: int = 2
    GEMINI_MAX_OUTPUT_TOKENS: int = 2048
    GEMINI_REQUEST_TIMEOUT_SECONDS: float = 20.0  # per attempt

    # Turn processing
    EXTRACTION_TIMEOUT_SECONDS: float = 30.0
    SUMMARY_TIMEOUT_SECONDS: float = 15.0
    HISTORY_WINDOW: int = 20  # raw {role, content} turns kept before summarizing

    # Session storage
    SESSION_BACKEND: str = "memory"  # "memory" or "postgres"
    SESSION_TTL_MINUTES: int = 24 * 60  # 0 disables idle expiry

    # Database configuration (postgres session backend only)
    DB_NAME: str = "crm_chatbot"
    DB_USER: str = "postgres"
    DB_PASS: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    # CRM vocabulary offered to the extraction prompt
    APPOINTMENT_TYPES: List[str] = ["Buyer Consultation", "Listing", "Showing"]
    CONTACT_STAGES: List[str] = ["Lead", "Prospect", "Client", "Under Contract", "Closed Won", "Trash"]
    DEFAULT_TIMEZONE: str = "UTC"

    # Application settings
    ENVIRONMENT: str = "dev"  # dev, staging or prod
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
