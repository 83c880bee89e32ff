"""
Configuration settings for the Geospatial Assistant chat service
"""

import json
import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# role:tier -> limits. "role:*" matches any tier of that role.
DEFAULT_PERMISSION_TABLE: Dict[str, Dict[str, float]] = {
    "user:free": {"max_requests": 10, "max_area": 100.0},
    "user:basic": {"max_requests": 100, "max_area": 1000.0},
    "user:pro": {"max_requests": 1000, "max_area": 10000.0},
    "admin:*": {"max_requests": 100000, "max_area": 1000000.0},
}


class Config:
    """Configuration class for the chat service"""

    # OpenAI Configuration
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: Optional[str] = os.getenv("OPENAI_BASE_URL", "").strip() or None
    OPENAI_TIMEOUT_S: float = float(os.getenv("OPENAI_TIMEOUT_S", "45"))

    # Model Configuration
    DEFAULT_MODEL: str = os.getenv("DEFAULT_MODEL", "gpt-4o")
    REPORT_MODEL: str = os.getenv("REPORT_MODEL", "") or DEFAULT_MODEL
    TEMPERATURE: float = float(os.getenv("TEMPERATURE", "0.3"))
    MAX_TOKENS_PER_REQUEST: int = int(os.getenv("MAX_TOKENS_PER_REQUEST", "4096"))
    MAX_CONTEXT_TOKENS: int = int(os.getenv("MAX_CONTEXT_TOKENS", "100000"))
    MAX_TOOL_STEPS: int = int(os.getenv("MAX_TOOL_STEPS", "5"))

    # Service Configuration
    SERVICE_HOST: str = os.getenv("SERVICE_HOST", "0.0.0.0")
    SERVICE_PORT: int = int(os.getenv("PORT", 8000))

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS Settings
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Remote collaborators
    ANALYSIS_BASE_URL: str = os.getenv("ANALYSIS_BASE_URL", os.getenv("BASE_URL", "http://localhost:3000"))
    RAG_SERVICE_URL: str = os.getenv("RAG_SERVICE_URL", "http://localhost:8100")
    AUTH_SERVICE_URL: str = os.getenv("AUTH_SERVICE_URL", "")
    USAGE_SERVICE_URL: str = os.getenv("USAGE_SERVICE_URL", "")
    CHAT_STORE_URL: str = os.getenv("CHAT_STORE_URL", "")
    SERVICE_API_KEY: str = os.getenv("SERVICE_API_KEY", "")
    REMOTE_TIMEOUT_S: float = float(os.getenv("REMOTE_TIMEOUT_S", "120"))

    # Quota policy (JSON object, same shape as DEFAULT_PERMISSION_TABLE)
    PERMISSION_TABLE: str = os.getenv("PERMISSION_TABLE", "")

    @classmethod
    def validate(cls) -> bool:
        """Validate configuration"""
        if not cls.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not set. The service may not function properly.")
            return False
        return True

    @classmethod
    def get_cors_origins(cls) -> list:
        """Get CORS origins as a list"""
        if cls.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in cls.CORS_ORIGINS.split(",") if origin.strip()]

    @classmethod
    def get_permission_table(cls) -> Dict[str, Dict[str, float]]:
        """Role/tier policy table, from PERMISSION_TABLE or the built-in default."""
        if not cls.PERMISSION_TABLE:
            return dict(DEFAULT_PERMISSION_TABLE)
        return json.loads(cls.PERMISSION_TABLE)


config = Config()
