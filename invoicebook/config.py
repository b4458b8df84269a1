"""Application configuration"""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "InvoiceBook"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # API
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    # Database
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./invoicebook.db")

    # Allocation reconciliation
    ALLOCATION_STOP_RATIO: float = float(os.getenv("ALLOCATION_STOP_RATIO", "0.95"))
    AMOUNT_TOLERANCE: str = os.getenv("AMOUNT_TOLERANCE", "0.01")

    # Supplier resolution
    SUPPLIER_FUZZY_THRESHOLD: float = float(os.getenv("SUPPLIER_FUZZY_THRESHOLD", "0.80"))
    SUPPLIER_FUZZY_SCAN_LIMIT: int = int(os.getenv("SUPPLIER_FUZZY_SCAN_LIMIT", "5000"))
    SUPPLIER_CODE_MAX_ATTEMPTS: int = int(os.getenv("SUPPLIER_CODE_MAX_ATTEMPTS", "1000"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE")

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
