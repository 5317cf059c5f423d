"""
Application settings.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./data/receiptrewards.db"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # File storage
    DATA_DIR: str = "./data"
    UPLOAD_DIR: str = "./data/uploads"
    MAX_UPLOAD_BYTES: int = 8 * 1024 * 1024
    ALLOWED_UPLOAD_TYPES: List[str] = ["image/jpeg", "image/png", "image/heic", "text/plain"]

    # Fraud policy (0-100 scores)
    FRAUD_REJECT_THRESHOLD: int = 70
    FRAUD_REVIEW_THRESHOLD: int = 40

    # Store receipt rule fallbacks
    DEFAULT_MIN_RECEIPT_AMOUNT: float = 500.0
    DEFAULT_RECEIPT_VALIDITY_HOURS: int = 24
    VISIT_LIMIT_HOURS: int = 24  # 0 disables

    # Reward accrual
    DEFAULT_VISITS_NEEDED: int = 5
    DEFAULT_REWARD_VALUE: str = "10% Discount on Next Purchase"
    REWARD_PERIOD_DAYS: int = 45
    REWARD_EXPIRATION_DAYS: int = 30

    # Maintenance
    STALE_PENDING_HOURS: int = 48

    SEED_DEMO_DATA: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
