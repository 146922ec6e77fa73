"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "RFQ Marketplace Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "marketplace"
    POSTGRES_PASSWORD: str = "marketplace"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "marketplace"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # JWT Settings (tokens are issued by the identity provider, we only verify them)
    JWT_ALGORITHM: str = "HS256"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # =========================================
    # Matching / pricing engine
    # =========================================

    MIN_MATCH_SCORE: float = 50.0

    # Bounded lookups keep per-request cost predictable
    SUPPLIER_STATS_SAMPLE: int = 200
    HISTORICAL_PRICE_SAMPLE: int = 200
    DEMAND_RFQ_SAMPLE: int = 500
    CAPABILITY_SCAN_LIMIT: int = 5000
    VISIBLE_RFQ_LIMIT: int = 100
    CUSTOMER_HISTORY_SAMPLE: int = 200

    PRICE_SEED: float = 5000.0
    DEFAULT_CURRENCY: str = "USD"

    # Bid input limits
    MAX_BID_NOTES_LENGTH: int = 2000
    MAX_LEAD_TIME_DAYS: int = 730

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "marketplace")
        password = data.get("POSTGRES_PASSWORD", "marketplace")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "marketplace")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            debug = info.data.get("DEBUG", False)
            if not debug:
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('POSTGRES_PASSWORD')
    @classmethod
    def validate_postgres_password(cls, v: str, info) -> str:
        """Reject default database password in production."""
        weak = {"marketplace", "postgres", "password", "changeme", ""}
        if v in weak and not info.data.get("DEBUG", False):
            raise ValueError(
                "POSTGRES_PASSWORD is set to a default value. "
                "Set a strong database password for production."
            )
        return v

    @field_validator('MIN_MATCH_SCORE')
    @classmethod
    def validate_min_match_score(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError("MIN_MATCH_SCORE must be between 0 and 100")
        return v


settings = Settings()
