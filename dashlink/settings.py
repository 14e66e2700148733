import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Backend Configuration
    api_url: str = Field(default="http://localhost:9092", alias="API_URL")
    auth_refresh_path: str = Field(default="/auth/refresh", alias="AUTH_REFRESH_PATH")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")

    # Token Refresh Configuration (seconds before expiry)
    request_refresh_margin: int = Field(default=30, alias="REQUEST_REFRESH_MARGIN")
    startup_refresh_margin: int = Field(default=300, alias="STARTUP_REFRESH_MARGIN")
    token_store_path: str | None = Field(default=None, alias="TOKEN_STORE_PATH")

    # Retry Configuration
    retry_max_retries: int = Field(default=3, alias="RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=10.0, alias="RETRY_MAX_DELAY")
    retry_backoff_multiplier: float = Field(
        default=2.0, alias="RETRY_BACKOFF_MULTIPLIER"
    )

    # Circuit Breaker Configuration (defaults for unregistered service keys)
    breaker_failure_threshold: int = Field(default=5, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_reset_timeout: float = Field(default=60.0, alias="BREAKER_RESET_TIMEOUT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls.model_validate(dict(os.environ))


global_settings = Settings.from_env()
