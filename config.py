# config.py
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from typing import List

# Load .env file
load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Feed settings
    FEED_URL: str = "ws://localhost:5002"
    FEED_ENABLED: bool = True
    CONNECT_TIMEOUT: float = Field(default=10.0, gt=0)
    HEARTBEAT: float = Field(default=30.0, gt=0)
    FALLBACK_TIMEOUT: float = Field(default=2.0, gt=0)
    RECONNECT_MAX_ATTEMPTS: int = Field(default=5, gt=0)
    RECONNECT_DELAY: float = Field(default=1.0, gt=0)
    RECONNECT_MAX_DELAY: float = Field(default=30.0, gt=0)

    # Window settings
    WINDOW_CAPACITY: int = Field(default=240, gt=0)
    HORIZON_SECONDS: float = Field(default=3600.0, gt=0)
    HEIGHT_TOLERANCE: int = Field(default=100, ge=0)

    # Network constants
    TARGET_BLOCK_INTERVAL: float = Field(default=15.0, gt=0)  # seconds, all algorithms combined
    ALGORITHM_COUNT: int = Field(default=5, gt=0)

    # Presentation settings
    MINER_DISPLAY_CAP: int = Field(default=25, gt=0)
    OTHER_THRESHOLD_PERCENT: float = Field(default=5.0, ge=0, le=100)
    BLOCKS_PER_PAGE: int = Field(default=10, gt=0)

    # API settings
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = ""  # Comma-separated list of allowed origins in production

    # Monitoring settings
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    STALE_FEED_SECONDS: int = Field(default=300, gt=0)
    HEALTH_CHECK_INTERVAL: int = Field(default=30, gt=0)  # seconds

    # Notification settings
    NOTIFICATION_WINDOW: int = 300  # 5 minutes
    MAX_SIMILAR_NOTIFICATIONS: int = 3

    @model_validator(mode="after")
    def check_reconnect_delays(self) -> "Settings":
        if self.RECONNECT_MAX_DELAY < self.RECONNECT_DELAY:
            raise ValueError("RECONNECT_MAX_DELAY must not be smaller than RECONNECT_DELAY")
        return self

    def get_allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)

# Create settings instance
settings = Settings()
