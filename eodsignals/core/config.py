"""Application settings with Pydantic validation and environment loading."""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "EOD Signals"
    environment: str = Field(
        default="production",
        description="Environment: development, staging, production",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Database
    database_url: str = Field(
        default="sqlite:///./eodsignals.db",
        description="SQLAlchemy database URL",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")

    # Feature engine
    engine_version: str = Field(
        default="1.0.0", description="Version stamped on every feature snapshot"
    )
    feature_lookback_days: int = Field(
        default=300,
        ge=30,
        description="Calendar days of bars loaded per feature calculation",
    )
    deep_dive_window_days: int = Field(
        default=30, ge=1, le=365, description="History window for deep dives"
    )
    universe_workers: int = Field(
        default=1, ge=1, le=32, description="Worker threads for universe passes"
    )
    default_markets: List[str] = Field(default_factory=lambda: ["US"])

    # Stop-loss risk profile
    stop_default_pct: float = Field(
        default=0.10, description="Flat stop distance when ATR is unavailable"
    )
    stop_atr_multiplier: float = Field(
        default=2.0, description="ATR multiple for the trailing stop distance"
    )
    stop_min_pct: float = Field(
        default=0.05, description="Tightest allowed stop distance"
    )
    stop_max_pct: float = Field(
        default=0.20, description="Widest allowed stop distance"
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR"
    )
    log_format: str = Field(default="json", description="Log format: json or text")

    @field_validator("default_markets", mode="before")
    @classmethod
    def parse_markets(cls, v):
        if isinstance(v, str):
            return [m.strip().upper() for m in v.split(",") if m.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"json", "text"}:
            raise ValueError("log_format must be 'json' or 'text'")
        return lower

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def markets(self):
        """Configured markets as Market members.

        Raises ConfigurationError on an unknown market code.
        """
        from eodsignals.domain.market import parse_market

        return [parse_market(code) for code in self.default_markets]

    def stop_loss_config(self):
        """Build the validated stop-loss risk profile."""
        from eodsignals.engine.stop_loss import StopLossConfig

        return StopLossConfig.from_floats(
            default_pct=self.stop_default_pct,
            atr_multiplier=self.stop_atr_multiplier,
            min_pct=self.stop_min_pct,
            max_pct=self.stop_max_pct,
        )


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()


settings = get_settings()
