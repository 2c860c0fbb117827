"""Runtime configuration for the OTP gate.

Relies on pydantic-settings so that environment variables (prefixed with ``OTP_GATE_``)
can override defaults. See `.env.example` for common values.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CODE_DIGITS = 6


class Settings(BaseSettings):
    """Captures runtime configuration for challenge issuance and delivery."""

    strategy: Literal["random", "totp"] = Field(
        default="random",
        description="Code strategy: stateful random code with expiry, or time-based OTP",
    )
    otp_validity_s: int = Field(default=120, description="Lifetime of a random code in seconds")
    otp_clock_skew_s: int = Field(
        default=5,
        description="Seconds an issue time may lie ahead of the clock before the code counts as corrupt",
    )
    totp_step_s: int = Field(default=30, description="TOTP time step in seconds (5 for fast rotation)")
    totp_lookback_steps: int = Field(
        default=1,
        description="Number of previous TOTP steps still accepted; never extends forward",
    )

    delivery_transport: Literal["relay", "bot_api"] = Field(
        default="relay",
        description="How codes reach the user: parameterised relay endpoint or direct bot API",
    )
    relay_url: Optional[str] = Field(
        default=None,
        description="Relay endpoint receiving phone/code parameters (e.g. http://localhost:8000/webhook)",
    )
    relay_method: Literal["GET", "POST"] = Field(default="GET")
    bot_api_url: str = Field(
        default="https://api.telegram.org/sendMessage",
        description="Messaging API endpoint accepting chat_id/text JSON payloads",
    )
    bot_api_token: Optional[str] = Field(default=None, description="Bearer token for the messaging API")
    delivery_timeout_s: float = Field(default=5.0, description="Upper bound for a single delivery call")
    default_client_id: str = Field(
        default="Keycloak",
        description="Client name embedded in messages when the request carries no client_id",
    )

    attribute_store: Literal["memory", "sqlite"] = Field(default="memory")
    sqlite_path: Path = Field(default=Path("data/otp_gate.sqlite3"))
    sqlite_busy_timeout_ms: int = Field(default=2000)

    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default=Path("data/logs"))

    model_config = SettingsConfigDict(
        env_prefix="OTP_GATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("strategy", "delivery_transport", "attribute_store", mode="before")
    def _normalize_choice(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("relay_method", mode="before")
    def _normalize_method(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("otp_validity_s", "totp_step_s")
    def _validate_positive_seconds(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("durations must be positive")
        return value

    @field_validator("totp_lookback_steps", "otp_clock_skew_s")
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @model_validator(mode="after")
    def _warn_wide_totp_window(self) -> "Settings":
        if self.strategy == "totp" and self.totp_lookback_steps > 1:
            logger.warning(
                "TOTP codes stay replayable for %s steps (%ss); the default is one step back",
                self.totp_lookback_steps + 1,
                (self.totp_lookback_steps + 1) * self.totp_step_s,
            )
        return self

    @field_validator("delivery_timeout_s")
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("delivery_timeout_s must be positive")
        return value

    @field_validator("relay_url", "bot_api_token", mode="before")
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("sqlite_path", "log_dir", mode="before")
    def _expand_path(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        return Path(value).expanduser()

    def ensure_directories(self) -> None:
        """Create directories that must exist at runtime."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        if self.attribute_store == "sqlite":
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    def delivery_summary(self) -> dict[str, object]:
        summary: dict[str, object] = {
            "transport": self.delivery_transport,
            "timeout_s": self.delivery_timeout_s,
        }
        if self.delivery_transport == "relay":
            summary["endpoint"] = self.relay_url
            summary["method"] = self.relay_method
        else:
            summary["endpoint"] = self.bot_api_url
            summary["token_configured"] = bool(self.bot_api_token)
        return summary
