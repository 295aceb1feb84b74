"""Settings for the TicketFlow engine.

Loads from environment variables with the TICKETFLOW_ prefix, or from a
.env file in the working directory.

    TICKETFLOW_LOG_LEVEL=DEBUG
    TICKETFLOW_ADVISOR_ENABLED=true
    TICKETFLOW_GEMINI_API_KEY=...
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Priority, TicketType


class Settings(BaseSettings):
    """Engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TICKETFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Root log level for ticketflow loggers")

    # AI advisory collaborator
    advisor_enabled: bool = Field(
        default=False,
        description="Use the Gemini advisor; otherwise all suggestions are empty",
    )
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    advisor_timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    # Client portal tokens
    client_token_prefix: str = "hx-"
    client_token_length: int = Field(default=32, ge=16, le=128)

    # Fallback classification for new tickets
    default_priority: Priority = Priority.MEDIUM
    default_ticket_type: TicketType = TicketType.SELF_INITIATION


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply the configured level to the ticketflow logger tree."""
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("ticketflow").setLevel(level)
