"""Engine settings, .env loading and logging setup."""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine settings loaded from environment or .env."""

    # Unknown brands: "default" substitutes DEFAULT_BRAND, "strict" raises
    BRAND_FALLBACK: Literal["default", "strict"] = "default"
    DEFAULT_BRAND: str = "gmc_chevrolet"

    LOG_LEVEL: str = "INFO"

    TELEMETRY_ENABLED: bool = True
    TELEMETRY_MAX_EVENTS: int = 1000

    model_config = SettingsConfigDict(
        env_prefix="DEALERMETRICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> EngineSettings:
    """Return cached settings instance."""
    return EngineSettings()  # type: ignore[call-arg]


def load_env_file(path: Optional[str] = None) -> bool:
    """Load environment variables from .env file if not already set.

    WHAT:
        Loads variables from a local .env file into os.environ.
        Does NOT overwrite existing environment variables.
    WHY:
        Lets an embedding application share one .env between its own
        settings and ours without clobbering deployment variables.
    PARAMETERS:
        path: Explicit .env path; searched upward from the working
              directory when omitted
    """
    from dotenv import find_dotenv, load_dotenv

    logger = logging.getLogger(__name__)

    loaded = load_dotenv(dotenv_path=path or find_dotenv(usecwd=True), override=False)
    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
    return loaded


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts embedding the engine.

    The library never calls this itself.
    """
    resolved = (level or get_settings().LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
