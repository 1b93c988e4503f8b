from functools import lru_cache
from typing import Any, Mapping, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# Lowercase option names accepted by SmsSync.init() mapped to settings fields
OPTION_ALIASES = {
    "timeout": "TIMEOUT",
    "concurrency": "CONCURRENCY",
    "from": "FROM",
    "to": "TO",
    "reply": "REPLY",
    "secret": "SECRET",
    "transport": "TRANSPORT",
    "queueName": "QUEUE_NAME",
    "queue_name": "QUEUE_NAME",
    "receiveQueue": "RECEIVE_QUEUE",
    "receive_queue": "RECEIVE_QUEUE",
    "database_url": "DATABASE_URL",
    "broker_url": "BROKER_URL",
    "eager": "QUEUE_EAGER",
    "log_level": "LOG_LEVEL",
}


class Settings(BaseSettings):
    """
    Transport settings loaded from environment variables.
    Every option has a documented default; env vars and caller options win.
    """

    # Pydantic v2 settings config
    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Queue shutdown deadline in milliseconds
    TIMEOUT: int = 5000

    # Worker pool size, also the fan-out for parallel state updates
    CONCURRENCY: int = 10

    # Default sender id and inbound recipient fallback
    FROM: str = "open311"
    TO: Optional[str] = None

    # Auto-reply text returned to the device for every inbound sms
    REPLY: Optional[str] = None

    # Shared secret configured on the SMSSync device
    SECRET: str = ""

    # Routing tags
    TRANSPORT: str = "open311-smssync"
    QUEUE_NAME: str = "smssync"
    RECEIVE_QUEUE: Optional[str] = None

    # Store and broker
    DATABASE_URL: str = "sqlite:///./smssync.db"
    BROKER_URL: str = "redis://localhost:6379/0"
    QUEUE_EAGER: bool = False
    WORKER_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


def merge_options(base: Settings, options: Optional[Mapping[str, Any]] = None) -> Settings:
    """
    Merge caller options over settings. Caller-supplied values win.

    Accepts both the lowercase option names (timeout, concurrency, from,
    queueName, ...) and the settings field names.
    """
    if not options:
        return base

    update = {}
    for key, value in options.items():
        field = OPTION_ALIASES.get(key, key)
        if field not in Settings.model_fields:
            continue
        update[field] = value

    # Re-validate so that e.g. "20" becomes 20 for CONCURRENCY
    return Settings.model_validate({**base.model_dump(), **update})
