from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

MAX_SESSION_CACHE_TTL_SECONDS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    _project_root = Path(__file__).parent.parent

    model_config = SettingsConfigDict(
        env_file=str(_project_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Environment / mode
    environment: str = Field(
        "development",
        alias="APP_ENV",
        description="Current runtime environment, e.g. development / production",
    )
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")

    # Required credentials
    telegram_token: str | None = Field(
        default=None,
        alias="TELEGRAM_TOKEN",
        description="Bot token for the messaging transport",
    )
    openai_api_key: str | None = Field(
        default=None,
        alias="OPENAI_API_KEY",
        description="API key for the hosted assistant backend",
    )
    assistant_id: str | None = Field(
        default=None,
        alias="ASSISTANT_ID",
        description="Identifier of the hosted assistant that answers users",
    )

    # Messaging transport
    telegram_api_base: str = Field(
        "https://api.telegram.org",
        alias="TELEGRAM_API_BASE",
    )
    delivery_mode: str = Field(
        "webhook",
        alias="DELIVERY_MODE",
        description="How inbound updates arrive: webhook or polling",
    )
    webhook_url: str | None = Field(
        default=None,
        alias="WEBHOOK_URL",
        description="Public URL registered with the transport in webhook mode",
    )
    transport_timeout: float = Field(15.0, alias="TRANSPORT_TIMEOUT")
    polling_timeout: int = Field(
        30,
        alias="POLLING_TIMEOUT",
        description="Long-poll timeout (seconds) for getUpdates",
    )

    # Assistant backend
    openai_base_url: str | None = Field(default=None, alias="OPENAI_BASE_URL")
    assistant_timeout: float = Field(
        60.0,
        alias="ASSISTANT_TIMEOUT",
        description="Per-request timeout (seconds) for the assistant SDK",
    )
    assistant_poll_interval_ms: int = Field(
        1000,
        alias="ASSISTANT_POLL_INTERVAL_MS",
        description="Poll interval while waiting for an assistant run to finish",
    )

    # Storage tiers
    storage_backend: str = Field(
        "memory",
        alias="STORAGE_BACKEND",
        description="TTL cache tier implementation: memory or redis",
    )
    redis_url: str = Field("redis://redis:6379/0", alias="REDIS_URL")
    redis_connect_timeout: float = Field(5.0, alias="REDIS_CONNECT_TIMEOUT")
    redis_socket_timeout: float = Field(5.0, alias="REDIS_SOCKET_TIMEOUT")
    database_url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="SQLAlchemy URL for the durable tier; unset runs without one",
    )
    auto_apply_db_migrations: bool = Field(
        True,
        alias="AUTO_APPLY_DB_MIGRATIONS",
        description="Run alembic upgrade head at startup (Postgres only)",
    )
    session_cache_ttl_seconds: int = Field(
        24 * 60 * 60,
        alias="SESSION_CACHE_TTL_SECONDS",
        description="Expiry of session entries in the cache tier",
    )
    session_memory_ttl_seconds: float = Field(
        5.0,
        alias="SESSION_MEMORY_TTL_SECONDS",
        description="How long a process serves a session from its own memory before re-reading shared tiers",
    )
    session_memory_max_entries: int = Field(10_000, alias="SESSION_MEMORY_MAX_ENTRIES")
    dedupe_ttl_seconds: int = Field(
        3600,
        alias="DEDUPE_TTL_SECONDS",
        description="How long processed update ids are remembered",
    )

    # Dispatch / resilience
    dispatch_concurrency: int = Field(5, alias="DISPATCH_CONCURRENCY")
    retry_max_attempts: int = Field(3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay: float = Field(1.0, alias="RETRY_BASE_DELAY")
    breaker_failure_threshold: int = Field(5, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_reset_timeout: float = Field(30.0, alias="BREAKER_RESET_TIMEOUT")
    typing_interval: float = Field(4.0, alias="TYPING_INTERVAL")

    # Handoff / operator
    handoff_trigger_phrase: str = Field(
        "[HANDOFF]",
        alias="HANDOFF_TRIGGER_PHRASE",
        description="Marker in an assistant reply that hands the chat to a human",
    )
    operator_username: str = Field("capyoperator", alias="OPERATOR_USERNAME")
    operator_chat_link: str | None = Field(
        default=None,
        alias="OPERATOR_CHAT_LINK",
        description="Contact link shown to users; defaults to t.me/<operator_username>",
    )
    operator_transfer_message: str = Field(
        "You are being transferred to a human operator. "
        "Press the button below to contact them directly.",
        alias="OPERATOR_TRANSFER_MESSAGE",
    )
    operator_button_text: str = Field("Contact operator", alias="OPERATOR_BUTTON_TEXT")
    operator_chat_id: str | None = Field(
        default=None,
        alias="OPERATOR_CHAT_ID",
        description="Optional chat that receives user messages while in handoff",
    )
    history_limit: int = Field(10, alias="HISTORY_LIMIT")

    # Multi-instance coordination
    instance_heartbeat_interval: float = Field(10.0, alias="INSTANCE_HEARTBEAT_INTERVAL")
    instance_stale_timeout: float = Field(30.0, alias="INSTANCE_STALE_TIMEOUT")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_timezone: str | None = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="IANA timezone for log timestamps, e.g. Europe/Berlin",
    )

    @field_validator("session_cache_ttl_seconds")
    @classmethod
    def _bound_cache_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("SESSION_CACHE_TTL_SECONDS must be positive")
        return min(value, MAX_SESSION_CACHE_TTL_SECONDS)

    @field_validator("session_memory_ttl_seconds", "session_memory_max_entries")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("storage_backend", "delivery_mode")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def resolved_operator_chat_link(self) -> str:
        if self.operator_chat_link:
            return self.operator_chat_link
        return f"https://t.me/{self.operator_username}"

    def validate_required(self) -> None:
        """
        Refuse to start without the transport token, assistant API key and
        assistant id. All missing names are reported at once.
        """
        required = {
            "TELEGRAM_TOKEN": self.telegram_token,
            "OPENAI_API_KEY": self.openai_api_key,
            "ASSISTANT_ID": self.assistant_id,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(missing)
        if self.storage_backend not in {"memory", "redis"}:
            raise ConfigurationError(
                [], message=f"Unsupported STORAGE_BACKEND '{self.storage_backend}'"
            )
        if self.delivery_mode not in {"webhook", "polling"}:
            raise ConfigurationError(
                [], message=f"Unsupported DELIVERY_MODE '{self.delivery_mode}'"
            )


settings = Settings()
