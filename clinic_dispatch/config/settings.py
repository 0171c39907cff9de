from typing import Annotated, Any
from urllib.parse import quote_plus

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

PLACEHOLDER_WEBHOOK_SECRET = "your_webhook_secret"


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables (and `.env`).

    Groups: API, database, messaging channel, templates, the three schedulers,
    session window and intent keywords.
    """

    # API Configuration
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Clinic Dispatch"
    PROJECT_DESCRIPTION: str = "Appointment confirmation dispatch and messaging reconciliation"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = Field("development", description="Deployment environment name")
    DEBUG: bool = Field(False, description="Debug mode (docs enabled, NullPool)")
    SENTRY_DSN: str | None = Field(None, description="Sentry DSN for error tracking")

    # PostgreSQL Database Settings
    DB_HOST: str = Field("localhost", description="PostgreSQL host")
    DB_PORT: int = Field(5432, description="PostgreSQL port")
    DB_NAME: str = Field("clinic", description="Database name")
    DB_USER: str = Field("postgres", description="Database user")
    DB_PASSWORD: str | None = Field(None, description="Database password")
    DB_ECHO: bool = Field(False, description="Log SQL queries (debug only)")
    DB_POOL_SIZE: int = Field(10, description="Connection pool size")
    DB_MAX_OVERFLOW: int = Field(20, description="Pool overflow")
    DB_POOL_RECYCLE: int = Field(3600, description="Recycle connections every N seconds")
    DATABASE_URL: str | None = Field(None, description="Full async SQLAlchemy URL, overrides DB_* fields")
    DB_QUERY_TIMEOUT_SECONDS: float = Field(8.0, description="Timeout for candidate-selection queries")

    # Messaging channel
    MESSAGING_CHANNEL: str = Field("business", description="Active channel: 'business' (Cloud API) or 'web'")
    WHATSAPP_API_BASE: str = Field("https://graph.facebook.com", description="WhatsApp Cloud API base URL")
    WHATSAPP_API_VERSION: str = Field("v18.0", description="WhatsApp Cloud API version")
    WHATSAPP_PHONE_NUMBER_ID: str = Field("", description="Sender phone number id")
    WHATSAPP_ACCESS_TOKEN: str = Field("", description="Permanent access token")
    WHATSAPP_VERIFY_TOKEN: str = Field("", description="Token expected on the webhook verification handshake")
    WHATSAPP_WEBHOOK_SECRET: str = Field("", description="App secret used to sign webhook payloads")
    WEBHOOK_REQUIRE_SIGNATURE: bool = Field(False, description="Reject unsigned webhooks when no secret is set")
    CHANNEL_TIMEOUT_SECONDS: float = Field(15.0, description="Timeout for each provider call")
    CHANNEL_RETRY_ONCE_CODES: Annotated[list[int], NoDecode] = Field(
        default=[131000, 131016],
        description="Provider error codes that get one immediate extra attempt",
    )
    WEB_BRIDGE_URL: str = Field("http://localhost:3001", description="Browser-automation bridge base URL")
    WEB_BRIDGE_TOKEN: str | None = Field(None, description="Bearer token for the bridge")

    # Templates
    DEFAULT_CONFIRM_TEMPLATE_NAME: str = Field("confirmacao_personalizada", description="Confirmation template")
    DEFAULT_TEMPLATE_LOCALE: str = Field("pt_BR", description="Template language code")
    REMINDER_TEMPLATE_NAME: str = Field("lembrete_consulta", description="Reminder template")
    CLINIC_TIMEZONE: str = Field("America/Sao_Paulo", description="Clinic time zone")
    CLINIC_CONTACT_PHONE: str = Field("(34) 3199-3069", description="Phone quoted in acknowledgements")

    # Dispatch scheduler
    DISPATCH_ENABLED: bool = Field(False, description="Run the confirmation dispatch job")
    DISPATCH_INTERVAL_SECONDS: int = Field(60, description="Dispatch job interval")
    DISPATCH_LEAD_DAYS: int = Field(1, description="Days ahead of the appointments to confirm")
    DISPATCH_BATCH_SIZE: int = Field(30, description="Max appointments per dispatch run")
    DISPATCH_SEND_INTERVAL_SECONDS: float = Field(0.8, description="Pause between provider calls")
    DISPATCH_TEXT_FALLBACK: bool = Field(False, description="Send free text when a template is rejected")

    # Reminder scheduler
    REMINDER_ENABLED: bool = Field(False, description="Run the reminder job")
    REMINDER_INTERVAL_SECONDS: int = Field(300, description="Reminder job interval")
    REMINDER_LEAD_DAYS: int = Field(1, description="Days ahead of the appointments to remind")
    REMINDER_LOOKBACK_MINUTES: int = Field(60, description="Recent-activity guard window")
    REMINDER_BATCH_SIZE: int = Field(40, description="Max reminders per run")
    REMINDER_REQUIRE_CONFIRMED: bool = Field(False, description="Only remind confirmed appointments")

    # Retry / reconciliation scheduler
    RETRY_ENABLED: bool = Field(False, description="Run the retry and reconciliation job")
    RETRY_INTERVAL_SECONDS: int = Field(300, description="Retry job interval")
    RETRY_BATCH_SIZE: int = Field(20, description="Max resends per run")
    RETRY_MAX_ATTEMPTS: int = Field(3, description="Retry cap per ledger entry")
    RETRY_BACKOFF_BASE_SECONDS: int = Field(90, description="Backoff base, doubled per attempt")
    RETRY_STATUSES: Annotated[list[str], NoDecode] = Field(
        default=["failed", "error"], description="Statuses eligible for resend"
    )
    RETRY_KINDS: Annotated[list[str], NoDecode] = Field(
        default=["template", "reminder"], description="Kinds eligible for resend"
    )
    RETRY_RESEND_ENABLED: bool = Field(True, description="Enable the resend phase")
    RETRY_SYNC_STATES: bool = Field(True, description="Enable the state-sync phase")
    RETRY_STATE_BATCH_SIZE: int = Field(20, description="Max intents re-asserted per run")
    RETRY_STATE_LOOKBACK_MINUTES: int = Field(1440, description="Age limit of intents to re-assert")

    # Session window
    SESSION_WINDOW_HOURS: int = Field(24, description="Free-text reply window after the last inbound")

    # Intent keywords
    CONFIRM_KEYWORDS: Annotated[list[str], NoDecode] = Field(
        default=["sim", "s", "confirmo", "ok", "confirmar", "confirmado"],
        description="Free-text keywords meaning confirm",
    )
    CANCEL_KEYWORDS: Annotated[list[str], NoDecode] = Field(
        default=["nao", "não", "n", "cancelar", "desmarcar"],
        description="Free-text keywords meaning cancel",
    )

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("RETRY_STATUSES", "RETRY_KINDS", "CONFIRM_KEYWORDS", "CANCEL_KEYWORDS", mode="before")
    @classmethod
    def parse_string_lists(cls, value):
        value = _split_csv(value)
        if isinstance(value, list):
            return [str(item).strip().lower() for item in value]
        return value

    @field_validator("CHANNEL_RETRY_ONCE_CODES", mode="before")
    @classmethod
    def parse_retry_once_codes(cls, value):
        value = _split_csv(value)
        if isinstance(value, list):
            return [int(code) for code in value]
        return value

    @field_validator("MESSAGING_CHANNEL")
    @classmethod
    def validate_channel(cls, v):
        v = v.strip().lower()
        if v not in ("business", "web"):
            raise ValueError("MESSAGING_CHANNEL must be 'business' or 'web'")
        return v

    @field_validator(
        "DISPATCH_BATCH_SIZE",
        "REMINDER_BATCH_SIZE",
        "RETRY_BATCH_SIZE",
        "RETRY_STATE_BATCH_SIZE",
        "RETRY_MAX_ATTEMPTS",
        "RETRY_BACKOFF_BASE_SECONDS",
        "DISPATCH_INTERVAL_SECONDS",
        "REMINDER_INTERVAL_SECONDS",
        "RETRY_INTERVAL_SECONDS",
        "SESSION_WINDOW_HOURS",
    )
    @classmethod
    def validate_positive(cls, v, info):
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @computed_field
    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy URL (asyncpg unless DATABASE_URL overrides it)."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        user = quote_plus(self.DB_USER)
        if self.DB_PASSWORD:
            password = quote_plus(self.DB_PASSWORD)
            return f"postgresql+asyncpg://{user}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        return f"postgresql+asyncpg://{user}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @computed_field
    @property
    def database_url(self) -> str:
        """Sync URL used by alembic."""
        return self.async_database_url.replace("+asyncpg", "").replace("+aiosqlite", "")

    @computed_field
    @property
    def webhook_secret_configured(self) -> bool:
        """True when a real (non placeholder) webhook secret is set."""
        secret = self.WHATSAPP_WEBHOOK_SECRET
        return bool(secret) and secret != PLACEHOLDER_WEBHOOK_SECRET

    @computed_field
    @property
    def is_development(self) -> bool:
        return self.DEBUG or self.ENVIRONMENT.lower() in ["development", "dev", "local"]


# Singleton
_settings_instance = None


def get_settings() -> Settings:
    """
    Return the cached settings instance.

    Avoids reading the environment more than once per process.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
