from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
)


class MailSettings(BaseSettings):
    """SMTP configuration; all the notification consumer needs."""

    model_config = ENV_CONFIG

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    from_email: str | None = None
    smtp_use_tls: bool = False
    smtp_use_ssl: bool = False
    smtp_use_auth: bool = False
    smtp_timeout: float = 10.0

    @property
    def sender_email(self) -> str:
        return self.from_email or self.smtp_user or "noreply@local"


class Settings(MailSettings):
    """
    Storefront API configuration, read from the environment (or .env).

    Built once at startup and handed to the database, the M-Pesa client
    and the event publisher. Nothing else reads os.environ.
    """

    model_config = ENV_CONFIG

    app_name: str = "glowhub-storefront"
    log_level: str = "INFO"
    cors_origins: str = "*"

    # Database
    database_url: str = Field(..., description="SQLAlchemy URL, e.g. postgresql+psycopg2://...")
    db_schema: str | None = None  # Postgres only: search_path for every connection
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_null_pool: bool = False  # Lambda-friendly: no pooled connections piling up
    db_init_on_startup: bool = True  # prefer deploy-time migrations for serverless
    seed_sample_products: bool = True

    # Auth (tokens are issued elsewhere, we only verify)
    jwt_secret: str = Field(..., min_length=1)
    jwt_issuer: str | None = None
    jwt_audience: str | None = None

    # M-Pesa Daraja
    mpesa_base_url: str = "https://sandbox.safaricom.co.ke"
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = "174379"
    mpesa_passkey: str = ""
    mpesa_callback_url: str = "https://mydomain.com/payments/callback"
    mpesa_callback_token: str | None = None
    mpesa_account_reference: str = "MamaZulekha"
    mpesa_transaction_desc: str = "Payment for order"
    mpesa_timeout: float = 10.0
    mpesa_token_retries: int = Field(default=3, ge=1)
    mpesa_token_backoff: float = Field(default=0.5, ge=0)

    # Events: log | rabbitmq | sqs
    event_backend: str = "log"
    event_exchange: str = "glowhub.events"
    rabbitmq_url: str | None = None
    rabbitmq_heartbeat: int = 30
    rabbitmq_blocked_timeout: float = 5.0
    sqs_queue_url: str | None = None

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_mail_settings() -> MailSettings:
    return MailSettings()
