from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

from whatsapp_relay.templates import DEFAULT_CTA_BODY, DEFAULT_WELCOME_MESSAGE


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Storage - "memory://" selects the in-memory store
    DATABASE_URL: str = "sqlite:///./relay.db"

    LOG_LEVEL: str = "INFO"

    # WhatsApp Cloud API credentials
    WHATSAPP_ACCESS_TOKEN: str = ""
    PHONE_NUMBER_ID: str = ""
    # Display number of the business line, also treated as our own identity
    BUSINESS_PHONE_NUMBER: str = ""
    GRAPH_API_URL: str = "https://graph.facebook.com"
    GRAPH_API_VERSION: str = "v21.0"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Webhook security
    WEBHOOK_VERIFY_TOKEN: str = ""
    # When set, POST /webhook requires a valid X-Hub-Signature-256 header
    APP_SECRET: str = ""

    # Outbound content
    WELCOME_MESSAGE: str = DEFAULT_WELCOME_MESSAGE
    CTA_BODY: str = DEFAULT_CTA_BODY
    CTA_DISPLAY_TEXT: str = "Visit website"
    CTA_URL: str = "https://example.com"

    BROADCAST_DELAY_SECONDS: float = 1.0

    @property
    def own_identities(self) -> frozenset[str]:
        """Sender ids that belong to this system (echoes of our own sends)."""
        return frozenset(
            value for value in (self.PHONE_NUMBER_ID, self.BUSINESS_PHONE_NUMBER) if value
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
