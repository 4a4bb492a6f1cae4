"""Configuration for the ezyVet API connection."""

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings


class EzyVetSettings(BaseSettings):
    """ezyVet connection and synchronization settings.

    Settings can be overridden via environment variables. The OAuth values
    have no defaults: they are validated when a token is requested, so a
    missing value surfaces as an authentication failure of the sync run
    rather than a startup error of the whole service.
    """

    EZYVET_BASE_URL: AnyHttpUrl = "https://api.trial.ezyvet.com/v1"
    EZYVET_TIMEOUT: float = 30.0
    EZYVET_RETRY_ATTEMPTS: int = 3
    EZYVET_RETRY_DELAY: float = 1.0
    EZYVET_PAGE_SIZE: int = 20
    EZYVET_MAX_PAGES: int | None = None
    EZYVET_TOKEN_TTL_SECONDS: int = 43200
    EZYVET_TOKEN_REFRESH_MARGIN_SECONDS: int = 60

    # OAuth client credentials
    PARTNER_ID: str | None = None
    CLIENT_ID: str | None = None
    CLIENT_SECRET: str | None = None
    GRANT_TYPE: str | None = None
    SCOPE: str | None = None

    # Provisioning of local accounts created from VMS contacts
    VMS_PLACEHOLDER_EMAIL_DOMAIN: str = "example.com"
    VMS_DEFAULT_PASSWORD: str = "password"
    BCRYPT_ROUNDS: int = 12

    model_config = {
        "env_prefix": "",
        "case_sensitive": True,
        "env_file": ".env",
        "extra": "ignore",
    }


ezyvet_settings = EzyVetSettings()
