import json
from typing import Literal, TypeAlias

from opentelemetry.sdk.resources import Resource
from pydantic import AnyHttpUrl, PostgresDsn, field_validator
from pydantic_settings import BaseSettings

# Type personnalisé pour les listes configurables depuis l'environnement
ConfigurableList: TypeAlias = str | list[str] | list[AnyHttpUrl]


def parse_list_from_env(value: ConfigurableList, field_name: str = "field") -> list[str]:
    """
    Fonction utilitaire pour parser une liste depuis une variable d'environnement.

    Supporte les formats suivants:
    - Liste Python directe: ['val1', 'val2']
    - Format JSON: '["val1", "val2"]'
    - Format virgules: "val1,val2,val3"
    - Chaîne vide: "" → []

    Args:
        value: La valeur à parser (chaîne ou liste)
        field_name: Nom du champ pour les messages d'erreur

    Returns:
        Liste de chaînes parsée

    Raises:
        ValueError: Si le format n'est pas valide
    """
    if isinstance(value, list):
        return value
    elif isinstance(value, str):
        value = value.strip()
        # Si c'est du JSON (commence par [ et finit par ])
        if value.startswith("[") and value.endswith("]"):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                raise ValueError(f"Format JSON invalide pour {field_name}: {value}")
        # Sinon, traiter comme une chaîne séparée par des virgules
        elif value:
            return [item.strip() for item in value.split(",") if item.strip()]
        else:
            return []
    raise ValueError(f"Valeur invalide pour {field_name}: {value}")


class Settings(BaseSettings):
    try:
        from app import __version__
    except ImportError:
        __version__ = "0.1.0"  # Version par défaut si non trouvée

    PROJECT_NAME: str = "vetra-vms-sync"
    PROJECT_SLUG: str = "vms-sync"
    VERSION: str = __version__
    DESCRIPTION: str = "Synchronisation des contacts ezyVet vers les comptes Vetra"

    API_LATEST_VERSION: str = "v1"

    # Environnement
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # Keycloak Authentication (bearer-only pour les endpoints d'administration)
    KEYCLOAK_SERVER_URL: str
    KEYCLOAK_REALM: str
    KEYCLOAK_CLIENT_ID: str

    # OpenTelemetry
    OTEL_SERVICE_NAME: str = "vetra-vms-sync"
    OTEL_LOG_LEVEL: str = "info"
    OTEL_PYTHON_LOG_CORRELATION: bool = True

    # CORS
    # Définir dans .env, ex: ALLOWED_ORIGINS='["http://localhost:3000"]'
    ALLOWED_ORIGINS: ConfigurableList = []
    TRUSTED_HOSTS: ConfigurableList = ["localhost", "127.0.0.1"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: ConfigurableList) -> list[str]:
        """Parse ALLOWED_ORIGINS (virgules, JSON ou liste Python)."""
        return parse_list_from_env(v, "ALLOWED_ORIGINS")

    @field_validator("TRUSTED_HOSTS", mode="before")
    @classmethod
    def assemble_trusted_hosts(cls, v: ConfigurableList) -> list[str]:
        """Parse TRUSTED_HOSTS depuis une variable d'environnement."""
        return parse_list_from_env(v, "TRUSTED_HOSTS")

    # Base de données
    # PostgreSQL avec SQLAlchemy 2.0
    SQLALCHEMY_DATABASE_URI: PostgresDsn

    # Redis Messaging (événements de fin de synchronisation)
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_DB: int = 0
    EVENTS_ENABLED: bool = True

    # Synchronisation VMS périodique (0 = désactivée, déclenchement manuel uniquement)
    VMS_SYNC_INTERVAL_SECONDS: int = 0
    VMS_SYNC_SYSTEMS: ConfigurableList = ["ezyVet"]

    @field_validator("VMS_SYNC_SYSTEMS", mode="before")
    @classmethod
    def assemble_sync_systems(cls, v: ConfigurableList) -> list[str]:
        """Parse VMS_SYNC_SYSTEMS depuis une variable d'environnement."""
        return parse_list_from_env(v, "VMS_SYNC_SYSTEMS")

    # Ressource OpenTelemetry
    @property
    def OTEL_RESOURCE_ATTRIBUTES(self) -> Resource:  # noqa: N802
        """Crée l'objet Resource pour OpenTelemetry avec les attributs du service."""
        return Resource(
            attributes={
                "service.name": self.OTEL_SERVICE_NAME,
                "service.version": self.VERSION,
                "service.environment": self.ENVIRONMENT,
                "service.debug": str(self.DEBUG).lower(),
            }
        )

    def get_api_prefix(self, version: str | None = None) -> str:
        """
        Get API prefix for a specific version.

        Args:
            version: API version (e.g., "v1"). Defaults to latest.

        Returns:
            API prefix string (e.g., "/api/v1")
        """
        version = version or self.API_LATEST_VERSION
        return f"/api/{version}"

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "ignore"  # Les variables ezyVet sont lues par EzyVetSettings


# Instance unique des paramètres chargée depuis .env
settings = Settings()
