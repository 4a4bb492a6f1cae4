"""ezyVet integration package for VMS synchronization."""

from app.infrastructure.ezyvet.auth import TokenManager
from app.infrastructure.ezyvet.client import EzyVetClient
from app.infrastructure.ezyvet.config import ezyvet_settings
from app.infrastructure.ezyvet.identifiers import (
    CONTACT_RESOURCE,
    CUSTOMER_FILTERS,
    EZYVET_SYSTEM,
)

__all__ = [
    "CONTACT_RESOURCE",
    "CUSTOMER_FILTERS",
    "EZYVET_SYSTEM",
    "EzyVetClient",
    "TokenManager",
    "ezyvet_settings",
]
