"""Schémas Pydantic pour la synchronisation VMS (ezyVet → Vetra).

Ce module définit:
- Credential: jeton bearer détenu par le TokenManager
- ExternalRecord: contact VMS décodé (transitoire, jamais persisté)
- Page: résultat du décodage d'une page de l'API
- SyncResult / SyncReport: contrat de retour d'une exécution du pipeline
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SyncState(str, Enum):
    """États de l'orchestrateur de synchronisation."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    INITIALIZED = "initialized"


class Credential(BaseModel):
    """Jeton bearer de l'API VMS avec sa fenêtre de validité."""

    access_token: str = Field(..., min_length=1)
    issued_at: datetime
    expires_in: int = Field(..., gt=0, description="Durée de validité en secondes")
    token_type: str = "Bearer"

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    def is_valid(self, now: datetime | None = None, margin_seconds: int = 0) -> bool:
        """Vrai si le jeton reste utilisable au moins `margin_seconds` secondes."""
        now = now or datetime.now(UTC)
        return now + timedelta(seconds=margin_seconds) < self.expires_at

    @property
    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


class ExternalRecord(BaseModel):
    """Contact VMS décodé.

    L'identifiant externe vient du champ `id` frère de l'objet `contact` dans la
    réponse ezyVet; il est fusionné dans l'enregistrement au décodage. Les autres
    attributs du contact sont conservés comme champs supplémentaires.
    """

    external_id: str = Field(..., min_length=1, max_length=64)
    first_name: str = ""
    last_name: str = ""
    name: str | None = None
    business_name: str | None = None
    code: str | None = None
    is_customer: bool | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("external_id", mode="before")
    @classmethod
    def coerce_external_id(cls, v: Any) -> Any:
        """ezyVet renvoie des identifiants numériques: on les normalise en chaîne."""
        if isinstance(v, bool):
            raise ValueError("external_id must not be a boolean")
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return "" if v is None else v


class Page(BaseModel):
    """Une page de l'API VMS après décodage."""

    number: int
    limit: int
    raw_count: int = Field(..., description="Nombre d'items reçus, décodés ou non")
    records: list[ExternalRecord] = []
    undecodable: int = 0

    @property
    def is_last(self) -> bool:
        return self.raw_count < self.limit


RecordOutcome = Literal["created", "skipped", "failed"]


class RecordFailure(BaseModel):
    """Détail d'un enregistrement compté en échec."""

    external_id: str
    stage: str
    reason: str
    username: str | None = None
    entity_created: bool = False


class SyncResult(BaseModel):
    """Compteurs agrégés d'une réconciliation."""

    created: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[RecordFailure] = []
    partial: list[str] = Field(
        default_factory=list,
        description="Utilisateurs créés localement dont le lien VMS n'a pas pu être écrit",
    )

    @property
    def total(self) -> int:
        return self.created + self.skipped + self.failed

    def merge(self, other: "SyncResult") -> "SyncResult":
        """Additionne les compteurs d'un autre résultat (ex: page suivante)."""
        self.created += other.created
        self.skipped += other.skipped
        self.failed += other.failed
        self.failures.extend(other.failures)
        self.partial.extend(other.partial)
        return self

    def counts(self) -> dict[str, int]:
        return {"created": self.created, "skipped": self.skipped, "failed": self.failed}


class SyncReport(BaseModel):
    """Rapport retourné par `update_db` pour une exécution réussie."""

    system: str
    phase: Literal["initial", "incremental"]
    status_code: int = 0
    state: SyncState
    result: SyncResult = Field(default_factory=SyncResult)
    pages: int = 0
    undecodable: int = 0
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class SyncStatusResponse(BaseModel):
    """État courant d'un orchestrateur (endpoint de statut)."""

    system: str
    state: SyncState
    running: bool
    last_report: SyncReport | None = None
    last_error: str | None = None
