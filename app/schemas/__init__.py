"""Schemas Pydantic pour validation des donnees."""

from app.schemas.responses import (
    COMMON_RESPONSES,
    ConflictErrorResponse,
    ProblemDetailResponse,
)
from app.schemas.user import LocalUserCreate, LocalUserResponse
from app.schemas.vms import (
    Credential,
    ExternalRecord,
    Page,
    RecordFailure,
    SyncReport,
    SyncResult,
    SyncState,
    SyncStatusResponse,
)

__all__ = [
    "COMMON_RESPONSES",
    "ConflictErrorResponse",
    "Credential",
    "ExternalRecord",
    "LocalUserCreate",
    "LocalUserResponse",
    "Page",
    "ProblemDetailResponse",
    "RecordFailure",
    "SyncReport",
    "SyncResult",
    "SyncState",
    "SyncStatusResponse",
]
