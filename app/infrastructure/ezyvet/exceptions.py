"""VMS synchronization exceptions.

Stage-level errors (authentication, fetch, persistence, cancellation) end the
current run. Per-item errors (decode, validation, external link) are absorbed
into the run counters by the caller.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.schemas.vms import SyncResult


class VmsSyncError(Exception):
    """Base exception for VMS synchronization."""

    stage = "sync"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationFailure(VmsSyncError):
    """Raised when no bearer credential can be obtained from the VMS."""

    stage = "authentication"


class FetchFailure(VmsSyncError):
    """Raised when a page cannot be read from the VMS API."""

    stage = "fetch"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, {"status_code": status_code, **(details or {})})
        self.status_code = status_code


class DecodeFailure(VmsSyncError):
    """Raised when a single item of a page cannot be decoded."""

    stage = "decode"

    def __init__(self, message: str, item_index: int, external_id: str | None = None):
        super().__init__(message, {"item_index": item_index, "external_id": external_id})
        self.item_index = item_index
        self.external_id = external_id


class ValidationFailure(VmsSyncError):
    """Raised when a decoded record misses a required identity field."""

    stage = "validation"

    def __init__(self, message: str, external_id: str, field: str):
        super().__init__(message, {"external_id": external_id, "field": field})
        self.external_id = external_id
        self.field = field


class ExternalLinkFailure(VmsSyncError):
    """Raised when the (system, external id) link of one record cannot be written."""

    stage = "persistence"

    def __init__(self, message: str, username: str, system: str, external_id: str):
        super().__init__(
            message,
            {"username": username, "system": system, "external_id": external_id},
        )
        self.username = username
        self.system = system
        self.external_id = external_id


class UsernameTakenError(VmsSyncError):
    """Raised by a store when the synthesized username already belongs to a user."""

    stage = "persistence"

    def __init__(self, username: str):
        super().__init__(f"Username already taken: {username}", {"username": username})
        self.username = username


class RecordWriteFailure(VmsSyncError):
    """Raised when the store rejects the data of one account (value too long, bad encoding)."""

    stage = "persistence"

    def __init__(self, message: str, username: str):
        super().__init__(message, {"username": username})
        self.username = username


class PersistenceFailure(VmsSyncError):
    """Raised when the local store is unavailable.

    ``result`` holds the counts reached before the failure.
    """

    stage = "persistence"

    def __init__(
        self,
        message: str,
        result: "SyncResult | None" = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.result = result


class SyncCancelled(VmsSyncError):
    """Raised when a run is cancelled between two pages."""

    stage = "cancelled"
