"""
RFC 9457 Problem Details pour HTTP APIs - Exceptions Vetra.

Ce module réexporte les exceptions du module fastapi-errors-rfc9457 et
convertit les erreurs de synchronisation VMS en réponses Problem Details.
"""

from fastapi_errors_rfc9457 import (
    ConflictError,
    ForbiddenError,
    InternalServerError,
    NotFoundError,
    ProblemDetail,
    RFC9457Exception,
    ServiceUnavailableError,
    UnauthorizedError,
    ValidationError,
)

from app.infrastructure.ezyvet.exceptions import (
    AuthenticationFailure,
    PersistenceFailure,
    SyncCancelled,
    VmsSyncError,
)


class VmsAuthenticationError(RFC9457Exception):
    """
    Exception levée lorsque le VMS refuse ou ne peut pas délivrer de jeton.

    Attributes:
        status_code: Code HTTP 502 (Bad Gateway)
        problem_detail: Détails de l'erreur au format RFC 9457
    """

    def __init__(self, system: str, detail: str):
        super().__init__(
            status_code=502,
            title="VMS Authentication Failed",
            detail=f"Could not authenticate with {system}: {detail}",
            type="https://vetra.app/errors/vms-authentication",
            instance=f"/api/v1/vms/{system}/sync",
        )


class VmsUnavailableError(ServiceUnavailableError):
    """
    Exception levée lorsque l'API du VMS est injoignable ou en erreur.

    Attributes:
        status_code: Code HTTP 503 (Service Unavailable)
        problem_detail: Détails de l'erreur au format RFC 9457
    """

    def __init__(
        self,
        detail: str = "VMS API is unavailable",
        instance: str | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(
            detail=detail,
            retry_after=retry_after,
            instance=instance,
        )


class VmsPersistenceError(InternalServerError):
    """
    Exception levée lorsque le stockage local est indisponible pendant une synchronisation.

    Attributes:
        status_code: Code HTTP 500 (Internal Server Error)
        problem_detail: Détails de l'erreur au format RFC 9457
    """

    def __init__(
        self,
        detail: str = "Could not persist VMS records",
        instance: str | None = None,
    ):
        super().__init__(
            detail=detail,
            instance=instance,
        )


class SyncInProgressError(RFC9457Exception):
    """
    Exception levée lorsqu'une synchronisation du même VMS est déjà en cours.

    Attributes:
        status_code: Code HTTP 409 (Conflict)
    """

    def __init__(self, system: str):
        super().__init__(
            status_code=409,
            title="Synchronization In Progress",
            detail=f"A {system} synchronization is already running",
            type="https://vetra.app/errors/sync-in-progress",
            instance=f"/api/v1/vms/{system}/sync",
        )


def to_problem(error: VmsSyncError, system: str) -> RFC9457Exception:
    """
    Convertit une erreur de niveau étape en exception RFC 9457.

    Distingue "authentification impossible", "VMS injoignable" et
    "persistance impossible" pour l'appelant.
    """
    instance = f"/api/v1/vms/{system}/sync"
    if isinstance(error, AuthenticationFailure):
        return VmsAuthenticationError(system, error.message)
    if isinstance(error, PersistenceFailure):
        counts = f" (partial counts: {error.result.counts()})" if error.result else ""
        return VmsPersistenceError(
            detail=f"Could not persist {system} records: {error.message}{counts}",
            instance=instance,
        )
    if isinstance(error, SyncCancelled):
        return ConflictError(detail=f"{system} synchronization cancelled", instance=instance)
    return VmsUnavailableError(
        detail=f"Could not reach {system} API: {error.message}",
        instance=instance,
    )


__all__ = [
    "ConflictError",
    "ForbiddenError",
    "InternalServerError",
    "NotFoundError",
    "ProblemDetail",
    "RFC9457Exception",
    "ServiceUnavailableError",
    "SyncInProgressError",
    "UnauthorizedError",
    "ValidationError",
    "VmsAuthenticationError",
    "VmsPersistenceError",
    "VmsUnavailableError",
    "to_problem",
]
