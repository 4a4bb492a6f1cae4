"""Endpoints d'administration de la synchronisation VMS.

Réservés aux administrateurs Vetra:
- Déclencher une synchronisation (import initial puis incrémental)
- Consulter l'état du pipeline et le dernier rapport
- Retrouver le compte Vetra lié à un contact VMS
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_vms_pipeline
from app.core.exceptions import NotFoundError, SyncInProgressError, to_problem
from app.infrastructure.ezyvet.exceptions import VmsSyncError
from app.models.user import User, VmsIdentifier
from app.schemas.user import LocalUserResponse
from app.schemas.vms import SyncReport, SyncStatusResponse
from app.services.vms_sync_service import VmsSyncPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{system}/sync", response_model=SyncReport)
async def trigger_sync(
    system: str,
    pipeline: VmsSyncPipeline = Depends(get_vms_pipeline),
) -> SyncReport:
    """
    Lance une synchronisation du VMS et attend son rapport.

    Args:
        system: Nom du VMS (ex: "ezyVet")
        pipeline: Pipeline du VMS

    Returns:
        Rapport d'exécution (compteurs created/skipped/failed)

    Raises:
        SyncInProgressError 409: Une synchronisation est déjà en cours
        VmsAuthenticationError 502: Le VMS refuse nos identifiants
        VmsUnavailableError 503: API du VMS injoignable
        VmsPersistenceError 500: Stockage local indisponible
    """
    if pipeline.running:
        raise SyncInProgressError(system)

    try:
        report = await pipeline.update_db()
    except VmsSyncError as e:
        raise to_problem(e, system) from e

    logger.info(f"Synchronisation {system} déclenchée via l'API: {report.result.counts()}")
    return report


@router.get("/{system}/status", response_model=SyncStatusResponse)
async def get_sync_status(
    pipeline: VmsSyncPipeline = Depends(get_vms_pipeline),
) -> SyncStatusResponse:
    """Retourne l'état du pipeline, le dernier rapport et la dernière erreur."""
    return pipeline.status()


@router.get("/{system}/users/{external_id}", response_model=LocalUserResponse)
async def get_linked_user(
    system: str,
    external_id: str,
    db: AsyncSession = Depends(get_session),
) -> LocalUserResponse:
    """
    Retrouve le compte Vetra lié à un contact du VMS.

    Raises:
        NotFoundError 404: Aucun compte lié à ce contact
    """
    result = await db.execute(
        select(User)
        .join(VmsIdentifier)
        .where(
            VmsIdentifier.system_name == system,
            VmsIdentifier.external_id == external_id,
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(
            detail=f"No Vetra user linked to {system} contact {external_id}",
            resource_type="vms_contact",
            resource_id=f"{system}:{external_id}",
        )

    return LocalUserResponse.model_validate(user)
