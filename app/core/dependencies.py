"""Dependances FastAPI pour l'injection de services."""

from fastapi_errors_rfc9457 import NotFoundError

from app.services.vms_sync_service import VmsSyncPipeline, get_pipeline, registered_systems


def get_vms_pipeline(system: str) -> VmsSyncPipeline:
    """
    Recupere le pipeline de synchronisation du VMS demande.

    Les pipelines sont enregistres dans le lifespan de l'application (main.py).

    Args:
        system: Nom du VMS (parametre de chemin, ex: "ezyVet")

    Returns:
        Pipeline du VMS

    Raises:
        NotFoundError: Si aucun pipeline n'est enregistre pour ce VMS
    """
    try:
        return get_pipeline(system)
    except KeyError:
        raise NotFoundError(
            detail=f"Unknown VMS '{system}'. Available: {', '.join(registered_systems()) or 'none'}",
            resource_type="vms",
            resource_id=system,
        ) from None
