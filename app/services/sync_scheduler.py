"""Déclenchement périodique de la synchronisation VMS.

Tâche asyncio démarrée dans le lifespan de l'application lorsque
VMS_SYNC_INTERVAL_SECONDS > 0. Chaque tick lance `update_db` pour chaque VMS
configuré; un échec est journalisé et le tick suivant réessaie.
"""

import asyncio
import logging

from app.infrastructure.ezyvet.exceptions import VmsSyncError
from app.services.vms_sync_service import get_pipeline

logger = logging.getLogger(__name__)

# Task de synchronisation périodique
sync_task: asyncio.Task | None = None
_cancel_event: asyncio.Event | None = None


async def run_sync_tick(systems: list[str], cancel_event: asyncio.Event | None = None) -> int:
    """
    Lance une synchronisation pour chaque VMS.

    Returns:
        Nombre de VMS synchronisés avec succès
    """
    succeeded = 0
    for system in systems:
        try:
            pipeline = get_pipeline(system)
        except KeyError as e:
            logger.error(str(e))
            continue

        if pipeline.running:
            logger.info(f"Synchronisation {system} déjà en cours, tick ignoré")
            continue

        try:
            await pipeline.update_db(cancel_event=cancel_event)
            succeeded += 1
        except VmsSyncError as e:
            # Déjà journalisé par le pipeline, le prochain tick réessaie
            logger.warning(f"Tick de synchronisation {system} en échec ({e.stage})")
    return succeeded


async def _sync_loop(interval_seconds: int, systems: list[str], cancel_event: asyncio.Event):
    logger.info(f"Synchronisation périodique démarrée: {systems} toutes les {interval_seconds}s")
    try:
        while not cancel_event.is_set():
            await run_sync_tick(systems, cancel_event)
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                pass
    except asyncio.CancelledError:
        logger.info("Synchronisation périodique annulée")
        raise


async def start_periodic_sync(interval_seconds: int, systems: list[str]) -> None:
    """Démarre la synchronisation périodique en background."""
    global sync_task, _cancel_event

    if interval_seconds <= 0:
        logger.info("Synchronisation périodique désactivée (VMS_SYNC_INTERVAL_SECONDS=0)")
        return

    _cancel_event = asyncio.Event()
    sync_task = asyncio.create_task(
        _sync_loop(interval_seconds, systems, _cancel_event), name="vms_periodic_sync"
    )


async def stop_periodic_sync() -> None:
    """Arrête la synchronisation périodique (annulation coopérative entre deux pages)."""
    global sync_task, _cancel_event

    if _cancel_event is not None:
        _cancel_event.set()

    if sync_task and not sync_task.done():
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            pass
        logger.info("Synchronisation périodique arrêtée")

    sync_task = None
    _cancel_event = None
