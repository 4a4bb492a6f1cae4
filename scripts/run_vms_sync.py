#!/usr/bin/env python3
"""Exécution ponctuelle de la synchronisation ezyVet → Vetra.

Lance le même pipeline que l'API (authentification, import paginé des
propriétaires, réconciliation) sur la base configurée, puis affiche le rapport.

Usage:
    # Synchronisation réelle
    python scripts/run_vms_sync.py

    # Mode dry-run: récupère et mappe les contacts sans rien écrire
    python scripts/run_vms_sync.py --dry-run

    # Limiter le nombre de pages récupérées (pour tests)
    python scripts/run_vms_sync.py --max-pages 2

Prérequis:
    - Variables d'environnement ezyVet (PARTNER_ID, CLIENT_ID, CLIENT_SECRET, GRANT_TYPE, SCOPE)
    - PostgreSQL migré (alembic upgrade head) via SQLALCHEMY_DATABASE_URI
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ajouter le répertoire parent au path pour imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.database import async_session_maker, engine
from app.infrastructure.ezyvet.client import EzyVetClient
from app.infrastructure.ezyvet.config import ezyvet_settings
from app.infrastructure.ezyvet.exceptions import ValidationFailure, VmsSyncError
from app.infrastructure.ezyvet.identifiers import CONTACT_RESOURCE, CUSTOMER_FILTERS
from app.infrastructure.ezyvet.mappers import ContactMapper
from app.services.vms_store import SqlAlchemyVmsStore
from app.services.vms_sync_service import VmsSyncPipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def dry_run(client: EzyVetClient) -> int:
    """Récupère les propriétaires et affiche les comptes qui seraient créés."""
    mapper = ContactMapper()
    valid = invalid = undecodable = 0

    async for page in client.iter_pages(CONTACT_RESOURCE, CUSTOMER_FILTERS):
        undecodable += page.undecodable
        for record in page.records:
            try:
                candidate = mapper.to_local_user(record)
            except ValidationFailure as e:
                invalid += 1
                logger.warning(f"[DRY-RUN] Contact {record.external_id} ignoré: {e.message}")
                continue
            valid += 1
            logger.info(
                f"[DRY-RUN] Contact {record.external_id} → {candidate.username} ({candidate.email})"
            )

    logger.info(
        f"[DRY-RUN] {valid} compte(s) candidat(s), {invalid} invalide(s), "
        f"{undecodable} item(s) illisible(s)"
    )
    return 0


async def main(dry_run_mode: bool, max_pages: int | None) -> int:
    """Point d'entrée principal de la synchronisation."""
    logger.info("=" * 50)
    logger.info("SYNCHRONISATION EZYVET")
    logger.info("=" * 50)
    logger.info(f"Mode dry-run: {dry_run_mode}")
    logger.info(f"Pages max: {max_pages or 'aucune limite'}")
    logger.info(f"ezyVet URL: {ezyvet_settings.EZYVET_BASE_URL}")

    config = ezyvet_settings.model_copy(update={"EZYVET_MAX_PAGES": max_pages})
    client = EzyVetClient(config=config)

    try:
        if dry_run_mode:
            await client.ensure_valid_credential()
            return await dry_run(client)

        pipeline = VmsSyncPipeline(client=client, store=SqlAlchemyVmsStore(async_session_maker))
        report = await pipeline.update_db()
    except VmsSyncError as e:
        logger.error(f"Synchronisation en échec ({e.stage}): {e.message}")
        return 1
    finally:
        await client.close()
        await engine.dispose()

    logger.info(
        f"Synchronisation terminée en {report.duration_seconds:.1f}s: "
        f"{report.result.counts()} sur {report.pages} page(s), "
        f"{report.undecodable} item(s) illisible(s)"
    )
    for failure in report.result.failures:
        logger.warning(f"  {failure.external_id} ({failure.stage}): {failure.reason}")

    return 1 if report.result.partial else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Synchronise les propriétaires ezyVet vers Vetra")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Récupère et mappe les contacts sans modifier la base",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Nombre maximum de pages récupérées",
    )

    args = parser.parse_args()

    exit_code = asyncio.run(main(args.dry_run, args.max_pages))
    sys.exit(exit_code)
