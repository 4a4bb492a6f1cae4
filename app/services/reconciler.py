"""Réconciliation des contacts VMS avec les comptes Vetra.

Pour chaque ExternalRecord:
1. Dérive le compte candidat (ContactMapper); prénom vide → échec de validation
2. Dans une unité du stockage, cherche un compte déjà lié à (système, id externe)
3. Lié → ignoré (création seule: les modifications locales ne sont jamais écrasées)
4. Sinon crée le compte puis écrit le lien

Les problèmes propres à un enregistrement deviennent des compteurs; seule une
indisponibilité du stockage (PersistenceFailure) interrompt la réconciliation.
"""

import logging
from collections.abc import Iterable

from opentelemetry import trace

from app.infrastructure.ezyvet.exceptions import (
    ExternalLinkFailure,
    PersistenceFailure,
    RecordWriteFailure,
    UsernameTakenError,
    ValidationFailure,
    VmsSyncError,
)
from app.infrastructure.ezyvet.mappers.contact_mapper import ContactMapper
from app.schemas.user import LocalUserResponse
from app.schemas.vms import ExternalRecord, RecordFailure, RecordOutcome, SyncResult
from app.services.vms_store import VmsStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class Reconciler:
    """Crée les comptes locaux manquants pour une liste de contacts VMS."""

    def __init__(self, store: VmsStore, mapper: ContactMapper | None = None):
        self._store = store
        self._mapper = mapper or ContactMapper()

    async def reconcile(
        self, records: Iterable[ExternalRecord], external_system_name: str
    ) -> SyncResult:
        """
        Réconcilie des contacts VMS avec le stockage local.

        Args:
            records: Contacts décodés (une page en général)
            external_system_name: Nom du VMS (clé des liens, ex: "ezyVet")

        Returns:
            SyncResult avec les compteurs created/skipped/failed

        Raises:
            PersistenceFailure: Si le stockage est indisponible; `result` contient
                les compteurs atteints avant l'interruption.
        """
        result = SyncResult()
        with tracer.start_as_current_span("vms_reconcile") as span:
            span.set_attribute("vms.system", external_system_name)

            for record in records:
                try:
                    outcome = await self._reconcile_record(record, external_system_name, result)
                except PersistenceFailure as e:
                    e.result = result
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                    logger.error(
                        f"Réconciliation {external_system_name} interrompue sur "
                        f"{record.external_id}: {e.message} ({result.counts()})"
                    )
                    raise

                if outcome == "created":
                    result.created += 1
                elif outcome == "skipped":
                    result.skipped += 1
                else:
                    result.failed += 1

            span.set_attributes(
                {
                    "vms.created": result.created,
                    "vms.skipped": result.skipped,
                    "vms.failed": result.failed,
                }
            )

        logger.info(f"Réconciliation {external_system_name} terminée: {result.counts()}")
        return result

    async def _reconcile_record(
        self, record: ExternalRecord, system: str, result: SyncResult
    ) -> RecordOutcome:
        try:
            candidate = self._mapper.to_local_user(record)
        except ValidationFailure as e:
            logger.warning(f"Contact {system}:{record.external_id} invalide: {e.message}")
            result.failures.append(
                RecordFailure(external_id=record.external_id, stage=e.stage, reason=e.message)
            )
            return "failed"

        created: LocalUserResponse | None = None
        try:
            async with self._store.unit(system, record.external_id):
                existing = await self._store.find_linked_entity(system, record.external_id)
                if existing is not None:
                    logger.debug(
                        f"Contact {system}:{record.external_id} déjà lié à {existing.username}"
                    )
                    return "skipped"

                created = await self._create_entity(record, candidate)
                await self._store.attach_external_link(
                    created.username, system, record.external_id
                )
        except (
            ExternalLinkFailure,
            RecordWriteFailure,
            UsernameTakenError,
            ValidationFailure,
        ) as e:
            self._record_failure(result, record, e, created)
            return "failed"
        except PersistenceFailure as e:
            if created is not None:
                result.failed += 1
                self._record_failure(result, record, e, created)
            raise

        logger.info(f"Utilisateur créé depuis {system}:{record.external_id}: {created.username}")
        return "created"

    async def _create_entity(self, record: ExternalRecord, candidate) -> LocalUserResponse:
        try:
            return await self._store.create_entity(candidate)
        except UsernameTakenError:
            # Homonyme déjà inscrit: on suffixe avec l'identifiant externe
            logger.info(
                f"Nom d'utilisateur {candidate.username} déjà pris, "
                f"suffixe avec l'identifiant {record.external_id}"
            )
            return await self._store.create_entity(
                self._mapper.to_local_user(record, disambiguate=True)
            )

    def _record_failure(
        self,
        result: SyncResult,
        record: ExternalRecord,
        error: VmsSyncError,
        created: LocalUserResponse | None,
    ) -> None:
        # Un stockage non transactionnel garde le compte créé sans son lien
        partial = created is not None and not self._store.transactional
        result.failures.append(
            RecordFailure(
                external_id=record.external_id,
                stage=error.stage,
                reason=error.message,
                username=created.username if created else None,
                entity_created=partial,
            )
        )
        if partial:
            result.partial.append(created.username)
            logger.error(
                f"État partiel: {created.username} créé sans lien vers "
                f"{record.external_id}: {error.message}"
            )
        else:
            logger.warning(f"Contact {record.external_id} non synchronisé: {error.message}")
