"""Orchestrateur de synchronisation VMS (ezyVet → Vetra).

Architecture:
    TokenManager -> EzyVetClient (pages) -> Reconciler -> VmsStore (PostgreSQL)

États de l'orchestrateur:
    UNAUTHENTICATED -> AUTHENTICATED -> INITIALIZED

- L'import initial des propriétaires (contact?is_customer=1) s'exécute tant
  que l'orchestrateur n'est pas INITIALIZED, donc une seule fois par processus
  en cas de succès.
- Les exécutions suivantes lancent les étapes incrémentales enregistrées
  (patients, examens, médicaments: points d'extension, aucune par défaut).
- Une exécution en échec propage la première erreur de niveau étape; l'étape
  en échec ne change pas l'état (une authentification réussie reste acquise,
  AUTHENTICATED). Les pages déjà réconciliées restent en base et seront
  ignorées à la prochaine exécution.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from opentelemetry import metrics, trace
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.infrastructure.ezyvet.client import EzyVetClient
from app.infrastructure.ezyvet.exceptions import PersistenceFailure, VmsSyncError
from app.infrastructure.ezyvet.identifiers import (
    CONTACT_RESOURCE,
    CUSTOMER_FILTERS,
    EZYVET_SYSTEM,
)
from app.schemas.vms import SyncReport, SyncResult, SyncState, SyncStatusResponse
from app.services.reconciler import Reconciler
from app.services.vms_store import SqlAlchemyVmsStore, VmsStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)

vms_records_reconciled = meter.create_counter(
    "vms.sync.records",
    description="Nombre de contacts VMS réconciliés, par résultat (created/skipped/failed)",
    unit="records",
)

vms_runs = meter.create_counter(
    "vms.sync.runs",
    description="Nombre d'exécutions du pipeline de synchronisation, par statut",
    unit="runs",
)

Publisher = Callable[[str, dict], Awaitable[None]]
IncrementalStep = Callable[["VmsSyncPipeline"], Awaitable[SyncResult]]


class VmsSyncPipeline:
    """Pipeline de synchronisation d'un VMS, avec son état explicite."""

    def __init__(
        self,
        client: EzyVetClient,
        store: VmsStore,
        system: str = EZYVET_SYSTEM,
        reconciler: Reconciler | None = None,
        incremental_steps: list[IncrementalStep] | None = None,
        publisher: Publisher | None = None,
    ):
        """
        Args:
            client: Client de l'API VMS (détient le TokenManager)
            store: Stockage local des comptes et liens
            system: Nom du VMS utilisé comme clé des liens
            reconciler: Réconciliateur (créé sur le store par défaut)
            incremental_steps: Étapes exécutées après l'import initial
            publisher: Fonction de publication d'événements (None = désactivée)
        """
        self.client = client
        self.store = store
        self.system = system
        self.reconciler = reconciler or Reconciler(store)
        self.incremental_steps: list[IncrementalStep] = list(incremental_steps or [])
        self._publisher = publisher
        self._state = SyncState.UNAUTHENTICATED
        self._lock = asyncio.Lock()
        self._last_report: SyncReport | None = None
        self._last_error: str | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def status(self) -> SyncStatusResponse:
        return SyncStatusResponse(
            system=self.system,
            state=self._state,
            running=self.running,
            last_report=self._last_report,
            last_error=self._last_error,
        )

    def register_incremental_step(self, step: IncrementalStep) -> None:
        """Ajoute une étape incrémentale (ex: import des nouveaux patients)."""
        self.incremental_steps.append(step)

    async def authenticate(self) -> SyncState:
        """
        Obtient un jeton valide (UNAUTHENTICATED → AUTHENTICATED).

        Sans effet réseau si le jeton détenu est encore valide.

        Raises:
            AuthenticationFailure: Si l'authentification échoue (état inchangé)
        """
        await self.client.ensure_valid_credential()
        if self._state == SyncState.UNAUTHENTICATED:
            self._state = SyncState.AUTHENTICATED
        return self._state

    async def update_db(self, cancel_event: asyncio.Event | None = None) -> SyncReport:
        """
        Exécute une synchronisation complète.

        Les exécutions d'un même pipeline sont sérialisées.

        Args:
            cancel_event: Annulation coopérative, vérifiée entre deux pages

        Returns:
            SyncReport (status_code 0) avec les compteurs de l'exécution

        Raises:
            AuthenticationFailure: Authentification impossible (aucun appel fetch/reconcile)
            FetchFailure: API VMS injoignable ou en erreur
            PersistenceFailure: Stockage local indisponible (compteurs partiels dans `result`)
            SyncCancelled: Annulation entre deux pages
        """
        async with self._lock:
            started_at = datetime.now(UTC)
            with tracer.start_as_current_span("vms_update_db") as span:
                span.set_attribute("vms.system", self.system)
                span.set_attribute("vms.state", self._state.value)

                try:
                    await self.authenticate()
                    if self._state != SyncState.INITIALIZED:
                        phase = "initial"
                        result, pages, undecodable = await self._initial_import(cancel_event)
                    else:
                        phase = "incremental"
                        result = await self._incremental_sync()
                        pages, undecodable = 0, 0
                except VmsSyncError as e:
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                    self._last_error = f"{e.stage}: {e.message}"
                    vms_runs.add(1, {"vms.system": self.system, "status": e.stage})
                    logger.error(
                        f"Synchronisation {self.system} en échec ({e.stage}): {e.message}. "
                        f"État conservé: {self._state.value}"
                    )
                    await self._publish_failure(e)
                    raise

                self._state = SyncState.INITIALIZED
                report = SyncReport(
                    system=self.system,
                    phase=phase,
                    status_code=0,
                    state=self._state,
                    result=result,
                    pages=pages,
                    undecodable=undecodable,
                    started_at=started_at,
                    finished_at=datetime.now(UTC),
                )
                self._last_report = report
                self._last_error = None

                span.set_attributes(
                    {
                        "vms.phase": phase,
                        "vms.created": result.created,
                        "vms.skipped": result.skipped,
                        "vms.failed": result.failed,
                        "vms.undecodable": undecodable,
                    }
                )
                vms_runs.add(1, {"vms.system": self.system, "status": "success"})
                for outcome, count in result.counts().items():
                    if count:
                        vms_records_reconciled.add(
                            count, {"vms.system": self.system, "outcome": outcome}
                        )

            logger.info(
                f"Synchronisation {self.system} ({phase}) terminée en "
                f"{report.duration_seconds:.1f}s: {result.counts()}, "
                f"{undecodable} item(s) illisible(s), {len(result.partial)} état(s) partiel(s)"
            )
            await self._publish_completed(report)
            return report

    async def _initial_import(
        self, cancel_event: asyncio.Event | None
    ) -> tuple[SyncResult, int, int]:
        """Importe les propriétaires page par page (chaque page est réconciliée aussitôt)."""
        result = SyncResult()
        pages = 0
        undecodable = 0
        async for page in self.client.iter_pages(
            CONTACT_RESOURCE, CUSTOMER_FILTERS, cancel_event=cancel_event
        ):
            pages += 1
            undecodable += page.undecodable
            try:
                page_result = await self.reconciler.reconcile(page.records, self.system)
            except PersistenceFailure as e:
                if e.result is not None:
                    result.merge(e.result)
                e.result = result
                raise
            result.merge(page_result)
            logger.info(
                f"Page {page.number} {self.system}: {page_result.counts()} "
                f"({page.undecodable} illisible(s))"
            )
        return result, pages, undecodable

    async def _incremental_sync(self) -> SyncResult:
        result = SyncResult()
        if not self.incremental_steps:
            logger.info(f"Aucune étape incrémentale enregistrée pour {self.system}")
        for step in self.incremental_steps:
            result.merge(await step(self))
        return result

    async def _publish_completed(self, report: SyncReport) -> None:
        await self._publish(
            "vetra.vms.sync_completed",
            {
                "system": report.system,
                "phase": report.phase,
                "created": report.result.created,
                "skipped": report.result.skipped,
                "failed": report.result.failed,
                "partial": report.result.partial,
                "undecodable": report.undecodable,
                "finished_at": report.finished_at.isoformat(),
            },
        )

    async def _publish_failure(self, error: VmsSyncError) -> None:
        payload = {
            "system": self.system,
            "stage": error.stage,
            "reason": error.message,
            "state": self._state.value,
            "failed_at": datetime.now(UTC).isoformat(),
        }
        if isinstance(error, PersistenceFailure) and error.result is not None:
            payload.update(error.result.counts())
            payload["partial"] = error.result.partial
        await self._publish("vetra.vms.sync_failed", payload)

    async def _publish(self, subject: str, payload: dict) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher(subject, payload)
        except Exception as e:
            # Le résultat de la synchronisation est déjà en base
            logger.error(f"Publication '{subject}' impossible: {e}", exc_info=True)

    async def close(self) -> None:
        await self.client.close()


# =============================================================================
# Registre module-level des pipelines (un par VMS)
# =============================================================================

_pipelines: dict[str, VmsSyncPipeline] = {}


def register_pipeline(pipeline: VmsSyncPipeline) -> VmsSyncPipeline:
    """Enregistre le pipeline d'un VMS (appelé au démarrage de l'application)."""
    _pipelines[pipeline.system] = pipeline
    logger.info(f"Pipeline de synchronisation enregistré: {pipeline.system}")
    return pipeline


def get_pipeline(system: str) -> VmsSyncPipeline:
    """
    Retourne le pipeline d'un VMS.

    Raises:
        KeyError: Si aucun pipeline n'est enregistré pour ce système
    """
    try:
        return _pipelines[system]
    except KeyError:
        raise KeyError(f"No VMS pipeline registered for '{system}'") from None


def registered_systems() -> list[str]:
    return list(_pipelines)


def build_ezyvet_pipeline(
    session_maker: async_sessionmaker[AsyncSession],
    publisher: Publisher | None = None,
) -> VmsSyncPipeline:
    """Construit le pipeline ezyVet sur la base PostgreSQL."""
    return VmsSyncPipeline(
        client=EzyVetClient(),
        store=SqlAlchemyVmsStore(session_maker),
        system=EZYVET_SYSTEM,
        publisher=publisher,
    )


async def close_pipelines() -> None:
    """Ferme les clients HTTP de tous les pipelines enregistrés."""
    for pipeline in list(_pipelines.values()):
        await pipeline.close()
    _pipelines.clear()
