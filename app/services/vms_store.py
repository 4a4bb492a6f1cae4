"""Stockage local consommé par la réconciliation VMS.

Le réconciliateur n'utilise que quatre opérations du stockage:
- unit(system, external_id): délimite le "check-then-create" d'une paire
- find_linked_entity(system, external_id)
- create_entity(candidate)
- attach_external_link(username, system, external_id)

SqlAlchemyVmsStore implémente ce contrat sur PostgreSQL: chaque unité est une
transaction qui prend un verrou consultatif (pg_advisory_xact_lock) sur la
paire, de sorte que deux exécutions concurrentes pour le même VMS ne puissent
pas créer deux comptes pour le même contact. La contrainte d'unicité de
vms_identifiers reste le garde-fou final.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from contextvars import ContextVar
from typing import Protocol

from opentelemetry import trace
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, DataError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.infrastructure.ezyvet.exceptions import (
    ExternalLinkFailure,
    PersistenceFailure,
    RecordWriteFailure,
    UsernameTakenError,
)
from app.models.user import User, VmsIdentifier
from app.schemas.user import LocalUserCreate, LocalUserResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Erreurs DB signalant une indisponibilité du stockage (et non un conflit de données)
STORAGE_OUTAGE_EXCEPTIONS = (OperationalError, InterfaceError, ConnectionError, OSError)

_current_session: ContextVar[AsyncSession | None] = ContextVar(
    "vms_store_session", default=None
)


class VmsStore(Protocol):
    """Contrat du stockage local pour la réconciliation."""

    # Vrai si un échec dans une unité annule aussi le compte créé dans cette unité
    transactional: bool

    def unit(self, system: str, external_id: str) -> AbstractAsyncContextManager[None]: ...

    async def find_linked_entity(
        self, system: str, external_id: str
    ) -> LocalUserResponse | None: ...

    async def create_entity(self, candidate: LocalUserCreate) -> LocalUserResponse: ...

    async def attach_external_link(self, username: str, system: str, external_id: str) -> None: ...


def _to_response(user: User) -> LocalUserResponse:
    return LocalUserResponse(
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        role=user.role,
        vms_ids=user.vms_ids,
        created_at=user.created_at,
    )


class SqlAlchemyVmsStore:
    """Implémentation PostgreSQL (SQLAlchemy async) du stockage VMS."""

    transactional = True

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    def _session(self) -> AsyncSession:
        session = _current_session.get()
        if session is None:
            raise RuntimeError("VmsStore operations must run inside store.unit()")
        return session

    @asynccontextmanager
    async def unit(self, system: str, external_id: str) -> AsyncIterator[None]:
        """Transaction verrouillée sur la paire (system, external_id)."""
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                        {"key": f"{system}:{external_id}"},
                    )
                    token = _current_session.set(session)
                    try:
                        yield
                    finally:
                        _current_session.reset(token)
        except STORAGE_OUTAGE_EXCEPTIONS as e:
            logger.error(f"Stockage indisponible pendant l'unité {system}:{external_id}: {e}")
            raise PersistenceFailure(
                f"Local storage unavailable: {e}",
                details={"system": system, "external_id": external_id},
            ) from e

    async def find_linked_entity(self, system: str, external_id: str) -> LocalUserResponse | None:
        session = self._session()
        result = await session.execute(
            select(User)
            .join(VmsIdentifier)
            .where(
                VmsIdentifier.system_name == system,
                VmsIdentifier.external_id == external_id,
            )
        )
        user = result.scalar_one_or_none()
        return _to_response(user) if user else None

    async def create_entity(self, candidate: LocalUserCreate) -> LocalUserResponse:
        """Crée le compte local.

        Raises:
            UsernameTakenError: Si le nom d'utilisateur appartient déjà à un compte
            RecordWriteFailure: Si la base refuse une valeur du compte
            PersistenceFailure: Si le stockage est indisponible
        """
        session = self._session()
        with tracer.start_as_current_span("vms_store_create_entity") as span:
            span.set_attribute("user.username", candidate.username)

            existing = await session.get(User, candidate.username)
            if existing is not None:
                raise UsernameTakenError(candidate.username)

            user = User(
                username=candidate.username,
                first_name=candidate.first_name,
                last_name=candidate.last_name,
                email=candidate.email,
                password_hash=candidate.password_hash,
                role=candidate.role,
            )
            try:
                async with session.begin_nested():
                    session.add(user)
                    await session.flush()
            except IntegrityError as e:
                # Compte créé entre la vérification et l'insertion
                span.record_exception(e)
                raise UsernameTakenError(candidate.username) from e
            except DataError as e:
                # Valeur refusée par la base pour ce seul compte
                span.record_exception(e)
                raise RecordWriteFailure(
                    f"Cannot store user {candidate.username}: {e.orig}",
                    username=candidate.username,
                ) from e
            except DBAPIError as e:
                span.record_exception(e)
                raise PersistenceFailure(f"Cannot create user {candidate.username}: {e}") from e

            return LocalUserResponse(
                username=user.username,
                first_name=user.first_name,
                last_name=user.last_name,
                email=user.email,
                role=user.role,
            )

    async def attach_external_link(self, username: str, system: str, external_id: str) -> None:
        """Écrit le lien (system, external_id) du compte.

        Raises:
            ExternalLinkFailure: Si la paire ou le couple (compte, système) est déjà lié,
                ou si la base refuse une valeur du lien
            PersistenceFailure: Si le stockage est indisponible
        """
        session = self._session()
        link = VmsIdentifier(username=username, system_name=system, external_id=external_id)
        try:
            async with session.begin_nested():
                session.add(link)
                await session.flush()
        except IntegrityError as e:
            raise ExternalLinkFailure(
                f"Cannot link {username} to {system}:{external_id}: {e.orig}",
                username=username,
                system=system,
                external_id=external_id,
            ) from e
        except DataError as e:
            raise ExternalLinkFailure(
                f"Cannot store link {system}:{external_id} for {username}: {e.orig}",
                username=username,
                system=system,
                external_id=external_id,
            ) from e
        except DBAPIError as e:
            raise PersistenceFailure(f"Cannot link {username} to {system}: {e}") from e
