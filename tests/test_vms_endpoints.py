"""
Tests des endpoints de synchronisation VMS.

Les fonctions d'endpoint sont appelées directement avec un pipeline simulé;
le routage, l'authentification et les réponses RFC 9457 sont vérifiés via
TestClient sur le router v1.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from fastapi_errors_rfc9457 import RFC9457Config, setup_rfc9457_handlers

from app.api.v1.api import router as api_router
from app.api.v1.endpoints.vms_sync import get_linked_user, get_sync_status, trigger_sync
from app.core.database import get_session
from app.core.dependencies import get_vms_pipeline
from app.core.exceptions import (
    NotFoundError,
    SyncInProgressError,
    VmsAuthenticationError,
    VmsUnavailableError,
)
from app.core.security import User as AuthUser
from app.core.security import get_current_user
from app.infrastructure.ezyvet.exceptions import AuthenticationFailure, FetchFailure
from app.models.user import User, VmsIdentifier
from app.schemas.vms import SyncReport, SyncResult, SyncState, SyncStatusResponse
from app.services import vms_sync_service
from app.services.vms_sync_service import VmsSyncPipeline


def make_report() -> SyncReport:
    now = datetime.now(UTC)
    return SyncReport(
        system="ezyVet",
        phase="initial",
        state=SyncState.INITIALIZED,
        result=SyncResult(created=2, failed=1),
        pages=2,
        started_at=now,
        finished_at=now,
    )


@pytest.fixture
def pipeline():
    pipeline = MagicMock(spec=VmsSyncPipeline)
    pipeline.system = "ezyVet"
    pipeline.running = False
    pipeline.update_db = AsyncMock(return_value=make_report())
    pipeline.status.return_value = SyncStatusResponse(
        system="ezyVet", state=SyncState.INITIALIZED, running=False
    )
    return pipeline


@pytest.fixture
def linked_user():
    user = User(
        username="annsmith",
        first_name="Ann",
        last_name="Smith",
        email="annsmith@example.com",
        password_hash="x",
        role="client",
    )
    user.vms_identifiers = [
        VmsIdentifier(username="annsmith", system_name="ezyVet", external_id="1")
    ]
    return user


def make_db(user: User | None) -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock()
    db.execute.return_value.scalar_one_or_none.return_value = user
    return db


# =============================================================================
# POST /vms/{system}/sync
# =============================================================================


@pytest.mark.asyncio
class TestTriggerSync:
    """Tests du déclenchement d'une synchronisation."""

    async def test_returns_report(self, pipeline):
        report = await trigger_sync("ezyVet", pipeline)

        assert report.result.counts() == {"created": 2, "skipped": 0, "failed": 1}
        pipeline.update_db.assert_awaited_once()

    async def test_running_pipeline_conflicts(self, pipeline):
        """Une deuxième demande pendant une exécution est refusée."""
        pipeline.running = True

        with pytest.raises(SyncInProgressError):
            await trigger_sync("ezyVet", pipeline)

        pipeline.update_db.assert_not_awaited()

    async def test_authentication_failure_maps_to_502(self, pipeline):
        pipeline.update_db.side_effect = AuthenticationFailure("invalid_client")

        with pytest.raises(VmsAuthenticationError) as exc_info:
            await trigger_sync("ezyVet", pipeline)

        assert exc_info.value.status_code == 502
        assert isinstance(exc_info.value.__cause__, AuthenticationFailure)

    async def test_fetch_failure_maps_to_503(self, pipeline):
        pipeline.update_db.side_effect = FetchFailure("HTTP 503", status_code=503)

        with pytest.raises(VmsUnavailableError) as exc_info:
            await trigger_sync("ezyVet", pipeline)

        assert exc_info.value.status_code == 503


@pytest.mark.asyncio
class TestStatusAndLookup:
    """Tests du statut et de la recherche d'un compte lié."""

    async def test_status(self, pipeline):
        status = await get_sync_status(pipeline)

        assert status.state == SyncState.INITIALIZED
        assert status.running is False

    async def test_linked_user_found(self, linked_user):
        response = await get_linked_user("ezyVet", "1", make_db(linked_user))

        assert response.username == "annsmith"
        assert response.vms_ids == {"ezyVet": "1"}

    async def test_unlinked_contact_is_404(self):
        with pytest.raises(NotFoundError) as exc_info:
            await get_linked_user("ezyVet", "999", make_db(None))

        assert exc_info.value.status_code == 404


# =============================================================================
# Résolution du pipeline
# =============================================================================


class TestGetVmsPipeline:
    """Tests de la dépendance get_vms_pipeline."""

    @pytest.fixture(autouse=True)
    def registry(self, monkeypatch, pipeline):
        monkeypatch.setattr(vms_sync_service, "_pipelines", {"ezyVet": pipeline})

    def test_known_system(self, pipeline):
        assert get_vms_pipeline("ezyVet") is pipeline

    def test_unknown_system(self):
        with pytest.raises(NotFoundError) as exc_info:
            get_vms_pipeline("vetspire")

        assert exc_info.value.status_code == 404
        assert exc_info.value.problem_detail.detail == "Unknown VMS 'vetspire'. Available: ezyVet"


# =============================================================================
# Router v1 (TestClient)
# =============================================================================


@pytest.fixture
def http_app(monkeypatch, pipeline):
    monkeypatch.setattr(vms_sync_service, "_pipelines", {"ezyVet": pipeline})
    app = FastAPI()
    setup_rfc9457_handlers(
        app,
        config=RFC9457Config(
            base_url="about:blank",
            include_trace_id=False,
            expose_internal_errors=False,
            include_error_pages=False,
        ),
    )
    app.include_router(api_router, prefix="/api/v1")
    return app


def as_user(app: FastAPI, *roles: str) -> None:
    app.dependency_overrides[get_current_user] = lambda: AuthUser(
        sub="user-1", realm_access={"roles": list(roles)}
    )


class TestRouter:
    """Tests du routage, de l'authentification et des réponses."""

    def test_sync_requires_token(self, http_app):
        response = TestClient(http_app).post("/api/v1/vms/ezyVet/sync")

        assert response.status_code == 401
        assert response.headers["content-type"] == "application/problem+json"

    def test_sync_requires_admin_role(self, http_app):
        as_user(http_app, "staff")

        response = TestClient(http_app).post("/api/v1/vms/ezyVet/sync")

        assert response.status_code == 403

    def test_admin_triggers_sync(self, http_app):
        as_user(http_app, "admin")

        response = TestClient(http_app).post("/api/v1/vms/ezyVet/sync")

        assert response.status_code == 200
        data = response.json()
        assert data["system"] == "ezyVet"
        assert data["result"]["created"] == 2

    def test_unknown_system_is_404(self, http_app):
        as_user(http_app, "admin")

        response = TestClient(http_app).get("/api/v1/vms/vetspire/status")

        assert response.status_code == 404
        assert response.json()["resource_id"] == "vetspire"

    def test_health(self, http_app):
        """Le health check liste les pipelines enregistrés."""
        http_app.dependency_overrides[get_session] = lambda: make_db(None)

        response = TestClient(http_app).get("/api/v1/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "vms_pipelines": ["ezyVet"]}

    def test_health_database_down(self, http_app):
        db = make_db(None)
        db.execute.side_effect = ConnectionRefusedError("connection refused")
        http_app.dependency_overrides[get_session] = lambda: db

        response = TestClient(http_app).get("/api/v1/health")

        assert response.status_code == 503
