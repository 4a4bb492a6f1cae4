"""
Fixtures partagées des tests unitaires de la synchronisation VMS.

- FakeEzyVetApi: API ezyVet simulée derrière httpx.MockTransport
- InMemoryVmsStore: stockage local en mémoire respectant le contrat VmsStore
"""

import copy
from contextlib import asynccontextmanager

import httpx
import pytest

from app.infrastructure.ezyvet.client import EzyVetClient
from app.infrastructure.ezyvet.config import EzyVetSettings
from app.infrastructure.ezyvet.exceptions import (
    ExternalLinkFailure,
    PersistenceFailure,
    UsernameTakenError,
)
from app.schemas.user import LocalUserCreate, LocalUserResponse
from app.schemas.vms import ExternalRecord

BASE_URL = "https://api.test.ezyvet.local/v1"


def contact_item(external_id, first_name="Ann", last_name="Smith", **fields) -> dict:
    """Item ezyVet tel que renvoyé par GET /contact."""
    return {
        "id": external_id,
        "contact": {"first_name": first_name, "last_name": last_name, **fields},
    }


def make_record(external_id: str, first_name: str = "Ann", last_name: str = "Smith"):
    return ExternalRecord(external_id=external_id, first_name=first_name, last_name=last_name)


class FakeEzyVetApi:
    """API ezyVet simulée: jeton OAuth et pagination de /contact."""

    def __init__(self, contacts: list | None = None):
        self.contacts = list(contacts or [])
        self.auth_status = 200
        self.auth_payload: dict | None = None
        self.fetch_status: dict[int, int] = {}  # page -> status forcé
        self.revoked_tokens: set[str] = set()
        self.auth_calls = 0
        self.fetch_calls = 0
        self.auth_bodies: list[bytes] = []
        self.fetch_requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/access_token"):
            return self._token(request)
        if request.url.path.endswith("/contact"):
            return self._contacts(request)
        return httpx.Response(404, json={"error": "not found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.auth_calls += 1
        self.auth_bodies.append(request.content)
        if self.auth_status != 200:
            return httpx.Response(self.auth_status, json={"error": "invalid_client"})
        payload = self.auth_payload or {
            "access_token": f"token-{self.auth_calls}",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        return httpx.Response(200, json=payload)

    def _contacts(self, request: httpx.Request) -> httpx.Response:
        self.fetch_calls += 1
        self.fetch_requests.append(request)
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if not token or token in self.revoked_tokens:
            return httpx.Response(401, json={"error": "invalid_token"})

        page = int(request.url.params["page"])
        limit = int(request.url.params["limit"])
        if page in self.fetch_status:
            return httpx.Response(self.fetch_status[page], json={"error": "server error"})

        items = self.contacts[(page - 1) * limit : page * limit]
        return httpx.Response(200, json={"items": items})


class InMemoryVmsStore:
    """Stockage en mémoire; une unité transactionnelle annule ses écritures en cas d'erreur."""

    def __init__(self, transactional: bool = True):
        self.transactional = transactional
        self.users: dict[str, LocalUserResponse] = {}
        self.links: dict[tuple[str, str], str] = {}
        self.writes = 0
        self.fail_link_for: set[str] = set()
        self.outage_on_create: set[str] = set()
        self.outage_on_link: set[str] = set()

    @asynccontextmanager
    async def unit(self, system: str, external_id: str):
        snapshot = (copy.deepcopy(self.users), dict(self.links))
        try:
            yield
        except Exception:
            if self.transactional:
                self.users, self.links = snapshot
            raise

    async def find_linked_entity(self, system: str, external_id: str):
        username = self.links.get((system, external_id))
        return self.users.get(username) if username else None

    async def create_entity(self, candidate: LocalUserCreate) -> LocalUserResponse:
        if candidate.username in self.outage_on_create:
            raise PersistenceFailure("connection refused")
        if candidate.username in self.users:
            raise UsernameTakenError(candidate.username)
        self.writes += 1
        user = LocalUserResponse(
            username=candidate.username,
            first_name=candidate.first_name,
            last_name=candidate.last_name,
            email=candidate.email,
            role=candidate.role,
        )
        self.users[user.username] = user
        return user

    async def attach_external_link(self, username: str, system: str, external_id: str) -> None:
        if external_id in self.outage_on_link:
            raise PersistenceFailure("connection reset")
        if external_id in self.fail_link_for or (system, external_id) in self.links:
            raise ExternalLinkFailure(
                f"Cannot link {username} to {system}:{external_id}",
                username=username,
                system=system,
                external_id=external_id,
            )
        self.writes += 1
        self.links[(system, external_id)] = username
        self.users[username].vms_ids[system] = external_id

    def linked_count(self, system: str, external_id: str) -> int:
        return sum(1 for key in self.links if key == (system, external_id))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ezyvet_config() -> EzyVetSettings:
    """Configuration ezyVet de test (pages de 2 items, pas d'attente entre retries)."""
    return EzyVetSettings(
        EZYVET_BASE_URL=BASE_URL,
        EZYVET_PAGE_SIZE=2,
        EZYVET_RETRY_ATTEMPTS=2,
        EZYVET_RETRY_DELAY=0,
        PARTNER_ID="partner-test",
        CLIENT_ID="client-test",
        CLIENT_SECRET="secret-test",
        GRANT_TYPE="client_credentials",
        SCOPE="read-contact",
        BCRYPT_ROUNDS=4,
    )


@pytest.fixture
def ezyvet_api() -> FakeEzyVetApi:
    return FakeEzyVetApi()


@pytest.fixture
async def ezyvet_client(ezyvet_config, ezyvet_api):
    client = EzyVetClient(config=ezyvet_config, transport=httpx.MockTransport(ezyvet_api.handler))
    yield client
    await client.close()


@pytest.fixture
def store() -> InMemoryVmsStore:
    return InMemoryVmsStore()


@pytest.fixture
def make_store():
    """Fabrique de stores en mémoire (transactionnel ou non)."""
    return InMemoryVmsStore


@pytest.fixture(name="contact_item")
def contact_item_fixture():
    return contact_item


@pytest.fixture(name="make_record")
def make_record_fixture():
    return make_record
