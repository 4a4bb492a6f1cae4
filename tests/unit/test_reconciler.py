"""Tests unitaires pour le Reconciler.

Couvre la déduplication par (système, identifiant externe), la validation,
l'idempotence d'une réexécution et le signalement des états partiels.
"""

import pytest

from app.infrastructure.ezyvet.exceptions import PersistenceFailure, RecordWriteFailure
from app.infrastructure.ezyvet.mappers.contact_mapper import ContactMapper
from app.services.reconciler import Reconciler

SYSTEM = "ezyVet"


@pytest.fixture
def page(make_record):
    """Une page de 3 contacts dont un sans prénom."""
    return [
        make_record("1", "Ann", "Smith"),
        make_record("2", "Bob", "Martin"),
        make_record("3", "", "Nameless"),
    ]


@pytest.fixture
def reconciler(store, ezyvet_config):
    return Reconciler(store, ContactMapper(ezyvet_config))


@pytest.mark.asyncio
class TestReconcile:
    """Tests du contrat reconcile(records, system) -> compteurs."""

    async def test_first_run_creates_valid_records(self, reconciler, store, page):
        result = await reconciler.reconcile(page, SYSTEM)

        assert result.counts() == {"created": 2, "skipped": 0, "failed": 1}
        assert store.links == {(SYSTEM, "1"): "annsmith", (SYSTEM, "2"): "bobmartin"}
        assert store.users["annsmith"].vms_ids == {SYSTEM: "1"}

    async def test_second_run_skips_linked_records(self, reconciler, store, page):
        """Rejouer la même page ne crée aucun doublon."""
        await reconciler.reconcile(page, SYSTEM)

        result = await reconciler.reconcile(page, SYSTEM)

        assert result.counts() == {"created": 0, "skipped": 2, "failed": 1}
        assert len(store.users) == 2
        assert store.linked_count(SYSTEM, "1") == 1

    async def test_invalid_record_performs_no_write(self, reconciler, store, make_record):
        result = await reconciler.reconcile([make_record("3", "  ", "Nameless")], SYSTEM)

        assert result.counts() == {"created": 0, "skipped": 0, "failed": 1}
        assert result.failures[0].stage == "validation"
        assert store.writes == 0

    async def test_links_are_scoped_by_system(self, reconciler, store, make_record):
        """Le même identifiant dans un autre VMS n'est pas considéré comme lié."""
        await reconciler.reconcile([make_record("1", "Ann", "Smith")], SYSTEM)

        result = await reconciler.reconcile([make_record("1", "Ann", "Smith")], "otherVms")

        assert result.created == 1
        assert store.links[("otherVms", "1")] == "annsmith1"

    async def test_homonym_gets_disambiguated_username(self, reconciler, store, make_record):
        """Deux contacts distincts de même nom donnent deux comptes."""
        records = [make_record("1", "Ann", "Smith"), make_record("2", "Ann", "Smith")]

        result = await reconciler.reconcile(records, SYSTEM)

        assert result.created == 2
        assert store.links[(SYSTEM, "2")] == "annsmith2"

    async def test_overlong_name_counts_as_failed(self, reconciler, store, make_record):
        """Un contact au nom trop long n'interrompt pas la réconciliation."""
        records = [make_record("1", "A" * 60, "B" * 50), make_record("2", "Bob", "Martin")]

        result = await reconciler.reconcile(records, SYSTEM)

        assert result.counts() == {"created": 1, "skipped": 0, "failed": 1}
        assert result.failures[0].stage == "validation"
        assert set(store.users) == {"bobmartin"}

    async def test_overlong_disambiguated_username_counts_as_failed(
        self, reconciler, store, make_record
    ):
        """Le suffixe d'un homonyme qui dépasse la taille du nom d'utilisateur échoue seul."""
        first, last = "A" * 45, "B" * 50
        records = [make_record("1", first, last), make_record("123456", first, last)]

        result = await reconciler.reconcile(records, SYSTEM)

        assert result.counts() == {"created": 1, "skipped": 0, "failed": 1}
        assert result.failures[0].external_id == "123456"
        assert len(store.users) == 1

    async def test_empty_input(self, reconciler):
        result = await reconciler.reconcile([], SYSTEM)

        assert result.total == 0


@pytest.mark.asyncio
class TestLinkFailures:
    """Tests de l'échec de l'écriture du lien après création du compte."""

    async def test_transactional_store_rolls_back_entity(
        self, reconciler, store, make_record
    ):
        store.fail_link_for = {"1"}

        result = await reconciler.reconcile([make_record("1", "Ann", "Smith")], SYSTEM)

        assert result.counts() == {"created": 0, "skipped": 0, "failed": 1}
        assert result.partial == []
        assert store.users == {}

    async def test_non_transactional_store_reports_partial_state(
        self, make_store, ezyvet_config, make_record
    ):
        """Le compte créé sans lien est signalé comme état partiel."""
        store = make_store(transactional=False)
        store.fail_link_for = {"1"}
        reconciler = Reconciler(store, ContactMapper(ezyvet_config))

        result = await reconciler.reconcile(
            [make_record("1", "Ann", "Smith"), make_record("2", "Bob", "Martin")], SYSTEM
        )

        assert result.counts() == {"created": 1, "skipped": 0, "failed": 1}
        assert result.partial == ["annsmith"]
        failure = result.failures[0]
        assert failure.entity_created is True
        assert failure.username == "annsmith"
        assert "annsmith" in store.users

    async def test_rejected_record_does_not_stop_the_page(
        self, reconciler, store, make_record, monkeypatch
    ):
        """Un compte refusé par la base compte en échec, la page continue."""
        create_entity = store.create_entity

        async def reject_ann(candidate):
            if candidate.username == "annsmith":
                raise RecordWriteFailure("value too long", username=candidate.username)
            return await create_entity(candidate)

        monkeypatch.setattr(store, "create_entity", reject_ann)

        result = await reconciler.reconcile(
            [make_record("1", "Ann", "Smith"), make_record("2", "Bob", "Martin")], SYSTEM
        )

        assert result.counts() == {"created": 1, "skipped": 0, "failed": 1}
        assert result.failures[0].stage == "persistence"
        assert set(store.users) == {"bobmartin"}

@pytest.mark.asyncio
class TestPersistenceFailure:
    """Tests de l'indisponibilité du stockage."""

    async def test_outage_aborts_with_partial_counts(self, reconciler, store, make_record):
        store.outage_on_create = {"bobmartin"}
        records = [
            make_record("1", "Ann", "Smith"),
            make_record("2", "Bob", "Martin"),
            make_record("3", "Cid", "Moreau"),
        ]

        with pytest.raises(PersistenceFailure) as exc_info:
            await reconciler.reconcile(records, SYSTEM)

        assert exc_info.value.result.counts() == {"created": 1, "skipped": 0, "failed": 0}
        assert "cidmoreau" not in store.users

    async def test_outage_after_creation_counts_record_as_failed(
        self, make_store, ezyvet_config, make_record
    ):
        store = make_store(transactional=False)
        store.outage_on_link = {"1"}
        reconciler = Reconciler(store, ContactMapper(ezyvet_config))

        with pytest.raises(PersistenceFailure) as exc_info:
            await reconciler.reconcile([make_record("1", "Ann", "Smith")], SYSTEM)

        result = exc_info.value.result
        assert result.failed == 1
        assert result.partial == ["annsmith"]
