from datetime import datetime, timedelta

import pytest

from auto_categorizer.domain.enrichment import EnrichmentStore
from auto_categorizer.models import EnrichmentSource
from conftest import make_transaction


@pytest.fixture
def enrichments():
    return EnrichmentStore()


@pytest.fixture
def transaction():
    return make_transaction("t1", "Unknown Merchant XYZ")


def test_enrich_writes_value_and_reports_change(enrichments, transaction):
    changed = enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.AI)

    assert changed
    assert transaction.category_id == "cat-dining"
    record = enrichments.get(transaction, "category_id")
    assert record.source == EnrichmentSource.AI
    assert not record.locked


def test_enrich_same_value_is_noop(enrichments, transaction):
    enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.AI)

    assert not enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.SYNC)
    assert enrichments.get(transaction, "category_id").source == EnrichmentSource.AI


def test_latest_unlocked_write_wins(enrichments, transaction):
    enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.SYNC)
    assert enrichments.enrich(transaction, "category_id", "cat-groceries", EnrichmentSource.AI)

    assert transaction.category_id == "cat-groceries"


@pytest.mark.parametrize(
    "source",
    [EnrichmentSource.AI, EnrichmentSource.LEARNED_PATTERN, EnrichmentSource.SYNC],
)
def test_locked_attribute_rejects_automatic_writes(enrichments, transaction, source):
    enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.LEARNED_PATTERN)
    enrichments.lock(transaction, "category_id")

    assert not enrichments.enrich(transaction, "category_id", "cat-groceries", source)
    assert transaction.category_id == "cat-dining"
    assert enrichments.is_locked(transaction, "category_id")


def test_user_write_overrides_lock(enrichments, transaction):
    enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.AI)
    enrichments.lock(transaction, "category_id")

    assert enrichments.enrich(transaction, "category_id", "cat-groceries", EnrichmentSource.USER)
    assert transaction.category_id == "cat-groceries"
    # The lock survives the user's write.
    assert enrichments.is_locked(transaction, "category_id")


def test_lock_without_prior_write(enrichments, transaction):
    assert enrichments.is_enrichable(transaction, "category_id")

    enrichments.lock(transaction, "category_id")

    assert not enrichments.is_enrichable(transaction, "category_id")
    assert not enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.AI)
    assert transaction.category_id is None


def test_clear_removes_record_and_lock(enrichments, transaction):
    enrichments.enrich(transaction, "category_id", "cat-dining", EnrichmentSource.AI)
    enrichments.lock(transaction, "category_id")

    assert not enrichments.clear(transaction, "category_id", source=EnrichmentSource.USER)
    assert enrichments.clear(transaction, "category_id", source=EnrichmentSource.AI)

    assert enrichments.get(transaction, "category_id") is None
    assert enrichments.is_enrichable(transaction, "category_id")


def test_recent_filters_by_source_and_time(enrichments):
    first = make_transaction("t1", "A")
    second = make_transaction("t2", "B")
    enrichments.enrich(first, "category_id", "cat-dining", EnrichmentSource.AI)
    enrichments.enrich(second, "category_id", "cat-dining", EnrichmentSource.LEARNED_PATTERN)

    recent = enrichments.recent(EnrichmentSource.AI, "category_id", datetime.now() - timedelta(minutes=5))

    assert [record.entity_id for record in recent] == ["t1"]
    assert enrichments.recent(EnrichmentSource.AI, "category_id", datetime.now() + timedelta(minutes=5)) == []
