"""Database batch adapter: multi-row inserts with per-row fallback."""
from migrator.loaders.batch_writer import DatabaseBatchAdapter
from migrator.models.batch import DatabaseBatchOptions, OperationType

from conftest import FakeStore


def profile_rows(count, bad=()):
    return [
        {"email": f"user{i}@x.no", "stylist_id": "missing" if i in bad else "ok"}
        for i in range(count)
    ]


def test_single_bad_row_isolated(processor):
    store = FakeStore(reject=lambda row: row["stylist_id"] == "missing")
    adapter = DatabaseBatchAdapter(store, processor)

    result = adapter.insert_rows("profiles", profile_rows(10, bad={4}), OperationType.PROFILES)

    assert result.success_count == 9
    assert result.error_count == 1
    assert result.failed[0].item["email"] == "user4@x.no"


def test_fifty_profiles_with_three_invalid_foreign_keys(processor):
    store = FakeStore(reject=lambda row: row["stylist_id"] == "missing")
    adapter = DatabaseBatchAdapter(store, processor)

    result = adapter.insert_rows("profiles", profile_rows(50, bad={3, 17, 42}), OperationType.PROFILES)

    assert result.success_count == 47
    assert result.error_count == 3
    assert [f.item["email"] for f in result.failed] == ["user3@x.no", "user17@x.no", "user42@x.no"]
    assert all("Row rejected by profiles" in f.error for f in result.failed)
    assert store.batch_calls == 1
    assert store.insert_calls == 50
    assert len(store.rows("profiles")) == 47


def test_clean_batch_makes_no_individual_calls(processor):
    store = FakeStore()
    adapter = DatabaseBatchAdapter(store, processor)

    result = adapter.insert_rows(
        "user_preferences", profile_rows(30), options=DatabaseBatchOptions(batch_size=10, delay_between_batches=0)
    )

    assert result.success_count == 30
    assert store.batch_calls == 3
    assert store.insert_calls == 0
    assert all("id" in row for row in result.successful)


def test_dry_run_echoes_rows_without_writing(processor):
    store = FakeStore()
    adapter = DatabaseBatchAdapter(store, processor, dry_run=True)

    rows = profile_rows(5)
    result = adapter.insert_rows("profiles", rows, OperationType.PROFILES)

    assert result.successful == rows
    assert store.batch_calls == 0
    assert store.rows("profiles") == []
