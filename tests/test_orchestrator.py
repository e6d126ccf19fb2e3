"""End-to-end phase runs against in-memory fakes."""
import json

import pytest

from migrator.media.compressor import ImageCompressor
from migrator.models.migration import ConfigurationError, MigrationConfig, MigrationStatus, OutcomeStatus
from migrator.orchestrator import (
    PhaseFailedError,
    PhaseOrchestrator,
    load_scoring_inputs,
    message_mapping_from,
    service_mapping_from,
)
from migrator.services.checkpoint import CheckpointNotFoundError

from conftest import FakeRunner, FakeStorage, FakeStore, make_image

BUYER_1 = "11111111-1111-4111-8111-111111111111"
BUYER_2 = "22222222-2222-4222-8222-222222222222"
STYLIST_1 = "33333333-3333-4333-8333-333333333333"
STYLIST_2 = "44444444-4444-4444-8444-444444444444"
CREATED = "2023-01-01 10:00:00"


@pytest.fixture
def dump(tmp_path):
    path = tmp_path / "dump.json"
    path.write_text(json.dumps({
        "buyer": [
            {"id": BUYER_1, "email": "b1@x.no", "name": "Buyer One", "created_at": CREATED},
            {"id": BUYER_2, "email": "Shared@x.no", "name": "Shared Buyer", "created_at": CREATED},
            {"id": "not-a-uuid", "email": "broken@x.no", "created_at": CREATED},
        ],
        "stylist": [
            {"id": STYLIST_1, "email": "shared@x.no", "name": "Shared Stylist", "bio": "Hair", "created_at": CREATED},
            {"id": STYLIST_2, "email": "s2@x.no", "name": "Stylist Two", "can_travel": 1, "created_at": CREATED},
        ],
    }))
    return str(path)


def live_config(tmp_path, **kwargs):
    values = dict(
        supabase_url="https://db.example",
        service_role_key="key",
        checkpoint_dir=str(tmp_path / "checkpoints"),
        delay_between_batches=0,
        base_retry_delay=0,
    )
    values.update(kwargs)
    return MigrationConfig(**values)


def test_phase_one_live(tmp_path, dump, checkpoints, processor):
    store = FakeStore()
    orchestrator = PhaseOrchestrator(
        live_config(tmp_path, dump_path=dump), checkpoints=checkpoints, store=store, processor=processor
    )

    run = orchestrator.run_phase(1)

    assert run.status is MigrationStatus.COMPLETED
    assert run.outcome is OutcomeStatus.SUCCESS
    assert [s.name for s in run.steps] == [
        "Extract and consolidate users",
        "Create auth users",
        "Create profiles",
        "Create stylist details",
        "Create user preferences",
    ]

    consolidated = checkpoints.load("consolidated-users")
    assert consolidated.metadata["count"] == 3
    emails = sorted(i["email"] for i in consolidated.payload)
    assert emails == ["b1@x.no", "s2@x.no", "shared@x.no"]

    assert len(store.auth_users) == 3
    mapping = checkpoints.load_payload("user-id-mapping")
    assert set(mapping) == {BUYER_1, STYLIST_1, STYLIST_2}
    assert set(mapping.values()) == set(store.auth_users.values())

    assert len(store.rows("profiles")) == 3
    assert len(store.rows("stylist_details")) == 2
    assert len(store.rows("user_preferences")) == 3
    assert {r["profile_id"] for r in store.rows("stylist_details")} == {mapping[STYLIST_1], mapping[STYLIST_2]}

    duplicates = checkpoints.load_payload("duplicates")
    assert [d["email"] for d in duplicates] == ["shared@x.no"]

    extracted = checkpoints.load_payload("users-extracted")
    assert any(e["record_id"] == "not-a-uuid" for e in extracted["validation_errors"])

    stats = checkpoints.load_payload("phase-1-stats")
    assert stats["status"] == "completed"
    assert stats["total_records_failed"] == 0


def test_existing_auth_account_is_reused(tmp_path, dump, checkpoints, processor):
    store = FakeStore()
    store.auth_users["b1@x.no"] = "existing-auth-id"
    orchestrator = PhaseOrchestrator(
        live_config(tmp_path, dump_path=dump), checkpoints=checkpoints, store=store, processor=processor
    )

    run = orchestrator.run_phase(1)

    auth_step = run.get_step("Create auth users")
    assert (auth_step.records_succeeded, auth_step.records_skipped) == (2, 1)
    assert checkpoints.load_payload("user-id-mapping")[BUYER_1] == "existing-auth-id"
    created = checkpoints.load_payload("auth-users-created")["results"]
    reused = [r for r in created if r["skipped"]]
    assert reused[0]["skip_reason"] == "Email already exists in Supabase"
    assert any(r["id"] == "existing-auth-id" for r in store.rows("profiles"))


def test_rejected_profile_skips_dependent_rows(tmp_path, dump, checkpoints, processor):
    store = FakeStore(reject=lambda row: row.get("email") == "s2@x.no")
    orchestrator = PhaseOrchestrator(
        live_config(tmp_path, dump_path=dump), checkpoints=checkpoints, store=store, processor=processor
    )

    run = orchestrator.run_phase(1)

    profiles = run.get_step("Create profiles")
    assert (profiles.records_succeeded, profiles.records_failed) == (2, 1)
    assert profiles.outcome is OutcomeStatus.FAILED
    assert len(store.rows("stylist_details")) == 1
    assert len(store.rows("user_preferences")) == 2
    assert run.status is MigrationStatus.COMPLETED


def test_phase_stops_when_every_auth_user_fails(tmp_path, dump, checkpoints, processor):
    store = FakeStore()
    store.fail_auth_emails = {"b1@x.no", "shared@x.no", "s2@x.no"}
    orchestrator = PhaseOrchestrator(
        live_config(tmp_path, dump_path=dump), checkpoints=checkpoints, store=store, processor=processor
    )

    with pytest.raises(PhaseFailedError) as excinfo:
        orchestrator.run_phase(1)

    run = excinfo.value.run
    assert run.status is MigrationStatus.FAILED
    assert run.get_step("Create auth users").status is MigrationStatus.FAILED
    assert run.get_step("Create profiles") is None
    assert checkpoints.load_payload("phase-1-stats")["status"] == "failed"
    assert store.rows("profiles") == []


def test_phase_one_dry_run_writes_nothing(tmp_path, dump, checkpoints, processor):
    config = MigrationConfig(dump_path=dump, dry_run=True, delay_between_batches=0)
    orchestrator = PhaseOrchestrator(config, checkpoints=checkpoints, processor=processor)

    run = orchestrator.run_phase(1)

    assert run.dry_run
    assert run.status is MigrationStatus.COMPLETED
    mapping = checkpoints.load_payload("user-id-mapping")
    assert mapping[BUYER_1] == BUYER_1
    assert len(checkpoints.load_payload("profiles-created")["created"]) == 3


def test_live_run_requires_credentials(tmp_path, checkpoints):
    orchestrator = PhaseOrchestrator(MigrationConfig(), checkpoints=checkpoints, store=FakeStore())
    with pytest.raises(ConfigurationError):
        orchestrator.run_phase(1)


def test_unreachable_store_is_a_configuration_error(tmp_path, dump, checkpoints):
    store = FakeStore()
    store.connection_ok = False
    orchestrator = PhaseOrchestrator(live_config(tmp_path, dump_path=dump), checkpoints=checkpoints, store=store)
    with pytest.raises(ConfigurationError):
        orchestrator.run_phase(1)


def test_unsupported_phase(tmp_path, checkpoints):
    orchestrator = PhaseOrchestrator(MigrationConfig(dry_run=True), checkpoints=checkpoints)
    with pytest.raises(ConfigurationError):
        orchestrator.run_phase(3)


# ----------------------------------------------------------------------
# Phase 8
# ----------------------------------------------------------------------

@pytest.fixture
def media_backup(tmp_path):
    root = tmp_path / "media"
    make_image(root / "Profile-Pics" / "buyer" / "legacy-u1.png", size=(48, 48))
    make_image(root / "Profile-Pics" / "salon" / "legacy-salon.png")
    make_image(root / "Service-Images" / "legacy-s1" / "one.png", size=(48, 48))
    make_image(root / "Service-Images" / "legacy-s1" / "two.jpg", "JPEG", size=(48, 48))
    make_image(root / "Chat-Images" / "legacy-c1" / "legacy-m1" / "pic.png", size=(48, 48))
    return str(root)


def seed_upstream(checkpoints):
    checkpoints.save("user-id-mapping", {"legacy-u1": "user-1"})
    checkpoints.save("services-created", {"services": [
        {"old_service_id": "legacy-s1", "new_service_id": "service-1", "stylist_id": "stylist-1", "success": True},
        {"old_service_id": "legacy-s2", "new_service_id": "service-2", "success": False},
    ]})
    checkpoints.save("chats-created", {"image_message_mapping": {
        "legacy-m1": {"processed_message_id": "message-1", "processed_chat_id": "chat-1", "sender_id": "user-1"},
    }})


def media_orchestrator(tmp_path, media_backup, checkpoints, processor, store=None, storage=None, **kwargs):
    config = live_config(tmp_path, media_backup_path=media_backup, **kwargs)
    compressor = ImageCompressor(temp_dir=str(tmp_path / "tmp"), runner=FakeRunner(ratio=0.5))
    return PhaseOrchestrator(
        config,
        checkpoints=checkpoints,
        store=store or FakeStore(),
        storage=storage or FakeStorage(),
        processor=processor,
        compressor=compressor,
    )


def test_phase_eight_live(tmp_path, media_backup, checkpoints, processor):
    seed_upstream(checkpoints)
    store, storage = FakeStore(), FakeStorage()
    orchestrator = media_orchestrator(tmp_path, media_backup, checkpoints, processor, store, storage)

    run = orchestrator.run_phase(8)

    assert run.status is MigrationStatus.COMPLETED
    assert set(storage.objects) == {
        ("avatars", "user-1/legacy-u1.png"),
        ("service-media", "service-1/one.png"),
        ("service-media", "service-1/two.jpg"),
        ("chat-media", "chat-1/message-1/pic.png"),
    }

    rows = store.rows("media")
    assert len(rows) == 4
    previews = [r["file_path"] for r in rows if r["is_preview_image"]]
    assert previews == ["service-1/one.png"]
    chat_row = next(r for r in rows if r["media_type"] == "chat_image")
    assert (chat_row["chat_message_id"], chat_row["owner_id"]) == ("message-1", "user-1")

    inventory = checkpoints.load_payload("media-inventory")
    assert inventory["total_files"] == 5
    assert inventory["migratable_files"] == 4

    readiness = checkpoints.load_payload("media-migration-validation")
    assert readiness["overall_score"] == 100
    assert readiness["migration_status"] == "success"
    assert run.get_step("Validate media migration").outcome is OutcomeStatus.SUCCESS


def test_phase_eight_dry_run_skips_uploads(tmp_path, media_backup, checkpoints, processor):
    seed_upstream(checkpoints)
    storage = FakeStorage()
    config = MigrationConfig(
        media_backup_path=media_backup, dry_run=True, checkpoint_dir=str(tmp_path / "cp"), delay_between_batches=0
    )
    orchestrator = PhaseOrchestrator(config, checkpoints=checkpoints, storage=storage, processor=processor)

    run = orchestrator.run_phase(8)

    assert storage.upload_calls == 0
    assert run.get_step("Migrate profile images").records_skipped == 1
    assert checkpoints.load_payload("profile-images-migrated")["successful_uploads"] == 0
    assert checkpoints.exists("media-migration-validation")


def test_phase_eight_without_user_mapping(tmp_path, media_backup, checkpoints, processor):
    orchestrator = media_orchestrator(tmp_path, media_backup, checkpoints, processor)
    with pytest.raises(CheckpointNotFoundError):
        orchestrator.run_phase(8)
    assert checkpoints.load_payload("phase-8-stats")["status"] == "failed"


def test_missing_service_and_chat_checkpoints_are_tolerated(tmp_path, media_backup, checkpoints, processor):
    checkpoints.save("user-id-mapping", {"legacy-u1": "user-1"})
    orchestrator = media_orchestrator(tmp_path, media_backup, checkpoints, processor)

    run = orchestrator.run_phase(8)

    mappings = run.get_step("Validate media mappings")
    assert (mappings.records_succeeded, mappings.records_skipped) == (1, 3)
    reasons = {e["reason"] for e in mappings.errors}
    assert "No service mapping for legacy service legacy-s1" in reasons
    assert "No message mapping for legacy message legacy-m1" in reasons


def test_mapping_helpers():
    services = service_mapping_from([
        {"old_service_id": "a", "new_service_id": "A", "stylist_id": "st"},
        {"old_service_id": "b", "new_service_id": None},
    ])
    assert services == {"a": {"new_service_id": "A", "stylist_id": "st"}}

    messages = message_mapping_from({"image_message_mapping": {
        "k1": {"mysql_message_id": 42, "processed_message_id": "m", "processed_chat_id": "c", "sender_id": "u"},
        "k2": {"processed_message_id": "m2"},
    }})
    assert set(messages) == {"42", "k2"}
    assert messages["42"]["sender_id"] == "u"
    assert message_mapping_from([1, 2]) == {}


def test_scoring_inputs_from_partial_checkpoints(checkpoints):
    checkpoints.save("media-inventory", {"total_files": 3})
    checkpoints.save("profile-images-migrated", {"stats": {"total_files": 1}, "uploads": []})

    inputs = load_scoring_inputs(checkpoints)

    assert inputs.inventory == {"total_files": 3}
    assert set(inputs.upload_reports) == {"profile"}
    assert inputs.missing_reports == ["mapping validation", "service uploads", "record creation"]
