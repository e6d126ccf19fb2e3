"""Media inventory, target resolution, uploads and media rows."""
import os

import pytest

from migrator.loaders.batch_writer import DatabaseBatchAdapter
from migrator.media.compressor import ImageCompressor
from migrator.media.migrator import MediaInventory, MediaMigrator, MappingResolution
from migrator.media.records import (
    MediaRecordCreator,
    build_records_report,
    calculate_media_record_stats,
)
from migrator.media.uploader import StorageUploader, calculate_upload_stats, storage_path_for
from migrator.models.media import (
    CompressionStats,
    MediaAsset,
    MediaCategory,
    MediaTask,
    MediaType,
    MigratedAsset,
    UploadResult,
)
from migrator.models.migration import ConfigurationError

from conftest import FakeRunner, FakeStore, make_image


def build_migrator(storage, store, processor, temp_dir, runner=None):
    compressor = ImageCompressor(temp_dir=temp_dir, runner=runner or FakeRunner())
    uploader = StorageUploader(storage, compressor, processor=processor)
    creator = MediaRecordCreator(DatabaseBatchAdapter(store, processor))
    return MediaMigrator(uploader, creator)


@pytest.fixture
def backup(tmp_path):
    root = tmp_path / "backup"
    make_image(root / "Profile-Pics" / "buyer" / "u1.png")
    make_image(root / "Profile-Pics" / "salon" / "s9.png")
    make_image(root / "Service-Images" / "svc1" / "b.png")
    make_image(root / "Service-Images" / "svc1" / "a.jpg", "JPEG")
    make_image(root / "Service-Images" / "svc2" / "c.png")
    make_image(root / "Chat-Images" / "chat1" / "m1.png")
    make_image(root / "Chat-Images" / "chat1" / "m2" / "img7.png")
    (root / "Chat-Images" / "chat1" / "notes.txt").write_text("not an image")
    (root / "Chat-Images" / ".DS_Store").write_text("")
    make_image(root / "Other" / "x" / "y.png")
    make_image(root / "Service-Images" / "orphan.png")
    return root


def image_task(tmp_path, category, name="img.png", **keys):
    path = make_image(tmp_path / "src" / name)
    asset = MediaAsset(original_path=f"{category.value}/{name}", local_path=path, category=category)
    return MediaTask(asset=asset, **keys)


# ----------------------------------------------------------------------
# Inventory
# ----------------------------------------------------------------------

def test_inventory_classifies_backup(backup, fake_storage, fake_store, processor, temp_dir):
    migrator = build_migrator(fake_storage, fake_store, processor, temp_dir)

    inventory = migrator.build_inventory(backup)
    items = {i.original_path: i for i in inventory.items}

    assert ".DS_Store" not in " ".join(items)
    assert len(items) == 10

    profile = items["Profile-Pics/buyer/u1.png"]
    assert profile.category is MediaCategory.PROFILE
    assert profile.user_id == "u1" and profile.user_role == "buyer"
    assert profile.can_migrate

    salon = items["Profile-Pics/salon/s9.png"]
    assert not salon.can_migrate
    assert salon.skip_reason == "Salon profiles not migrated (salon model removed)"

    service = items["Service-Images/svc1/a.jpg"]
    assert (service.service_id, service.image_id) == ("svc1", "a")

    flat_chat = items["Chat-Images/chat1/m1.png"]
    assert (flat_chat.chat_id, flat_chat.message_id, flat_chat.image_id) == ("chat1", "m1", "m1")
    nested_chat = items["Chat-Images/chat1/m2/img7.png"]
    assert (nested_chat.message_id, nested_chat.image_id) == ("m2", "img7")

    assert items["Chat-Images/chat1/notes.txt"].skip_reason == "Unsupported file type: text/plain"
    assert items["Other/x/y.png"].skip_reason == "Unknown file category"
    assert items["Service-Images/orphan.png"].skip_reason == "Invalid service path structure"

    summary = inventory.to_dict()
    assert summary["migratable_files"] == 6
    assert summary["summary"]["service"]["total"] == 4
    assert summary["summary"]["service"]["migratable"] == 3


def test_inventory_round_trips_through_checkpoint_payload(backup, fake_storage, fake_store, processor, temp_dir):
    inventory = build_migrator(fake_storage, fake_store, processor, temp_dir).build_inventory(backup)
    restored = MediaInventory.from_dict(inventory.to_dict())
    assert [i.original_path for i in restored.migratable] == [i.original_path for i in inventory.migratable]


def test_missing_backup_directory(tmp_path, fake_storage, fake_store, processor, temp_dir):
    migrator = build_migrator(fake_storage, fake_store, processor, temp_dir)
    with pytest.raises(ConfigurationError):
        migrator.build_inventory(tmp_path / "nowhere")


# ----------------------------------------------------------------------
# Target resolution
# ----------------------------------------------------------------------

def test_resolve_targets_maps_and_reports_gaps(backup, fake_storage, fake_store, processor, temp_dir):
    migrator = build_migrator(fake_storage, fake_store, processor, temp_dir)
    inventory = migrator.build_inventory(backup)

    resolution = migrator.resolve_targets(
        inventory,
        user_mapping={"u1": "new-u1"},
        service_mapping={"svc1": {"new_service_id": "new-svc1", "stylist_id": "stylist-1"}},
        message_mapping={
            "m1": {"processed_message_id": "new-m1", "processed_chat_id": "new-chat1", "sender_id": "new-u1"},
            "m2": {"processed_message_id": "new-m2", "processed_chat_id": "new-chat1"},
        },
    )

    by_path = {t.asset.original_path: t for t in resolution.tasks}
    assert by_path["Profile-Pics/buyer/u1.png"].owner_id == "new-u1"
    svc = by_path["Service-Images/svc1/a.jpg"]
    assert (svc.service_id, svc.owner_id) == ("new-svc1", "stylist-1")
    chat = by_path["Chat-Images/chat1/m1.png"]
    assert (chat.chat_id, chat.message_id, chat.owner_id) == ("new-chat1", "new-m1", "new-u1")

    reasons = sorted(i["reason"] for i in resolution.invalid)
    assert reasons == [
        "No sender for message new-m2",
        "No service mapping for legacy service svc2",
    ]
    service_summary = resolution.summary()["service"]
    assert (service_summary["total"], service_summary["valid"], service_summary["invalid"]) == (3, 2, 1)
    assert service_summary["invalid_size"] > 0

    restored = MappingResolution.from_dict(resolution.to_dict())
    assert len(restored.tasks) == len(resolution.tasks)


def test_missing_user_and_message_mappings(tmp_path):
    profile = MediaAsset(original_path="p", local_path="p", category=MediaCategory.PROFILE, user_id="u7")
    chat = MediaAsset(original_path="c", local_path="c", category=MediaCategory.CHAT, chat_id="c1", message_id="m9")

    task, reason = MediaMigrator._resolve(profile, {}, {}, {})
    assert task is None and reason == "No user mapping for legacy user u7"

    task, reason = MediaMigrator._resolve(chat, {}, {}, {})
    assert task is None and reason == "No message mapping for legacy message m9"


def test_exactly_one_preview_per_service():
    def service_task(service_id, path, preview=False):
        asset = MediaAsset(original_path=path, local_path=path, category=MediaCategory.SERVICE)
        return MediaTask(asset=asset, service_id=service_id, is_preview=preview)

    tasks = [
        service_task("s1", "Service-Images/s1/c.png", preview=True),
        service_task("s1", "Service-Images/s1/a.png"),
        service_task("s2", "Service-Images/s2/z.png", preview=True),
        service_task("s1", "Service-Images/s1/b.png", preview=True),
    ]
    MediaMigrator.assign_previews(tasks)

    previews = [t.asset.original_path for t in tasks if t.is_preview]
    assert previews == ["Service-Images/s1/a.png", "Service-Images/s2/z.png"]


# ----------------------------------------------------------------------
# Upload
# ----------------------------------------------------------------------

def test_storage_paths_per_category(tmp_path):
    profile = image_task(tmp_path, MediaCategory.PROFILE, owner_id="user-1")
    service = image_task(tmp_path, MediaCategory.SERVICE, service_id="svc-1")
    chat = image_task(tmp_path, MediaCategory.CHAT, chat_id="chat-1", message_id="msg-1")

    assert storage_path_for(profile, "a.png") == ("avatars", "user-1/a.png")
    assert storage_path_for(service, "a.png") == ("service-media", "svc-1/a.png")
    assert storage_path_for(chat, "a.png") == ("chat-media", "chat-1/msg-1/a.png")

    with pytest.raises(ValueError):
        storage_path_for(image_task(tmp_path, MediaCategory.CHAT, message_id="msg-1"), "a.png")


def test_upload_compresses_and_cleans_up(tmp_path, fake_storage, processor, temp_dir):
    task = image_task(tmp_path, MediaCategory.SERVICE, service_id="svc-1")
    task.asset.image_id = "cover"
    uploader = StorageUploader(fake_storage, ImageCompressor(temp_dir=temp_dir, runner=FakeRunner(0.5)), processor)

    result = uploader.upload(task)

    assert result.success
    assert (result.bucket, result.storage_path) == ("service-media", "svc-1/cover.png")
    assert fake_storage.content_types[("service-media", "svc-1/cover.png")] == "image/png"
    stored = fake_storage.objects[("service-media", "svc-1/cover.png")]
    assert len(stored) == result.compression_stats.compressed_size
    assert result.compression_stats.compressed_size < result.compression_stats.original_size
    assert os.listdir(temp_dir) == []


def test_upload_rejects_non_image(tmp_path, fake_storage, processor, temp_dir):
    text = tmp_path / "note.txt"
    text.write_text("hi")
    asset = MediaAsset(original_path="Chat-Images/c/note.txt", local_path=str(text), category=MediaCategory.CHAT)
    task = MediaTask(asset=asset, chat_id="c", message_id="m")
    uploader = StorageUploader(fake_storage, ImageCompressor(temp_dir=temp_dir, runner=FakeRunner()), processor)

    result = uploader.upload(task)

    assert not result.success
    assert "not an image" in result.error
    assert fake_storage.upload_calls == 0


def test_upload_retries_transient_storage_errors(tmp_path, fake_storage, processor, temp_dir):
    fake_storage.transient_failures = 2
    task = image_task(tmp_path, MediaCategory.PROFILE, owner_id="user-1")
    uploader = StorageUploader(
        fake_storage, ImageCompressor(temp_dir=temp_dir, runner=FakeRunner()), processor, base_retry_delay=0.5
    )

    result = uploader.upload(task)

    assert result.success
    assert fake_storage.upload_calls == 3
    assert len(processor.sleeps) == 2
    assert 0.5 <= processor.sleeps[0] <= 0.55
    assert 1.0 <= processor.sleeps[1] <= 1.1


def test_upload_failure_keeps_compression_stats_and_cleans_up(tmp_path, fake_storage, processor, temp_dir):
    task = image_task(tmp_path, MediaCategory.PROFILE, owner_id="user-1")
    task.asset.user_id = "legacy-1"
    fake_storage.fail_paths.add("user-1/legacy-1.png")
    uploader = StorageUploader(fake_storage, ImageCompressor(temp_dir=temp_dir, runner=FakeRunner()), processor)

    result = uploader.upload(task)

    assert not result.success
    assert "failed" in result.error
    assert fake_storage.upload_calls == 1
    assert result.compression_stats.original_size > 0
    assert os.listdir(temp_dir) == []


def test_upload_falls_back_to_original_bytes_when_compression_tool_fails(tmp_path, fake_storage, processor, temp_dir):
    task = image_task(tmp_path, MediaCategory.PROFILE, owner_id="user-1")
    task.asset.user_id = "legacy-1"
    runner = FakeRunner(fail=True)
    uploader = StorageUploader(fake_storage, ImageCompressor(temp_dir=temp_dir, runner=runner), processor)

    result = uploader.upload(task)

    assert result.success
    assert runner.calls
    assert result.compression_stats.ratio == 0.0
    assert result.compression_stats.compressed_size == result.compression_stats.original_size
    with open(task.asset.local_path, "rb") as f:
        assert fake_storage.objects[("avatars", "user-1/legacy-1.png")] == f.read()
    assert os.listdir(temp_dir) == []


def test_upload_stats_average_only_successes():
    ok = UploadResult(success=True, compression_stats=CompressionStats(100, 50, 50.0, 0.1), upload_time=1.0)
    bad = UploadResult(success=False, compression_stats=CompressionStats(100, 100, 0.0, 0.1), upload_time=3.0)

    stats = calculate_upload_stats([ok, bad])

    assert stats["successful_uploads"] == 1
    assert stats["failed_uploads"] == 1
    assert stats["average_compression_ratio"] == 50.0
    assert stats["total_size_saved"] == 50
    assert stats["average_upload_time"] == 2.0
    assert stats["success_rate"] == 50.0
    assert calculate_upload_stats([])["success_rate"] == 0.0


# ----------------------------------------------------------------------
# Migrate and records
# ----------------------------------------------------------------------

def test_migrate_isolates_failures(tmp_path, fake_storage, fake_store, processor, temp_dir):
    migrator = build_migrator(fake_storage, fake_store, processor, temp_dir)
    tasks = [image_task(tmp_path, MediaCategory.PROFILE, name=f"u{i}.png", owner_id=f"user-{i}") for i in range(5)]
    for i, task in enumerate(tasks):
        task.asset.user_id = f"u{i}"
    fake_storage.fail_paths.add("user-2/u2.png")

    migrated = migrator.migrate(tasks, "Profile images")

    assert [m.task for m in migrated] == tasks
    assert [m.upload.success for m in migrated] == [True, True, False, True, True]

    summary = migrator.summarize(MediaCategory.PROFILE, migrated)
    assert summary["category"] == "profile"
    assert (summary["successful_uploads"], summary["failed_uploads"]) == (4, 1)
    restored = [MigratedAsset.from_dict(u) for u in summary["uploads"]]
    assert restored[2].upload.error == migrated[2].upload.error


def migrated_asset(category, path, success=True, **keys):
    asset = MediaAsset(original_path=path, local_path=path, category=category)
    upload = UploadResult(success=success, storage_path=path if success else None, error=None if success else "boom")
    return MigratedAsset(task=MediaTask(asset=asset, **keys), upload=upload)


def test_records_for_successful_uploads_only(processor):
    store = FakeStore(reject=lambda row: "bad" in row["file_path"])
    migrator = MediaMigrator(None, MediaRecordCreator(DatabaseBatchAdapter(store, processor)))
    migrated = [
        migrated_asset(MediaCategory.PROFILE, "u1/a.png", owner_id="u1"),
        migrated_asset(MediaCategory.SERVICE, "s1/b.png", owner_id="st1", service_id="s1"),
        migrated_asset(MediaCategory.SERVICE, "s1/a.png", owner_id="st1", service_id="s1", is_preview=False),
        migrated_asset(MediaCategory.SERVICE, "s2/x.png", success=False, owner_id="st1", service_id="s2"),
        migrated_asset(MediaCategory.CHAT, "c1/m1/bad.png", owner_id="u1", chat_id="c1", message_id="m1"),
    ]

    records = migrator.create_records(migrated)

    assert [r.success for r in records] == [True, True, True, False]
    assert records[3].error == "Row rejected by media"

    rows = {row["file_path"]: row for row in store.rows("media")}
    assert set(rows) == {"u1/a.png", "s1/b.png", "s1/a.png"}
    assert rows["u1/a.png"]["media_type"] == MediaType.AVATAR.value
    assert rows["u1/a.png"]["service_id"] is None
    assert rows["s1/a.png"]["is_preview_image"] is True
    assert rows["s1/b.png"]["is_preview_image"] is False

    report = build_records_report(migrated, records)
    assert report["total_services"] == 1
    assert report["services_with_preview"] == 1
    assert report["duplicate_preview_images"] == 0
    assert report["records_by_type"] == {"avatar": 1, "service_image": 2, "chat_image": 1}
    assert report["errors"] == ["Row rejected by media"]


def test_chat_row_references_message(processor, fake_store):
    chat = migrated_asset(MediaCategory.CHAT, "c1/m1/a.png", owner_id="u1", chat_id="c1", message_id="m1")
    row = MediaRecordCreator.build_row(chat)
    assert row["chat_message_id"] == "m1"
    assert row["media_type"] == "chat_image"
    assert row["is_preview_image"] is False


def test_no_rows_when_every_upload_failed(processor, fake_store):
    creator = MediaRecordCreator(DatabaseBatchAdapter(fake_store, processor))
    records = creator.create_records([migrated_asset(MediaCategory.PROFILE, "u/a.png", success=False)])
    assert records == []
    assert fake_store.batch_calls == 0
    assert calculate_media_record_stats(records)["success_rate"] == 0.0
