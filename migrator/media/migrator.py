"""Media migration pipeline: inventory, mapping, upload and record creation."""

import logging
import os
from dataclasses import dataclass, field
from itertools import groupby
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .file_type import detect_file_type
from .records import MediaRecordCreator
from .uploader import StorageUploader, calculate_upload_stats
from ..models.media import (
    MediaAsset,
    MediaCategory,
    MediaRecordResult,
    MediaTask,
    MigratedAsset,
    UploadResult,
)
from ..models.migration import ConfigurationError, utcnow
from ..services.batch_processor import Settled, log_progress, settle_in_waves

logger = logging.getLogger(__name__)

SALON_ROLE = "salon"

UserMapping = Dict[str, str]
ServiceMapping = Dict[str, Dict[str, Any]]
MessageMapping = Dict[str, Dict[str, Any]]


def _category_for(segment: str) -> Optional[MediaCategory]:
    lowered = segment.lower()
    for category in (MediaCategory.PROFILE, MediaCategory.SERVICE, MediaCategory.CHAT):
        if category.value in lowered:
            return category
    return None


def _stem(segment: str) -> str:
    return os.path.splitext(segment)[0] or segment


def _category_summary(items: List[MediaAsset]) -> Dict[str, int]:
    migratable = [i for i in items if i.can_migrate]
    return {
        "total": len(items),
        "migratable": len(migratable),
        "size": sum(i.file_size for i in items),
        "migratable_size": sum(i.file_size for i in migratable),
    }


@dataclass
class MediaInventory:
    """Every file found in the legacy backup, migratable or not."""
    backup_path: str
    items: List[MediaAsset] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    scanned_at: str = field(default_factory=lambda: utcnow().isoformat())

    @property
    def migratable(self) -> List[MediaAsset]:
        return [i for i in self.items if i.can_migrate]

    def by_category(self, category: MediaCategory) -> List[MediaAsset]:
        return [i for i in self.items if i.category is category]

    def summary(self) -> Dict[str, Dict[str, int]]:
        return {category.value: _category_summary(self.by_category(category)) for category in MediaCategory}

    def to_dict(self) -> Dict[str, Any]:
        migratable = self.migratable
        return {
            "scanned_at": self.scanned_at,
            "backup_path": self.backup_path,
            "total_files": len(self.items),
            "total_size": sum(i.file_size for i in self.items),
            "migratable_files": len(migratable),
            "migratable_size": sum(i.file_size for i in migratable),
            "summary": self.summary(),
            "items": [i.to_dict() for i in self.items],
            "errors": self.errors,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaInventory":
        return cls(
            backup_path=data.get("backup_path", ""),
            items=[MediaAsset.from_dict(i) for i in data.get("items", [])],
            errors=data.get("errors", []),
            scanned_at=data.get("scanned_at") or utcnow().isoformat(),
        )


@dataclass
class MappingResolution:
    """Migratable assets split into upload tasks and unmappable entries."""
    tasks: List[MediaTask] = field(default_factory=list)
    invalid: List[Dict[str, Any]] = field(default_factory=list)

    def tasks_for(self, category: MediaCategory) -> List[MediaTask]:
        return [t for t in self.tasks if t.asset.category is category]

    @property
    def total_validated(self) -> int:
        return len(self.tasks) + len(self.invalid)

    def summary(self) -> Dict[str, Dict[str, int]]:
        summary = {}
        for category in MediaCategory:
            valid = self.tasks_for(category)
            invalid = [i for i in self.invalid if i["category"] == category.value]
            summary[category.value] = {
                "total": len(valid) + len(invalid),
                "valid": len(valid),
                "invalid": len(invalid),
                "valid_size": sum(t.asset.file_size for t in valid),
                "invalid_size": sum(i["file_size"] for i in invalid),
            }
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validated_at": utcnow().isoformat(),
            "total_validated": self.total_validated,
            "valid_mappings": len(self.tasks),
            "invalid_mappings": len(self.invalid),
            "summary": self.summary(),
            "tasks": [t.to_dict() for t in self.tasks],
            "invalid": self.invalid,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingResolution":
        return cls(
            tasks=[MediaTask.from_dict(t) for t in data.get("tasks", [])],
            invalid=data.get("invalid", []),
        )


class MediaMigrator:
    """
    Moves legacy media into object storage and the ``media`` table.

    Steps, each usable on its own so a phase runner can checkpoint between
    them: ``build_inventory`` -> ``resolve_targets`` -> ``migrate`` (per
    category) -> ``create_records``. File analysis and uploads fan out in
    bounded waves; a failure in one asset never stops the others.
    """

    def __init__(
        self,
        uploader: StorageUploader,
        record_creator: MediaRecordCreator,
        logger: Optional[logging.Logger] = None,
        inventory_concurrency: int = 5,
        media_concurrency: int = 3,
    ):
        """
        Initialize the migrator.

        Args:
            uploader: Per-asset compress-and-upload pipeline
            record_creator: Writes media rows for successful uploads
            logger: Logger for progress and summaries
            inventory_concurrency: Files analyzed per wave
            media_concurrency: Uploads per wave
        """
        self.uploader = uploader
        self.record_creator = record_creator
        self.logger = logger or logging.getLogger(__name__)
        self.inventory_concurrency = inventory_concurrency
        self.media_concurrency = media_concurrency

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    @staticmethod
    def analyze_file(file_path: Union[str, Path], backup_root: Union[str, Path]) -> MediaAsset:
        """
        Classify one backup file and extract its legacy owner keys.

        Layouts:
            Profile-Pics/<role>/<userId>[/...]
            Service-Images/<serviceId>/<imageId>
            Chat-Images/<chatId>/<file>  or  Chat-Images/<chatId>/<messageId>/<file>
        """
        relative = Path(file_path).relative_to(backup_root)
        segments = list(relative.parts)
        asset = MediaAsset(
            original_path=relative.as_posix(),
            local_path=str(file_path),
            file_size=os.path.getsize(file_path),
            file_type=detect_file_type(file_path),
            category=_category_for(segments[0]) if segments else None,
        )

        if asset.category is None:
            asset.skip_reason = "Unknown file category"
            return asset

        if len(segments) < 3:
            asset.skip_reason = f"Invalid {asset.category.value} path structure"
            return asset

        if asset.category is MediaCategory.PROFILE:
            asset.user_role = segments[1].lower()
            asset.user_id = _stem(segments[2])
            if asset.user_role == SALON_ROLE:
                asset.skip_reason = "Salon profiles not migrated (salon model removed)"
                return asset
        elif asset.category is MediaCategory.SERVICE:
            asset.service_id = segments[1]
            asset.image_id = _stem(segments[2])
        else:
            asset.chat_id = segments[1]
            if len(segments) >= 4:
                asset.message_id = segments[2]
                asset.image_id = _stem(segments[3])
            else:
                asset.message_id = _stem(segments[2])
                asset.image_id = asset.message_id

        if not asset.file_type.is_supported:
            asset.skip_reason = f"Unsupported file type: {asset.file_type.mime_type}"
        return asset

    def build_inventory(self, backup_root: Union[str, Path]) -> MediaInventory:
        """
        Scan the backup directory and analyze every file.

        Raises:
            ConfigurationError: if the backup directory does not exist
        """
        root = Path(backup_root)
        if not root.is_dir():
            raise ConfigurationError(f"Media backup directory not found: {root}")

        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for name in sorted(filenames):
                if not name.startswith("."):
                    files.append(Path(dirpath) / name)

        self.logger.info(f"Found {len(files)} files in {root}")
        inventory = MediaInventory(backup_path=str(root))

        for outcome in settle_in_waves(files, lambda f: self.analyze_file(f, root), self.inventory_concurrency):
            if outcome.ok:
                inventory.items.append(outcome.value)
            else:
                self.logger.warning(f"Failed to analyze {outcome.item}: {outcome.error}")
                inventory.errors.append({"path": str(outcome.item), "error": str(outcome.error)})

        summary = inventory.to_dict()
        self.logger.info(
            f"Inventory: {summary['total_files']} files, {summary['migratable_files']} migratable"
        )
        return inventory

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def resolve_targets(
        self,
        inventory: MediaInventory,
        user_mapping: UserMapping,
        service_mapping: ServiceMapping,
        message_mapping: MessageMapping,
    ) -> MappingResolution:
        """
        Map migratable assets onto target-system keys.

        Args:
            inventory: Output of ``build_inventory``
            user_mapping: legacy user id -> new user id
            service_mapping: legacy service id -> {"new_service_id", "stylist_id"}
            message_mapping: legacy message id -> {"processed_message_id",
                "processed_chat_id", "sender_id"}

        Returns:
            MappingResolution; assets without a mapping are listed with a reason
        """
        resolution = MappingResolution()

        for asset in inventory.migratable:
            task, reason = self._resolve(asset, user_mapping, service_mapping, message_mapping)
            if task is not None:
                resolution.tasks.append(task)
            else:
                resolution.invalid.append({
                    "original_path": asset.original_path,
                    "category": asset.category.value,
                    "file_size": asset.file_size,
                    "reason": reason,
                })

        self.assign_previews(resolution.tasks)
        self.logger.info(
            f"Resolved {len(resolution.tasks)}/{resolution.total_validated} assets to target keys"
        )
        return resolution

    @staticmethod
    def _resolve(asset: MediaAsset, user_mapping, service_mapping, message_mapping):
        if asset.category is MediaCategory.PROFILE:
            new_user_id = user_mapping.get(asset.user_id)
            if not new_user_id:
                return None, f"No user mapping for legacy user {asset.user_id}"
            return MediaTask(asset=asset, owner_id=new_user_id), None

        if asset.category is MediaCategory.SERVICE:
            service = service_mapping.get(asset.service_id)
            if not service or not service.get("new_service_id"):
                return None, f"No service mapping for legacy service {asset.service_id}"
            return MediaTask(
                asset=asset,
                owner_id=service.get("stylist_id"),
                service_id=service["new_service_id"],
            ), None

        message = message_mapping.get(asset.message_id)
        if not message or not message.get("processed_message_id"):
            return None, f"No message mapping for legacy message {asset.message_id}"
        if not message.get("sender_id"):
            return None, f"No sender for message {message['processed_message_id']}"
        return MediaTask(
            asset=asset,
            owner_id=message["sender_id"],
            chat_id=message.get("processed_chat_id"),
            message_id=message["processed_message_id"],
        ), None

    @staticmethod
    def assign_previews(tasks: List[MediaTask]) -> None:
        """
        Flag exactly one preview image per service.

        Service tasks are grouped by target service and the first by
        original path becomes the preview; every other flag is cleared.
        """
        service_tasks = [t for t in tasks if t.asset.category is MediaCategory.SERVICE]
        for task in service_tasks:
            task.is_preview = False

        service_tasks.sort(key=lambda t: (t.service_id or "", t.asset.original_path))
        for _, group in groupby(service_tasks, key=lambda t: t.service_id):
            next(group).is_preview = True

    # ------------------------------------------------------------------
    # Upload and records
    # ------------------------------------------------------------------

    def migrate(self, tasks: List[MediaTask], label: str = "Uploading media") -> List[MigratedAsset]:
        """Upload tasks in bounded waves; results follow input order."""
        migrated: List[MigratedAsset] = []
        total = len(tasks)

        def collect(wave: List[Settled]) -> None:
            for outcome in wave:
                upload = outcome.value if outcome.ok else UploadResult(success=False, error=str(outcome.error))
                migrated.append(MigratedAsset(task=outcome.item, upload=upload))
            log_progress(self.logger, label, len(migrated), total)

        settle_in_waves(tasks, self.uploader.upload, self.media_concurrency, on_wave=collect)

        succeeded = sum(1 for m in migrated if m.upload.success)
        self.logger.info(f"{label}: {succeeded}/{total} uploaded")
        return migrated

    def create_records(self, migrated: List[MigratedAsset]) -> List[MediaRecordResult]:
        """Write media rows for successful uploads; previews are re-derived from them."""
        self.assign_previews([m.task for m in migrated if m.upload.success])
        return self.record_creator.create_records(migrated)

    def summarize(self, category: MediaCategory, migrated: List[MigratedAsset]) -> Dict[str, Any]:
        """Upload report for one category, as persisted between steps."""
        uploads = [m.upload for m in migrated]
        stats = calculate_upload_stats(uploads)
        return {
            "migrated_at": utcnow().isoformat(),
            "category": category.value,
            "successful_uploads": stats["successful_uploads"],
            "failed_uploads": stats["failed_uploads"],
            "stats": stats,
            "uploads": [m.to_dict() for m in migrated],
        }
