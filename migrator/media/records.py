"""Media row creation for successfully uploaded assets."""

import logging
from typing import Any, Dict, List, Optional

from ..loaders.batch_writer import DatabaseBatchAdapter
from ..models.batch import OperationType
from ..models.media import MediaRecordResult, MediaType, MigratedAsset
from ..models.migration import utcnow

logger = logging.getLogger(__name__)

MEDIA_TABLE = "media"


class MediaRecordCreator:
    """
    Writes one ``media`` row per successful upload.

    Rows go through the database batch adapter, so a defective row only
    fails itself. Failed uploads are never turned into rows.
    """

    def __init__(self, adapter: DatabaseBatchAdapter, logger: Optional[logging.Logger] = None):
        self.adapter = adapter
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def build_row(migrated: MigratedAsset) -> Dict[str, Any]:
        """Media row for one uploaded asset."""
        task = migrated.task
        media_type = task.media_type
        return {
            "owner_id": task.owner_id,
            "service_id": task.service_id if media_type is MediaType.SERVICE_IMAGE else None,
            "chat_message_id": task.message_id if media_type is MediaType.CHAT_IMAGE else None,
            "file_path": migrated.upload.storage_path,
            "media_type": media_type.value,
            "is_preview_image": bool(task.is_preview and media_type is MediaType.SERVICE_IMAGE),
            "created_at": utcnow().isoformat(),
        }

    def create_records(self, migrated: List[MigratedAsset]) -> List[MediaRecordResult]:
        """
        Create media rows for the successful uploads in ``migrated``.

        Returns:
            One MediaRecordResult per successful upload, in input order
        """
        uploaded = [m for m in migrated if m.upload.success]
        skipped = len(migrated) - len(uploaded)
        if skipped:
            self.logger.info(f"Skipping {skipped} failed uploads, no media rows created for them")
        if not uploaded:
            return []

        rows = [self.build_row(m) for m in uploaded]
        result = self.adapter.insert_rows(MEDIA_TABLE, rows, OperationType.MEDIA)

        stored = {row.get("file_path"): row for row in result.successful}
        errors = {failure.item.get("file_path"): failure.error for failure in result.failed}

        records = []
        for row in rows:
            path = row["file_path"]
            media_type = MediaType(row["media_type"])
            if path in stored:
                records.append(MediaRecordResult(
                    success=True,
                    file_path=path,
                    media_type=media_type,
                    record_id=stored[path].get("id"),
                ))
            else:
                records.append(MediaRecordResult(
                    success=False,
                    file_path=path,
                    media_type=media_type,
                    error=errors.get(path, "Row missing from insert result"),
                ))

        created = sum(1 for r in records if r.success)
        self.logger.info(f"Created {created}/{len(records)} media records")
        return records


def calculate_media_record_stats(results: List[MediaRecordResult]) -> Dict[str, Any]:
    """Counts per outcome and media type."""
    successful = [r for r in results if r.success]
    records_by_type = {media_type.value: 0 for media_type in MediaType}
    for result in results:
        records_by_type[result.media_type.value] += 1

    return {
        "total_records": len(results),
        "successful_records": len(successful),
        "failed_records": len(results) - len(successful),
        "records_by_type": records_by_type,
        "success_rate": len(successful) / len(results) * 100 if results else 0.0,
        "errors": [r.error or "Unknown error" for r in results if not r.success],
    }


def build_records_report(migrated: List[MigratedAsset], results: List[MediaRecordResult]) -> Dict[str, Any]:
    """
    Record-creation report with the preview coverage used for scoring.

    ``results`` must line up with the successful uploads in ``migrated``,
    as returned by ``MediaRecordCreator.create_records``.
    """
    uploaded = [m for m in migrated if m.upload.success]
    services = set()
    previews: Dict[str, int] = {}
    entries = []

    for item, record in zip(uploaded, results):
        task = item.task
        if task.media_type is MediaType.SERVICE_IMAGE:
            services.add(task.service_id)
            if task.is_preview and record.success:
                previews[task.service_id] = previews.get(task.service_id, 0) + 1
        entry = record.to_dict()
        entry.update({
            "owner_id": task.owner_id,
            "service_id": task.service_id,
            "message_id": task.message_id,
            "is_preview": task.is_preview,
        })
        entries.append(entry)

    report = calculate_media_record_stats(results)
    report.update({
        "created_at": utcnow().isoformat(),
        "total_services": len(services),
        "services_with_preview": len(previews),
        "duplicate_preview_images": sum(1 for count in previews.values() if count > 1),
        "records": entries,
    })
    return report
