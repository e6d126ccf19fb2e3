"""Compress-and-upload pipeline for a single media asset."""

import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple

from .compressor import ImageCompressor
from .file_type import generate_file_name, validate_image_file
from ..loaders.base import ObjectStorage
from ..models.media import (
    CompressionResult,
    CompressionStats,
    MediaCategory,
    MediaTask,
    UploadResult,
)
from ..services.batch_processor import BatchProcessor

logger = logging.getLogger(__name__)

BUCKETS = {
    MediaCategory.PROFILE: "avatars",
    MediaCategory.SERVICE: "service-media",
    MediaCategory.CHAT: "chat-media",
}

# Bucket upload limits in bytes
BUCKET_SIZE_LIMITS = {
    "avatars": 2 * 1024 * 1024,
    "service-media": 5 * 1024 * 1024,
    "chat-media": 5 * 1024 * 1024,
}


def storage_path_for(task: MediaTask, filename: str) -> Tuple[str, str]:
    """
    Derive the bucket and object path from the target-system keys.

    Returns:
        Tuple of (bucket, path)

    Raises:
        ValueError: if a key the category needs is missing
    """
    category = task.asset.category
    bucket = BUCKETS[category]

    if category is MediaCategory.PROFILE:
        keys = [task.owner_id]
    elif category is MediaCategory.SERVICE:
        keys = [task.service_id]
    else:
        keys = [task.chat_id, task.message_id]

    if not all(keys):
        raise ValueError(f"Missing target keys for {category.value} asset {task.asset.original_path}")
    return bucket, "/".join(keys + [filename])


class StorageUploader:
    """
    Runs validate, compress, upload and cleanup for one asset.

    Never raises for a per-asset problem. Failures come back as an
    UploadResult with ``success=False``, the error, and whatever compression
    stats were computed before the failure. The compressed temp file is
    removed on every exit path.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        compressor: ImageCompressor,
        processor: Optional[BatchProcessor] = None,
        logger: Optional[logging.Logger] = None,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
        enforce_size_limits: bool = True,
    ):
        self.storage = storage
        self.compressor = compressor
        self.logger = logger or logging.getLogger(__name__)
        self.processor = processor or BatchProcessor(logger=self.logger)
        self.max_retries = max_retries
        self.base_retry_delay = base_retry_delay
        self.enforce_size_limits = enforce_size_limits

    def upload(self, task: MediaTask) -> UploadResult:
        """Upload one resolved asset."""
        started = time.monotonic()
        asset = task.asset
        compression: Optional[CompressionResult] = None

        try:
            is_valid, file_type, error = validate_image_file(asset.local_path)
            if not is_valid:
                return UploadResult(success=False, upload_time=time.monotonic() - started, error=error)

            image_id = asset.image_id or asset.user_id or os.path.basename(asset.local_path)
            filename = generate_file_name(image_id, file_type)
            bucket, path = storage_path_for(task, filename)

            limit = BUCKET_SIZE_LIMITS.get(bucket) if self.enforce_size_limits else None
            if limit:
                compression = self.compressor.compress_to_size_limit(asset.local_path, file_type.extension, limit)
            else:
                compression = self.compressor.compress_image(asset.local_path, file_type.extension)

            with open(compression.output_path, "rb") as f:
                data = f.read()

            self.processor.retry_with_backoff(
                lambda: self.storage.upload(bucket, path, data, file_type.mime_type),
                max_retries=self.max_retries,
                base_delay=self.base_retry_delay,
                description=f"Upload {bucket}/{path}",
            )

            return UploadResult(
                success=True,
                storage_path=path,
                bucket=bucket,
                compression_stats=compression.stats,
                upload_time=time.monotonic() - started,
            )

        except Exception as e:
            self.logger.error(f"Upload failed for {asset.original_path}: {e}")
            return UploadResult(
                success=False,
                compression_stats=compression.stats if compression else CompressionStats(),
                upload_time=time.monotonic() - started,
                error=str(e),
            )

        finally:
            if compression and compression.output_path and os.path.exists(compression.output_path):
                try:
                    os.unlink(compression.output_path)
                except OSError as cleanup_error:
                    self.logger.warning(f"Failed to clean up {compression.output_path}: {cleanup_error}")


def verify_upload(
    storage: ObjectStorage,
    bucket: str,
    path: str,
    expected_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Confirm an uploaded object is readable and about the expected size."""
    return storage.verify(bucket, path, expected_size)


def calculate_upload_stats(results: List[UploadResult]) -> Dict[str, Any]:
    """Aggregate upload results; the average ratio only counts successes."""
    successful = [r for r in results if r.success]
    total_original = sum(r.compression_stats.original_size for r in results)
    total_compressed = sum(r.compression_stats.compressed_size for r in results)
    total_upload_time = sum(r.upload_time for r in results)
    return {
        "total_files": len(results),
        "successful_uploads": len(successful),
        "failed_uploads": len(results) - len(successful),
        "total_original_size": total_original,
        "total_compressed_size": total_compressed,
        "total_size_saved": total_original - total_compressed,
        "average_compression_ratio": (
            sum(r.compression_stats.ratio for r in successful) / len(successful) if successful else 0.0
        ),
        "total_upload_time": total_upload_time,
        "total_compression_time": sum(r.compression_stats.time for r in results),
        "average_upload_time": total_upload_time / len(results) if results else 0.0,
        "success_rate": len(successful) / len(results) * 100 if results else 0.0,
    }
