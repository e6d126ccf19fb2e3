"""Media migration models."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum


class MediaCategory(str, Enum):
    """Legacy backup folder an asset was found in."""
    PROFILE = "profile"
    SERVICE = "service"
    CHAT = "chat"


class MediaType(str, Enum):
    """Media type stored on the target media row."""
    AVATAR = "avatar"
    SERVICE_IMAGE = "service_image"
    CHAT_IMAGE = "chat_image"

    @classmethod
    def for_category(cls, category: MediaCategory) -> "MediaType":
        return {
            MediaCategory.PROFILE: cls.AVATAR,
            MediaCategory.SERVICE: cls.SERVICE_IMAGE,
            MediaCategory.CHAT: cls.CHAT_IMAGE,
        }[category]


@dataclass(frozen=True)
class FileTypeInfo:
    """Detected type of a file on disk."""
    mime_type: str
    extension: str
    is_image: bool
    is_supported: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mime_type": self.mime_type,
            "extension": self.extension,
            "is_image": self.is_image,
            "is_supported": self.is_supported,
        }


@dataclass
class MediaAsset:
    """A file from the legacy object-store backup.

    ``can_migrate`` is derived: an asset migrates only when it has no skip
    reason and the key fields for its category are populated.
    """
    original_path: str
    local_path: str
    category: Optional[MediaCategory] = None
    file_size: int = 0
    file_type: Optional[FileTypeInfo] = None
    skip_reason: Optional[str] = None

    # Legacy owner keys, by category
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    service_id: Optional[str] = None
    image_id: Optional[str] = None
    chat_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def owner_keys(self) -> Dict[str, Optional[str]]:
        if self.category is MediaCategory.PROFILE:
            return {"user_id": self.user_id}
        if self.category is MediaCategory.SERVICE:
            return {"service_id": self.service_id, "image_id": self.image_id}
        if self.category is MediaCategory.CHAT:
            return {"chat_id": self.chat_id, "message_id": self.message_id}
        return {}

    @property
    def has_owner_keys(self) -> bool:
        keys = self.owner_keys
        return bool(keys) and all(keys.values())

    @property
    def can_migrate(self) -> bool:
        return (
            self.skip_reason is None
            and self.file_type is not None
            and self.file_type.is_supported
            and self.has_owner_keys
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_path": self.original_path,
            "local_path": self.local_path,
            "category": self.category.value if self.category else None,
            "file_size": self.file_size,
            "file_type": self.file_type.to_dict() if self.file_type else None,
            "owner_keys": self.owner_keys,
            "user_role": self.user_role,
            "can_migrate": self.can_migrate,
            "skip_reason": self.skip_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaAsset":
        file_type = data.get("file_type")
        keys = data.get("owner_keys") or {}
        category = data.get("category")
        return cls(
            original_path=data["original_path"],
            local_path=data.get("local_path", data["original_path"]),
            category=MediaCategory(category) if category else None,
            file_size=data.get("file_size", 0),
            file_type=FileTypeInfo(**file_type) if file_type else None,
            skip_reason=data.get("skip_reason"),
            user_id=keys.get("user_id"),
            user_role=data.get("user_role"),
            service_id=keys.get("service_id"),
            image_id=keys.get("image_id"),
            chat_id=keys.get("chat_id"),
            message_id=keys.get("message_id"),
        )


@dataclass
class MediaTask:
    """An asset resolved against target-system keys, ready to upload."""
    asset: MediaAsset
    owner_id: Optional[str] = None
    service_id: Optional[str] = None
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    is_preview: bool = False

    @property
    def media_type(self) -> MediaType:
        return MediaType.for_category(self.asset.category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_path": self.asset.original_path,
            "category": self.asset.category.value,
            "owner_id": self.owner_id,
            "service_id": self.service_id,
            "chat_id": self.chat_id,
            "message_id": self.message_id,
            "is_preview": self.is_preview,
            "asset": self.asset.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaTask":
        return cls(
            asset=MediaAsset.from_dict(data["asset"]),
            owner_id=data.get("owner_id"),
            service_id=data.get("service_id"),
            chat_id=data.get("chat_id"),
            message_id=data.get("message_id"),
            is_preview=data.get("is_preview", False),
        )


@dataclass
class CompressionResult:
    """Outcome of one compression attempt."""
    success: bool
    original_path: str
    output_path: Optional[str]
    original_size: int = 0
    compressed_size: int = 0
    compression_ratio: float = 0.0  # percent saved
    processing_time: float = 0.0  # seconds
    quality: Optional[int] = None
    error: Optional[str] = None

    @property
    def stats(self) -> "CompressionStats":
        return CompressionStats(
            original_size=self.original_size,
            compressed_size=self.compressed_size,
            ratio=self.compression_ratio,
            time=self.processing_time,
        )


@dataclass
class CompressionStats:
    original_size: int = 0
    compressed_size: int = 0
    ratio: float = 0.0
    time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "ratio": self.ratio,
            "time": self.time,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CompressionStats":
        data = data or {}
        return cls(
            original_size=data.get("original_size", 0),
            compressed_size=data.get("compressed_size", 0),
            ratio=data.get("ratio", 0.0),
            time=data.get("time", 0.0),
        )


@dataclass
class UploadResult:
    """Outcome of the detect, compress and upload pipeline for one asset."""
    success: bool
    storage_path: Optional[str] = None
    bucket: Optional[str] = None
    compression_stats: CompressionStats = field(default_factory=CompressionStats)
    upload_time: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "storage_path": self.storage_path,
            "bucket": self.bucket,
            "compression_stats": self.compression_stats.to_dict(),
            "upload_time": self.upload_time,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadResult":
        return cls(
            success=data.get("success", False),
            storage_path=data.get("storage_path"),
            bucket=data.get("bucket"),
            compression_stats=CompressionStats.from_dict(data.get("compression_stats")),
            upload_time=data.get("upload_time", 0.0),
            error=data.get("error"),
        )


@dataclass
class MigratedAsset:
    """A task paired with its upload outcome."""
    task: MediaTask
    upload: UploadResult

    def to_dict(self) -> Dict[str, Any]:
        data = self.task.to_dict()
        data.update(self.upload.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigratedAsset":
        return cls(task=MediaTask.from_dict(data), upload=UploadResult.from_dict(data))


@dataclass
class MediaRecordResult:
    """Outcome of writing one media row."""
    success: bool
    file_path: str
    media_type: MediaType
    record_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "file_path": self.file_path,
            "media_type": self.media_type.value,
            "record_id": self.record_id,
            "error": self.error,
        }
