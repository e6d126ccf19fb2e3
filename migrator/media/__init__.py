"""Media inventory, compression, upload and record creation."""

from .compressor import ImageCompressor, CompressionError
from .file_type import detect_file_type, validate_image_file, generate_file_name
from .uploader import StorageUploader, storage_path_for
from .records import MediaRecordCreator
from .migrator import MediaInventory, MappingResolution, MediaMigrator

__all__ = [
    "ImageCompressor",
    "CompressionError",
    "detect_file_type",
    "validate_image_file",
    "generate_file_name",
    "StorageUploader",
    "storage_path_for",
    "MediaRecordCreator",
    "MediaInventory",
    "MappingResolution",
    "MediaMigrator",
]
