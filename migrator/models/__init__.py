"""Data models for the migration engine."""

from .record import (
    Role,
    SourceTable,
    ResolutionStrategy,
    SourceIdentity,
    StylistDetails,
    UserPreferences,
    ConsolidatedIdentity,
    DuplicateConflict,
    ValidationError,
)
from .batch import (
    OperationType,
    BatchOptions,
    DatabaseBatchOptions,
    BatchFailure,
    BatchResult,
)
from .media import (
    MediaCategory,
    MediaType,
    FileTypeInfo,
    MediaAsset,
    MediaTask,
    CompressionResult,
    CompressionStats,
    UploadResult,
    MigratedAsset,
    MediaRecordResult,
)
from .migration import (
    ConfigurationError,
    MigrationStatus,
    OutcomeStatus,
    MigrationStep,
    PhaseRun,
    MigrationConfig,
)

__all__ = [
    "Role",
    "SourceTable",
    "ResolutionStrategy",
    "SourceIdentity",
    "StylistDetails",
    "UserPreferences",
    "ConsolidatedIdentity",
    "DuplicateConflict",
    "ValidationError",
    "OperationType",
    "BatchOptions",
    "DatabaseBatchOptions",
    "BatchFailure",
    "BatchResult",
    "MediaCategory",
    "MediaType",
    "FileTypeInfo",
    "MediaAsset",
    "MediaTask",
    "CompressionResult",
    "CompressionStats",
    "UploadResult",
    "MigratedAsset",
    "MediaRecordResult",
    "ConfigurationError",
    "MigrationStatus",
    "OutcomeStatus",
    "MigrationStep",
    "PhaseRun",
    "MigrationConfig",
]
