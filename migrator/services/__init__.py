"""Core services for the migration engine."""

from .batch_processor import BatchProcessor, Settled, settle_in_waves, get_optimal_batch_size
from .checkpoint import (
    Checkpoint,
    CheckpointError,
    CheckpointNotFoundError,
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
)
from .deduplicator import UserDeduplicator, ConsolidationResult, DeduplicationError
from .validator import IdentityValidator, IdentityConflictError
from .scorer import MigrationScorer, ReadinessReport, ScoringInputs, ValidationCheck

__all__ = [
    "BatchProcessor",
    "Settled",
    "settle_in_waves",
    "get_optimal_batch_size",
    "Checkpoint",
    "CheckpointError",
    "CheckpointNotFoundError",
    "CheckpointStore",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    "UserDeduplicator",
    "ConsolidationResult",
    "DeduplicationError",
    "IdentityValidator",
    "IdentityConflictError",
    "MigrationScorer",
    "ReadinessReport",
    "ScoringInputs",
    "ValidationCheck",
]
