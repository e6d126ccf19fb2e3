"""Migration execution models."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime, timezone
import uuid


class ConfigurationError(Exception):
    """Missing or invalid environment configuration."""


class MigrationStatus(str, Enum):
    """Lifecycle status of a phase or step."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Tri-state verdict shared by phase stats and the readiness report."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return {
            OutcomeStatus.SUCCESS: "✅ SUCCESS",
            OutcomeStatus.PARTIAL_SUCCESS: "⚠️  PARTIAL SUCCESS",
            OutcomeStatus.FAILED: "❌ FAILED",
        }[self]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MigrationStep:
    """A single step in a migration phase."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    outcome: Optional[OutcomeStatus] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_succeeded: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "status": self.status.value,
            "outcome": self.outcome.value if self.outcome else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "records_processed": self.records_processed,
            "records_succeeded": self.records_succeeded,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success_rate(self) -> float:
        if self.records_processed == 0:
            return 0.0
        return self.records_succeeded / self.records_processed


@dataclass
class PhaseRun:
    """A complete run of one numbered phase."""
    phase: int
    name: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.PENDING
    outcome: Optional[OutcomeStatus] = None
    dry_run: bool = False

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    steps: List[MigrationStep] = field(default_factory=list)
    current_step: Optional[str] = None

    total_records_processed: int = 0
    total_records_succeeded: int = 0
    total_records_failed: int = 0
    total_records_skipped: int = 0

    errors: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "phase": self.phase,
            "name": self.name,
            "status": self.status.value,
            "outcome": self.outcome.value if self.outcome else None,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "steps": [s.to_dict() for s in self.steps],
            "current_step": self.current_step,
            "total_records_processed": self.total_records_processed,
            "total_records_succeeded": self.total_records_succeeded,
            "total_records_failed": self.total_records_failed,
            "total_records_skipped": self.total_records_skipped,
            "errors": self.errors,
            "metadata": self.metadata,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_step(self, name: str, entity: str) -> MigrationStep:
        """Add a new step to the phase."""
        step = MigrationStep(name=name, entity=entity)
        self.steps.append(step)
        return step

    def get_step(self, name: str) -> Optional[MigrationStep]:
        """Get a step by name."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def update_totals(self) -> None:
        """Update total statistics from steps."""
        self.total_records_processed = sum(s.records_processed for s in self.steps)
        self.total_records_succeeded = sum(s.records_succeeded for s in self.steps)
        self.total_records_failed = sum(s.records_failed for s in self.steps)
        self.total_records_skipped = sum(s.records_skipped for s in self.steps)


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MigrationConfig:
    """Configuration for a migration run."""
    supabase_url: Optional[str] = None
    service_role_key: Optional[str] = None
    dump_path: str = "./data/dump.json"
    media_backup_path: str = "./data/media-backup"
    checkpoint_dir: str = "./data/checkpoints"

    # Execution options
    dry_run: bool = False
    batch_size: Optional[int] = None  # None picks the per-operation optimum
    delay_between_batches: float = 0.2
    max_retries: int = 3
    base_retry_delay: float = 1.0
    request_timeout: float = 30.0

    # Media options
    media_concurrency: int = 3
    inventory_concurrency: int = 5
    compression_command: str = "magick"
    storage_sample_size: int = 20
    storage_sample_strategy: str = "sequential"  # sequential, random

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, without credentials."""
        return {
            "supabase_url": self.supabase_url,
            "dump_path": self.dump_path,
            "media_backup_path": self.media_backup_path,
            "checkpoint_dir": self.checkpoint_dir,
            "dry_run": self.dry_run,
            "batch_size": self.batch_size,
            "delay_between_batches": self.delay_between_batches,
            "max_retries": self.max_retries,
            "base_retry_delay": self.base_retry_delay,
            "request_timeout": self.request_timeout,
            "media_concurrency": self.media_concurrency,
            "inventory_concurrency": self.inventory_concurrency,
            "compression_command": self.compression_command,
            "storage_sample_size": self.storage_sample_size,
            "storage_sample_strategy": self.storage_sample_strategy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        defaults = cls()
        return cls(
            supabase_url=data.get("supabase_url"),
            service_role_key=data.get("service_role_key"),
            dump_path=data.get("dump_path", defaults.dump_path),
            media_backup_path=data.get("media_backup_path", defaults.media_backup_path),
            checkpoint_dir=data.get("checkpoint_dir", defaults.checkpoint_dir),
            dry_run=data.get("dry_run", False),
            batch_size=data.get("batch_size"),
            delay_between_batches=data.get("delay_between_batches", defaults.delay_between_batches),
            max_retries=data.get("max_retries", defaults.max_retries),
            base_retry_delay=data.get("base_retry_delay", defaults.base_retry_delay),
            request_timeout=data.get("request_timeout", defaults.request_timeout),
            media_concurrency=data.get("media_concurrency", defaults.media_concurrency),
            inventory_concurrency=data.get("inventory_concurrency", defaults.inventory_concurrency),
            compression_command=data.get("compression_command", defaults.compression_command),
            storage_sample_size=data.get("storage_sample_size", defaults.storage_sample_size),
            storage_sample_strategy=data.get("storage_sample_strategy", defaults.storage_sample_strategy),
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "MigrationConfig":
        """Build the configuration from environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            supabase_url=env.get("SUPABASE_URL") or None,
            service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or None,
            dump_path=env.get("MYSQL_DUMP_PATH") or defaults.dump_path,
            media_backup_path=env.get("MEDIA_BACKUP_PATH") or defaults.media_backup_path,
            checkpoint_dir=env.get("MIGRATION_CHECKPOINT_DIR") or defaults.checkpoint_dir,
            dry_run=_env_flag(env.get("MIGRATION_DRY_RUN")),
        )

    def validate(self) -> List[str]:
        """Return a list of configuration problems."""
        problems = []
        if not self.dry_run:
            if not self.supabase_url:
                problems.append("SUPABASE_URL is not set")
            if not self.service_role_key:
                problems.append("SUPABASE_SERVICE_ROLE_KEY is not set")
        if self.media_concurrency < 1 or self.inventory_concurrency < 1:
            problems.append("Concurrency must be at least 1")
        if self.storage_sample_strategy not in ("sequential", "random"):
            problems.append(f"Unknown storage sample strategy: {self.storage_sample_strategy}")
        return problems

    def require_remote(self) -> None:
        """Raise ConfigurationError unless the run can reach the target store."""
        problems = self.validate()
        if problems:
            raise ConfigurationError("; ".join(problems))
