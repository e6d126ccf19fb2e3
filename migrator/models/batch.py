"""Batch processing models."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar
from enum import Enum

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int, int], None]


class OperationType(str, Enum):
    """Write categories with their own throughput profile."""
    AUTH_USERS = "auth_users"
    PROFILES = "profiles"
    STYLIST_DETAILS = "stylist_details"
    USER_PREFERENCES = "user_preferences"
    SERVICES = "services"
    ADDRESSES = "addresses"
    BOOKINGS = "bookings"
    PAYMENTS = "payments"
    CHATS = "chats"
    REVIEWS = "reviews"
    MEDIA = "media"
    DEFAULT = "default"


@dataclass
class BatchOptions:
    """Options for windowed batch processing.

    Delays are in seconds.
    """
    batch_size: int = 10
    delay_between_batches: float = 0.1
    max_retries: int = 3
    base_retry_delay: float = 1.0
    progress_callback: Optional[ProgressCallback] = None


@dataclass
class DatabaseBatchOptions(BatchOptions):
    """Options for database writes with batch-to-individual fallback."""
    batch_size: int = 50
    delay_between_batches: float = 0.2
    can_batch: bool = True
    fallback_to_individual: bool = True


@dataclass
class BatchFailure(Generic[T]):
    """A single item that could not be processed."""
    item: T
    error: str

    def to_dict(self) -> Dict[str, Any]:
        item = self.item.to_dict() if hasattr(self.item, "to_dict") else self.item
        return {"item": item, "error": self.error}


@dataclass
class BatchResult(Generic[T, R]):
    """Accumulated outcome of one batch operation."""
    successful: List[R] = field(default_factory=list)
    failed: List[BatchFailure] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def error_count(self) -> int:
        return len(self.failed)

    @property
    def total_processed(self) -> int:
        return self.success_count + self.error_count

    @property
    def success_rate(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return self.success_count / self.total_processed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "failed": [f.to_dict() for f in self.failed],
        }
