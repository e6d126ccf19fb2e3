"""Batch processing engine with retry, backoff and bounded fan-out."""

import logging
import random
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from ..models.batch import (
    BatchFailure,
    BatchOptions,
    BatchResult,
    DatabaseBatchOptions,
    OperationType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

RETRIABLE_STATUS_CODES = frozenset({429, 502, 503, 504})
RETRIABLE_MESSAGES = (
    "econnreset",
    "enotfound",
    "etimedout",
    "rate limit",
    "too many requests",
)

OPTIMAL_BATCH_SIZES: Dict[OperationType, int] = {
    OperationType.AUTH_USERS: 10,  # one rate-limited call per account
    OperationType.PROFILES: 100,
    OperationType.STYLIST_DETAILS: 100,
    OperationType.USER_PREFERENCES: 100,
    OperationType.SERVICES: 50,
    OperationType.ADDRESSES: 75,
    OperationType.BOOKINGS: 25,
    OperationType.PAYMENTS: 25,
    OperationType.CHATS: 100,
    OperationType.REVIEWS: 100,
    OperationType.MEDIA: 50,
    OperationType.DEFAULT: 50,
}

MAX_INDIVIDUAL_BATCH_SIZE = 10
LARGE_DATASET_THRESHOLD = 10000
LARGE_DATASET_BATCH_SIZE = 25
SMALL_DATASET_THRESHOLD = 10


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    response = getattr(error, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def is_retriable_error(error: BaseException) -> bool:
    """
    Classify an error as transient.

    Transient errors are rate limits and gateway failures (429, 502, 503,
    504), connection resets, timeouts and DNS failures, or any error whose
    message mentions one of those conditions.
    """
    if isinstance(error, (
        ConnectionError,
        TimeoutError,
        socket.gaierror,
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
    )):
        return True

    if _status_code(error) in RETRIABLE_STATUS_CODES:
        return True

    message = str(error).lower()
    return any(phrase in message for phrase in RETRIABLE_MESSAGES)


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    rng: Optional[random.Random] = None,
    jitter_fraction: float = 0.1,
) -> float:
    """Exponential delay for a zero-based attempt, plus up to 10% jitter."""
    delay = base_delay * (2 ** attempt)
    jitter = (rng or random).random() * jitter_fraction * delay
    return delay + jitter


def get_optimal_batch_size(operation_type: Union[OperationType, str], item_count: int) -> int:
    """
    Pick a batch size for an operation category and dataset size.

    Args:
        operation_type: Write category (unknown values use the default size)
        item_count: Number of items that will be processed

    Returns:
        Batch size, never below 1
    """
    try:
        operation = OperationType(operation_type)
    except ValueError:
        operation = OperationType.DEFAULT

    base = OPTIMAL_BATCH_SIZES[operation]

    if item_count < SMALL_DATASET_THRESHOLD:
        return max(1, min(base, item_count))
    if item_count > LARGE_DATASET_THRESHOLD:
        return min(base, LARGE_DATASET_BATCH_SIZE)
    return base


@dataclass
class Settled(Generic[T, R]):
    """All-settled outcome of one fanned-out call."""
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def settle_in_waves(
    items: Sequence[T],
    func: Callable[[T], R],
    concurrency: int = 3,
    on_wave: Optional[Callable[[List[Settled]], None]] = None,
) -> List[Settled]:
    """
    Run ``func`` over items in waves of at most ``concurrency`` calls.

    Each wave is joined before the next starts and handed to ``on_wave``.
    Results come back in input order and exceptions are captured on the
    ``Settled`` entry rather than raised.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    settled: List[Settled] = []
    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for start in range(0, len(items), concurrency):
            wave = items[start:start + concurrency]
            futures = [pool.submit(func, item) for item in wave]
            joined: List[Settled] = []
            for item, future in zip(wave, futures):
                try:
                    joined.append(Settled(item=item, value=future.result()))
                except Exception as e:
                    joined.append(Settled(item=item, error=e))
            settled.extend(joined)
            if on_wave is not None:
                on_wave(joined)
    return settled


def log_progress(log: logging.Logger, label: str, current: int, total: int, width: int = 30) -> None:
    """Log a text progress bar."""
    percentage = (current / total * 100) if total else 100.0
    filled = int(width * percentage / 100)
    bar = "█" * filled + "░" * (width - filled)
    log.info(f"{label} [{bar}] {percentage:.1f}% ({current}/{total})")


def log_stats(log: logging.Logger, title: str, stats: Dict[str, Any]) -> None:
    """Log a summary table, one key per line."""
    log.info(f"=== {title} ===")
    width = max((len(str(k)) for k in stats), default=0)
    for key, value in stats.items():
        log.info(f"  {str(key).ljust(width)} : {value}")


class BatchProcessor:
    """
    Windowed batch engine.

    Windows are processed strictly in input order with a fixed pause between
    them. Per-item failures are recorded on the returned ``BatchResult`` and
    never abort sibling items or later windows.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the processor.

        Args:
            logger: Logger for progress and retry messages
            sleep: Sleep function, replaceable in tests
            rng: Random source for backoff jitter
        """
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._rng = rng or random.Random()

    @staticmethod
    def _windows(items: Sequence[T], size: int) -> Iterator[Tuple[int, int, Sequence[T]]]:
        if size < 1:
            raise ValueError("batch_size must be at least 1")
        for start in range(0, len(items), size):
            yield start // size + 1, start, items[start:start + size]

    def _before_window(self, options: BatchOptions, end: int, total: int, number: int) -> None:
        if options.progress_callback:
            options.progress_callback(end, total, number)
        self.logger.debug(f"Processing batch {number} ({end}/{total})")

    def _after_window(self, options: BatchOptions, end: int, total: int) -> None:
        if end < total and options.delay_between_batches > 0:
            self._sleep(options.delay_between_batches)

    def process_batches(
        self,
        items: Sequence[T],
        func: Callable[[List[T]], List[R]],
        options: Optional[BatchOptions] = None,
    ) -> List[R]:
        """
        Apply ``func`` to each window and concatenate the results.

        Exceptions propagate immediately; use ``process_batches_with_results``
        when failures must be isolated.
        """
        options = options or BatchOptions()
        results: List[R] = []
        total = len(items)

        for number, start, window in self._windows(items, options.batch_size):
            end = start + len(window)
            self._before_window(options, end, total, number)
            results.extend(func(list(window)))
            self._after_window(options, end, total)

        return results

    def process_batches_with_results(
        self,
        items: Sequence[T],
        func: Callable[[T], R],
        options: Optional[BatchOptions] = None,
    ) -> BatchResult:
        """
        Apply ``func`` to every item, isolating per-item failures.

        Args:
            items: Items to process, in order
            func: Unit of work for a single item
            options: Window size, delay and progress callback

        Returns:
            BatchResult with successes and failures in input order
        """
        options = options or BatchOptions()
        result: BatchResult = BatchResult()
        total = len(items)

        for number, start, window in self._windows(items, options.batch_size):
            end = start + len(window)
            self._before_window(options, end, total, number)

            for item in window:
                try:
                    result.successful.append(func(item))
                except Exception as e:
                    self.logger.debug(f"Item failed in batch {number}: {e}")
                    result.failed.append(BatchFailure(item=item, error=str(e)))

            self._after_window(options, end, total)

        return result

    def retry_with_backoff(
        self,
        func: Callable[[], R],
        max_retries: int = 3,
        base_delay: float = 1.0,
        description: str = "operation",
    ) -> R:
        """
        Call ``func`` and retry transient failures with exponential backoff.

        At most ``max_retries + 1`` calls are made. Non-retriable errors and
        the error of the final attempt propagate unchanged.
        """
        def wait(retry_state: RetryCallState) -> float:
            return compute_backoff_delay(retry_state.attempt_number - 1, base_delay, self._rng)

        def log_retry(retry_state: RetryCallState) -> None:
            self.logger.warning(
                f"{description} failed (attempt {retry_state.attempt_number}/{max_retries + 1}), "
                f"retrying in {retry_state.next_action.sleep:.2f}s: {retry_state.outcome.exception()}"
            )

        retrying = Retrying(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait,
            retry=retry_if_exception(is_retriable_error),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        return retrying(func)

    def process_database_batches(
        self,
        items: Sequence[T],
        batch_func: Callable[[List[T]], List[R]],
        item_func: Callable[[T], R],
        options: Optional[DatabaseBatchOptions] = None,
    ) -> BatchResult:
        """
        Write items window by window, falling back to single writes.

        A window whose batch call succeeds is recorded as wholly successful
        without any per-item calls. A failed window is replayed item by item
        when ``fallback_to_individual`` is set, otherwise every item in it is
        failed with the batch error.
        """
        options = options or DatabaseBatchOptions()

        if not options.can_batch:
            individual = replace(options, batch_size=min(options.batch_size, MAX_INDIVIDUAL_BATCH_SIZE))
            return self.process_batches_with_results(items, item_func, individual)

        result: BatchResult = BatchResult()
        total = len(items)

        for number, start, window in self._windows(items, options.batch_size):
            end = start + len(window)
            self._before_window(options, end, total, number)
            window = list(window)

            try:
                result.successful.extend(batch_func(window))
            except Exception as batch_error:
                if options.fallback_to_individual:
                    self.logger.warning(
                        f"Batch {number} failed ({batch_error}), retrying {len(window)} items individually"
                    )
                    for item in window:
                        try:
                            result.successful.append(item_func(item))
                        except Exception as e:
                            result.failed.append(BatchFailure(item=item, error=str(e)))
                else:
                    self.logger.error(f"Batch {number} failed: {batch_error}")
                    for item in window:
                        result.failed.append(BatchFailure(item=item, error=str(batch_error)))

            self._after_window(options, end, total)

        return result
