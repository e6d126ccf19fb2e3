"""Database batch adapter: multi-row inserts with per-row fallback."""

import logging
from typing import Any, Dict, List, Optional, Union

from .base import TargetStore
from ..models.batch import BatchResult, DatabaseBatchOptions, OperationType
from ..services.batch_processor import BatchProcessor, get_optimal_batch_size

logger = logging.getLogger(__name__)


class DatabaseBatchAdapter:
    """
    Writes rows to the target store through the batch processor.

    Each window is sent as one multi-row insert. When that insert fails the
    window is replayed row by row, each row wrapped in retry with backoff,
    so only the defective rows end up in ``BatchResult.failed``.
    """

    def __init__(
        self,
        store: TargetStore,
        processor: Optional[BatchProcessor] = None,
        logger: Optional[logging.Logger] = None,
        dry_run: bool = False,
    ):
        """
        Initialize the adapter.

        Args:
            store: Target store client
            processor: Batch processor (a default one is created if omitted)
            logger: Logger for batch progress
            dry_run: If True, rows are echoed back without being written
        """
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.processor = processor or BatchProcessor(logger=self.logger)
        self.dry_run = dry_run

    def insert_rows(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        operation_type: Union[OperationType, str] = OperationType.DEFAULT,
        options: Optional[DatabaseBatchOptions] = None,
    ) -> BatchResult:
        """
        Insert rows into a table.

        Args:
            table: Target table
            rows: Rows in the order they should be written
            operation_type: Category used to pick the batch size
            options: Overrides; ``batch_size`` defaults to the category optimum

        Returns:
            BatchResult whose successes are the stored rows
        """
        if options is None:
            options = DatabaseBatchOptions(batch_size=get_optimal_batch_size(operation_type, len(rows)))

        if self.dry_run:
            self.logger.info(f"[dry run] Would insert {len(rows)} rows into {table}")
            return BatchResult(successful=[dict(r) for r in rows])

        def write_batch(window: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            return self.store.batch_insert(table, window)

        def write_row(row: Dict[str, Any]) -> Dict[str, Any]:
            return self.processor.retry_with_backoff(
                lambda: self.store.insert(table, row),
                max_retries=options.max_retries,
                base_delay=options.base_retry_delay,
                description=f"Insert into {table}",
            )

        self.logger.info(f"Inserting {len(rows)} rows into {table} (batch size {options.batch_size})")
        result = self.processor.process_database_batches(rows, write_batch, write_row, options)
        self.logger.info(
            f"Inserted {result.success_count}/{result.total_processed} rows into {table}"
            + (f", {result.error_count} failed" if result.error_count else "")
        )
        return result
