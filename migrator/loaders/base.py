"""Base interfaces for the target database and object storage."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

SIZE_TOLERANCE = 0.01


class StoreError(Exception):
    """A target store or storage call failed.

    ``status_code`` carries the HTTP status when there is one, so the retry
    classifier can tell rate limits and gateway errors from bad rows.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class TargetStore(ABC):
    """
    Client for the target relational store.

    Implementations raise StoreError on failure; they never return partial
    success silently.
    """

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a single row.

        Args:
            table: Target table name
            row: Column values

        Returns:
            The inserted row as stored
        """
        pass

    @abstractmethod
    def batch_insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Insert rows in one atomic call.

        Returns:
            Inserted rows, one per input row and in input order
        """
        pass

    @abstractmethod
    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        pass

    @abstractmethod
    def exists(self, table: str, column: str, value: Any) -> bool:
        pass

    @abstractmethod
    def update_by_id(self, table: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def create_auth_user(self, email: str, user_metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Create an identity-provider account with a confirmed email.

        Returns:
            The new account id
        """
        pass

    @abstractmethod
    def list_auth_users(self) -> Dict[str, str]:
        """Map every registered account email (lowercased) to its id."""
        pass

    def test_connection(self) -> bool:
        """Validate the connection to the target store."""
        return True


class ObjectStorage(ABC):
    """Client for bucketed object storage."""

    @abstractmethod
    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """
        Upload an object, overwriting any existing object at the path.

        Returns:
            The stored object path
        """
        pass

    @abstractmethod
    def exists(self, bucket: str, path: str) -> bool:
        pass

    def size(self, bucket: str, path: str) -> Optional[int]:
        """Stored object size in bytes, when the backend reports it."""
        return None

    def verify(self, bucket: str, path: str, expected_size: Optional[int] = None) -> Dict[str, Any]:
        """
        Check that an object exists, and that its size is within 1% of
        ``expected_size`` when both sizes are known.

        Returns:
            Dict with ``exists``, ``size`` and ``error`` (None when the object is fine)
        """
        try:
            size = self.size(bucket, path)
            exists = size is not None or self.exists(bucket, path)
        except Exception as e:
            return {"exists": False, "size": None, "error": str(e)}

        if not exists:
            return {"exists": False, "size": None, "error": "Object not found"}

        if expected_size and size and abs(size - expected_size) > expected_size * SIZE_TOLERANCE:
            return {
                "exists": True,
                "size": size,
                "error": f"Size mismatch: expected {expected_size}, got {size}",
            }
        return {"exists": True, "size": size, "error": None}
