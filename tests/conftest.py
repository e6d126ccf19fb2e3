"""
Shared fixtures for the migrator test suite.

Every external system is replaced by an in-memory fake: the target store,
object storage, the checkpoint store and the compression tool. No test
touches the network.
"""
import os
import shutil
import uuid
from typing import Any, Callable, Dict, List, Optional

import pytest
from PIL import Image

from migrator.loaders.base import ObjectStorage, StoreError, TargetStore
from migrator.services.batch_processor import BatchProcessor
from migrator.services.checkpoint import MemoryCheckpointStore


class FakeStore(TargetStore):
    """Target store keeping rows in dicts.

    ``reject`` marks rows the store refuses; a batch containing one is
    rejected as a whole, like a real multi-row insert.
    """

    def __init__(self, reject: Optional[Callable[[Dict[str, Any]], bool]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.auth_users: Dict[str, str] = {}
        self.auth_metadata: Dict[str, Dict[str, Any]] = {}
        self.reject = reject or (lambda row: False)
        self.fail_auth_emails = set()
        self.connection_ok = True
        self.batch_calls = 0
        self.insert_calls = 0

    def _store(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables.setdefault(table, []).append(stored)
        return stored

    def insert(self, table, row):
        self.insert_calls += 1
        if self.reject(row):
            raise StoreError(f"Row rejected by {table}", 400)
        return self._store(table, row)

    def batch_insert(self, table, rows):
        self.batch_calls += 1
        if any(self.reject(r) for r in rows):
            raise StoreError(f"Batch rejected by {table}", 400)
        return [self._store(table, r) for r in rows]

    def count(self, table, filters=None):
        rows = self.tables.get(table, [])
        if not filters:
            return len(rows)
        return sum(1 for r in rows if all(r.get(k) == v for k, v in filters.items()))

    def exists(self, table, column, value):
        return any(r.get(column) == value for r in self.tables.get(table, []))

    def update_by_id(self, table, record_id, values):
        for row in self.tables.get(table, []):
            if row.get("id") == record_id:
                row.update(values)
                return row
        raise StoreError(f"Update {table} {record_id} matched no rows", 404)

    def create_auth_user(self, email, user_metadata=None):
        if email.lower() in self.fail_auth_emails:
            raise StoreError(f"Create auth user {email} failed", 422)
        if email.lower() in self.auth_users:
            raise StoreError("A user with this email address has already been registered", 422)
        user_id = str(uuid.uuid4())
        self.auth_users[email.lower()] = user_id
        self.auth_metadata[user_id] = dict(user_metadata or {})
        return user_id

    def list_auth_users(self):
        return dict(self.auth_users)

    def test_connection(self):
        return self.connection_ok

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])


class FakeStorage(ObjectStorage):
    """Object storage keeping objects in a dict keyed by (bucket, path)."""

    def __init__(self):
        self.objects: Dict[tuple, bytes] = {}
        self.content_types: Dict[tuple, str] = {}
        self.fail_paths = set()
        self.transient_failures = 0
        self.upload_calls = 0

    def upload(self, bucket, path, data, content_type):
        self.upload_calls += 1
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise StoreError("Service unavailable", 503)
        if path in self.fail_paths:
            raise StoreError(f"Upload {bucket}/{path} failed", 400)
        self.objects[(bucket, path)] = data
        self.content_types[(bucket, path)] = content_type
        return path

    def exists(self, bucket, path):
        return (bucket, path) in self.objects

    def size(self, bucket, path):
        data = self.objects.get((bucket, path))
        return len(data) if data is not None else None


class FakeRunner:
    """Stands in for the compression tool.

    Writes ``ratio`` of the input size to the output path, scaled by the
    requested quality when ``scale_by_quality`` is set.
    """

    def __init__(self, ratio: float = 0.5, fail: bool = False, scale_by_quality: bool = False):
        self.ratio = ratio
        self.fail = fail
        self.scale_by_quality = scale_by_quality
        self.calls: List[List[str]] = []

    def __call__(self, args: List[str]) -> None:
        self.calls.append(list(args))
        if self.fail:
            raise OSError("magick: command not found")
        input_path, output_path = args[1], args[-1]
        size = os.path.getsize(input_path)
        ratio = self.ratio
        if self.scale_by_quality:
            ratio = int(args[args.index("-quality") + 1]) / 100
        with open(output_path, "wb") as f:
            f.write(b"\0" * max(1, int(size * ratio)))


class CopyRunner(FakeRunner):
    """Compression tool that copies the input unchanged."""

    def __call__(self, args: List[str]) -> None:
        self.calls.append(list(args))
        shutil.copyfile(args[1], args[-1])


def make_image(path, image_format: str = "PNG", size=(32, 32), color=(200, 40, 40)) -> str:
    """Write a real image file with Pillow and return its path."""
    path = str(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    mode = "RGBA" if image_format == "PNG" else "RGB"
    Image.new(mode, size, color).save(path, format=image_format)
    return path


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def checkpoints():
    return MemoryCheckpointStore()


@pytest.fixture
def processor():
    """Batch processor that never actually sleeps."""
    sleeps: List[float] = []
    proc = BatchProcessor(sleep=sleeps.append)
    proc.sleeps = sleeps
    return proc


@pytest.fixture
def temp_dir(tmp_path):
    out = tmp_path / "compressed"
    out.mkdir()
    return str(out)
