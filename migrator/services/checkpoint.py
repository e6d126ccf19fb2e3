"""Checkpoint store for step outputs shared between phases."""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..models.migration import utcnow

logger = logging.getLogger(__name__)


class CheckpointError(Exception):
    """A checkpoint exists but cannot be read or written."""


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint has been saved under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Checkpoint not found: {key}")
        self.key = key


@dataclass
class Checkpoint:
    """A persisted step output: a metadata envelope plus a payload."""
    key: str
    payload: Any
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"metadata": self.metadata, "payload": self.payload}


def _build_metadata(payload: Any, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"created_at": utcnow().isoformat()}
    if isinstance(payload, (list, dict)):
        metadata["count"] = len(payload)
    if extra:
        metadata.update(extra)
    return metadata


def _to_jsonable(payload: Any) -> Any:
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    if isinstance(payload, (list, tuple)):
        return [_to_jsonable(item) for item in payload]
    if isinstance(payload, dict):
        return {k: _to_jsonable(v) for k, v in payload.items()}
    return payload


class CheckpointStore(ABC):
    """
    Typed key-value store for step outputs.

    Each phase step loads its inputs once at start and saves its output once
    at the end. Payload objects with a ``to_dict`` method are serialized
    through it.
    """

    @abstractmethod
    def load(self, key: str) -> Checkpoint:
        """Load a checkpoint, raising CheckpointNotFoundError if absent."""
        pass

    @abstractmethod
    def _write(self, checkpoint: Checkpoint) -> None:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def save(self, key: str, payload: Any, metadata: Optional[Dict[str, Any]] = None) -> Checkpoint:
        """
        Persist a step output.

        Args:
            key: Checkpoint name, e.g. "consolidated-users"
            payload: List, dict or object with ``to_dict``
            metadata: Extra counts merged into the envelope

        Returns:
            The saved checkpoint
        """
        data = _to_jsonable(payload)
        checkpoint = Checkpoint(key=key, payload=data, metadata=_build_metadata(data, metadata))
        self._write(checkpoint)
        logger.debug(f"Saved checkpoint {key}")
        return checkpoint

    def load_payload(self, key: str, factory: Optional[Callable[[Any], Any]] = None) -> Any:
        """Load a payload, mapping list items (or the payload itself) through ``factory``."""
        payload = self.load(key).payload
        if factory is None:
            return payload
        if isinstance(payload, list):
            return [factory(item) for item in payload]
        return factory(payload)


class FileCheckpointStore(CheckpointStore):
    """One ``<key>.json`` file per checkpoint inside a directory."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise CheckpointError(f"Invalid checkpoint key: {key!r}")
        return self.base_dir / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.base_dir.glob("*.json"))

    def load(self, key: str) -> Checkpoint:
        path = self._path(key)
        if not path.exists():
            raise CheckpointNotFoundError(key)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CheckpointError(f"Could not read checkpoint {key}: {e}") from e

        if not isinstance(data, dict) or "payload" not in data:
            raise CheckpointError(f"Checkpoint {key} has no payload")
        return Checkpoint(key=key, payload=data["payload"], metadata=data.get("metadata") or {})

    def _write(self, checkpoint: Checkpoint) -> None:
        path = self._path(checkpoint.key)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{checkpoint.key}.", suffix=".tmp", dir=str(self.base_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(checkpoint.to_dict(), f, indent=2, default=str)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise CheckpointError(f"Could not write checkpoint {checkpoint.key}: {e}") from e


class MemoryCheckpointStore(CheckpointStore):
    """In-process store for tests and dry runs."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def exists(self, key: str) -> bool:
        return key in self._data

    def keys(self) -> List[str]:
        return sorted(self._data)

    def load(self, key: str) -> Checkpoint:
        if key not in self._data:
            raise CheckpointNotFoundError(key)
        # Stored as plain JSON values; every load returns a fresh copy
        data = json.loads(json.dumps(self._data[key], default=str))
        return Checkpoint(key=key, payload=data["payload"], metadata=data["metadata"])

    def _write(self, checkpoint: Checkpoint) -> None:
        self._data[checkpoint.key] = json.loads(json.dumps(checkpoint.to_dict(), default=str))
