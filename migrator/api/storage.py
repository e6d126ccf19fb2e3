"""Checkpoint and object storage access for the report API."""

from typing import Optional

from ..loaders.base import ObjectStorage
from ..loaders.supabase_loader import SupabaseStorage
from ..models.migration import MigrationConfig
from ..services.checkpoint import CheckpointStore, FileCheckpointStore


def get_checkpoint_store() -> CheckpointStore:
    """Checkpoint store under the configured checkpoint directory."""
    return FileCheckpointStore(MigrationConfig.from_env().checkpoint_dir)


def get_object_storage() -> Optional[ObjectStorage]:
    """Storage client for readiness sampling, or None without credentials."""
    config = MigrationConfig.from_env()
    if not (config.supabase_url and config.service_role_key):
        return None
    return SupabaseStorage(config.supabase_url, config.service_role_key, config.request_timeout)
