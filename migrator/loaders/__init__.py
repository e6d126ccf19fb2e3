"""Target store and object storage clients."""

from .base import ObjectStorage, StoreError, TargetStore
from .batch_writer import DatabaseBatchAdapter
from .supabase_loader import SupabaseStorage, SupabaseStore

__all__ = [
    "ObjectStorage",
    "StoreError",
    "TargetStore",
    "DatabaseBatchAdapter",
    "SupabaseStorage",
    "SupabaseStore",
]
