"""
Legacy Migration Engine

A phased, checkpointed toolkit for moving a legacy marketplace's users and
media into a Supabase backend.

Supports:
- Buyer/stylist deduplication into a single identity stream
- Windowed batch writes with per-row fallback and retry with backoff
- Media inventory, compression, upload and media-row creation
- A readiness score for the media migration
"""

__version__ = "0.1.0"
