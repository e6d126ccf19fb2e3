"""Source data extractors."""

from .dump_extractor import DumpExtractor

__all__ = ["DumpExtractor"]
