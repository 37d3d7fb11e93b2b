"""Incremental sync of Jira issues into Supabase tables."""

from .errors import (
    InsertError,
    MissingKeyError,
    PaginationStalledError,
    PathNotFoundError,
    SchemaError,
    SyncError,
    TimezoneResolutionError,
)
from .extractor import FieldExtractor, extract_many
from .schema import FieldSchema, load_schema
from .store import Watermark
from .sync import SyncResult, SyncRun, SyncState, run_sync

__all__ = [
    "FieldExtractor",
    "FieldSchema",
    "InsertError",
    "MissingKeyError",
    "PaginationStalledError",
    "PathNotFoundError",
    "SchemaError",
    "SyncError",
    "SyncResult",
    "SyncRun",
    "SyncState",
    "TimezoneResolutionError",
    "Watermark",
    "extract_many",
    "load_schema",
    "run_sync",
]
