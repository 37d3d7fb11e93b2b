from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import httpx
from storage3.utils import StorageException
from supabase import Client

from .errors import SchemaError
from .schema import FieldSchema, load_schema

log = logging.getLogger("jira_sync.schema")


def read_schema_blob(path: str, bucket: Optional[str] = None, client: Optional[Client] = None) -> bytes:
    """Download the schema from a Supabase Storage bucket, or read it from disk."""
    if bucket:
        if client is None:
            raise SchemaError("a Supabase client is required to read the schema from storage")
        log.debug("downloading schema %s from bucket %s", path, bucket)
        try:
            return client.storage.from_(bucket).download(path)
        except (StorageException, httpx.HTTPError) as exc:
            raise SchemaError(f"downloading schema {bucket}/{path}: {exc}") from exc

    log.debug("reading schema from %s", path)
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise SchemaError(f"reading schema {path}: {exc}") from exc


def fetch_schema(path: str, bucket: Optional[str] = None, client: Optional[Client] = None) -> List[FieldSchema]:
    fields = load_schema(read_schema_blob(path, bucket, client))
    log.debug("parsed schema with %s fields", len(fields))
    return fields
