"""Supabase sink for flattened issues and the append-only execution ledger."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from dateutil import parser as dt_parser
from postgrest import APIError
from supabase import Client, create_client

from .errors import InsertError, RowError, StoreError
from .schema import FieldSchema, executions_ddl, executions_table, table_ddl, value_errors

try:  # Optional dependency used for automatic DDL execution.
    import psycopg
except ImportError:  # pragma: no cover - optional dependency may be absent
    psycopg = None  # type: ignore

MISSING_TABLE_CODES = {"42P01", "PGRST205"}
# Jira renders timestamps like 2019-05-02T10:15:42.123+0200
JIRA_TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{1,6}[+-]\d{4}$")


def extract_error_code(error: Any) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, dict):
        return error.get("code")
    return getattr(error, "code", None)


@dataclass(frozen=True)
class Watermark:
    """Outcome of a finished run: ``inserted`` issues were read as of ``timestamp``."""

    timestamp: Optional[datetime] = None
    inserted: int = 0

    @property
    def is_zero(self) -> bool:
        return self.timestamp is None


def normalise_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and JIRA_TIMESTAMP_PATTERN.match(value):
        return dt_parser.isoparse(value).astimezone(timezone.utc).isoformat()
    if isinstance(value, list):
        return [normalise_value(item) for item in value]
    return value


class SupabaseStore:
    def __init__(self, client: Client, table: str, db_url: Optional[str] = None) -> None:
        self.client = client
        self.table = table
        self.executions_table = executions_table(table)
        self.db_url = db_url
        self.fields: List[FieldSchema] = []
        self.log = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_credentials(cls, url: str, key: str, table: str, db_url: Optional[str] = None) -> "SupabaseStore":
        return cls(create_client(url, key), table, db_url)

    def prepare(self, fields: Sequence[FieldSchema]) -> None:
        """Create the issue table and the execution ledger unless they exist."""
        self.fields = list(fields)
        ddl = table_ddl(self.table, self.fields) + executions_ddl(self.table)
        if not self.db_url:
            self.log.info("SUPABASE_DB_URL not provided – skipping automatic table creation.")
            self.log.info("Apply the following SQL manually if the tables do not yet exist:\n%s", ddl)
            return
        if psycopg is None:
            self.log.warning(
                "psycopg not installed; cannot run automatic DDL even though SUPABASE_DB_URL is set."
            )
            return

        try:
            with psycopg.connect(self.db_url, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(ddl)
        except (psycopg.errors.DuplicateTable, psycopg.errors.DuplicateObject):
            self.log.debug("tables already exist")
        except psycopg.Error as exc:
            raise StoreError(f"creating tables: {exc}") from exc
        self.log.info("Ensured Supabase tables exist (if missing they have been created).")

    def validate_rows(self, rows: Sequence[Dict[str, Any]]) -> List[RowError]:
        errors: List[RowError] = []
        for index, row in enumerate(rows):
            key = str(row.get("key", ""))
            for field in self.fields:
                for cause in value_errors(field, row.get(field.name)):
                    errors.append((index, key, cause))
        return errors

    def build_rows(self, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # columns the table does not declare are dropped, not rejected
        columns = [field.name for field in self.fields]
        return [{name: normalise_value(row.get(name)) for name in columns} for row in rows]

    def insert(self, rows: Sequence[Dict[str, Any]]) -> None:
        """Insert all rows in one request, or none of them."""
        if not rows:
            return
        if not self.fields:
            raise StoreError("insert called before prepare")

        row_errors = self.validate_rows(rows)
        if row_errors:
            for index, key, cause in row_errors:
                self.log.error("inserting row %s (%s): %s", index, key, cause)
            raise InsertError(row_errors)

        try:
            response = self.client.table(self.table).insert(self.build_rows(rows)).execute()
        except APIError as exc:
            raise InsertError([], f"Supabase insert into {self.table} failed: {exc}") from exc
        if getattr(response, "error", None):
            raise InsertError([], f"Supabase insert into {self.table} failed: {response.error}")

    def record_execution(self, at: datetime, inserted: int) -> Watermark:
        watermark = Watermark(timestamp=at, inserted=inserted)
        row = {"timestamp": normalise_value(at), "inserted": inserted}
        try:
            response = self.client.table(self.executions_table).insert(row).execute()
        except APIError as exc:
            raise StoreError(f"Supabase execution insert failed: {exc}") from exc
        if getattr(response, "error", None):
            raise StoreError(f"Supabase execution insert failed: {response.error}")
        return watermark

    def last_execution(self) -> Watermark:
        """Return the newest ledger row, or an empty watermark for a fresh ledger."""
        try:
            response = (
                self.client.table(self.executions_table)
                .select("timestamp, inserted")
                .order("timestamp", desc=True)
                .limit(1)
                .execute()
            )
        except APIError as exc:
            if extract_error_code(exc) in MISSING_TABLE_CODES:
                self.log.info("Execution table not found yet; treating as empty ledger.")
                return Watermark()
            raise StoreError(f"Supabase execution select failed: {exc}") from exc
        error = getattr(response, "error", None)
        if error:
            if extract_error_code(error) in MISSING_TABLE_CODES:
                return Watermark()
            raise StoreError(f"Supabase execution select failed: {error}")

        rows = response.data or []
        if not rows:
            return Watermark()
        row = rows[0]
        try:
            timestamp = dt_parser.isoparse(str(row.get("timestamp")))
        except ValueError as exc:
            raise StoreError(f"Invalid execution timestamp: {row.get('timestamp')!r}") from exc
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return Watermark(timestamp=timestamp, inserted=int(row.get("inserted") or 0))
