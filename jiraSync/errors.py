"""Exceptions raised while syncing Jira issues into Supabase."""

from __future__ import annotations

from typing import List, Sequence, Tuple


class SyncError(RuntimeError):
    """Base class for every failure that aborts a sync run."""


class MissingConfigError(SyncError):
    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing configuration: {', '.join(self.missing)}")


class SchemaError(SyncError):
    """Raised when the field schema cannot be decoded or is invalid."""


class ExtractionError(SyncError):
    pass


class MissingKeyError(ExtractionError):
    def __init__(self, record: object) -> None:
        self.record = record
        super().__init__(f"invalid issue: missing key: {record!r}")


class PathNotFoundError(ExtractionError):
    def __init__(self, segment: str, prefix: Sequence[str], field_name: str = "") -> None:
        self.segment = segment
        self.prefix = ".".join(prefix)
        self.field_name = field_name
        super().__init__(f"path not found {segment} at {self.prefix}")


class JiraError(SyncError):
    """Raised for failed or unexpected Jira API responses."""


class TimezoneResolutionError(JiraError):
    pass


class PaginationStalledError(JiraError):
    def __init__(self, start_at: int, fetched: int, total: int) -> None:
        self.start_at = start_at
        self.fetched = fetched
        self.total = total
        super().__init__(
            f"pagination made no progress at startAt={start_at} ({fetched}/{total} issues fetched)"
        )


class StoreError(SyncError):
    """Raised when Supabase rejects a read or write."""


RowError = Tuple[int, str, str]


class InsertError(StoreError):
    def __init__(self, row_errors: List[RowError], message: str = "") -> None:
        self.row_errors = row_errors
        if not message:
            details = "; ".join(f"row {index} ({key}): {cause}" for index, key, cause in row_errors)
            message = f"{len(row_errors)} row(s) rejected: {details}"
        super().__init__(message)
