#!/usr/bin/env python3
"""Incremental Jira → Supabase sync.

One run reads the newest watermark from the execution ledger, fetches every
issue updated since then, flattens the issues with the field schema, inserts
the rows and finally appends a new watermark. Runs are expected to be
serialised by the scheduler; nothing here locks the ledger.

Run ``python -m jiraSync --help`` for CLI options.
"""

from __future__ import annotations

import enum
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import SyncConfig, load_config, setup_logging
from .errors import SyncError
from .extractor import FieldExtractor
from .jira_client import JiraClient
from .schema import FieldSchema
from .schema_source import fetch_schema
from .store import SupabaseStore, Watermark

logger = logging.getLogger("jira_sync")


class SyncState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    FETCHING_WATERMARK = "fetching_watermark"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    INSERTING = "inserting"
    RECORDING_EXECUTION = "recording_execution"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncResult:
    state: SyncState = SyncState.IDLE
    fetched: int = 0
    inserted: int = 0
    watermark: Watermark = field(default_factory=Watermark)
    recorded: Optional[Watermark] = None
    failed_stage: Optional[SyncState] = None
    jql: Optional[str] = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncRun:
    """Sequences one sync run against the given collaborators."""

    def __init__(
        self,
        *,
        project: str,
        load_fields: Callable[[], Sequence[FieldSchema]],
        source: JiraClient,
        store: SupabaseStore,
        ignore_last_run: bool = False,
        dry_run: bool = False,
        dump_path: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.project = project
        self.load_fields = load_fields
        self.source = source
        self.store = store
        self.ignore_last_run = ignore_last_run
        self.dry_run = dry_run
        self.dump_path = dump_path
        self.clock = clock
        self.result = SyncResult()

    @property
    def state(self) -> SyncState:
        return self.result.state

    def _enter(self, state: SyncState) -> None:
        logger.debug("sync state %s -> %s", self.result.state.value, state.value)
        self.result.state = state

    def run(self) -> SyncResult:
        try:
            self._run()
        except Exception as exc:
            self.result.failed_stage = self.result.state
            logger.error("Sync failed while %s: %s", self.result.state.value.replace("_", " "), exc)
            self.result.state = SyncState.FAILED
            raise
        return self.result

    def _run(self) -> None:
        self._enter(SyncState.PREPARING)
        fields = list(self.load_fields())
        self.store.prepare(fields)

        self._enter(SyncState.FETCHING_WATERMARK)
        watermark = Watermark()
        if self.ignore_last_run:
            logger.info("Ignoring last execution; running a full sync.")
        else:
            try:
                watermark = self.store.last_execution()
            except Exception as exc:
                logger.warning("Unable to read last execution, running a full sync: %s", exc)
        self.result.watermark = watermark
        if watermark.is_zero:
            logger.info("No previous execution recorded; fetching all issues.")
        else:
            logger.info("Last execution at %s inserted %s issues.", watermark.timestamp, watermark.inserted)

        # the new watermark is the time the fetch started
        started_at = self.clock()

        self._enter(SyncState.FETCHING)
        logger.info("Fetching issues for project %s", self.project)
        issues = self.source.fetch_since(self.project, watermark.timestamp)
        self.result.fetched = len(issues)
        self.result.jql = self.source.last_jql

        self._enter(SyncState.EXTRACTING)
        rows = FieldExtractor(fields).extract_many(issues)
        if self.dump_path:
            self.dump(Path(self.dump_path), rows)

        if self.dry_run:
            logger.info("[dry-run] Would insert %s rows and record the execution", len(rows))
            self._enter(SyncState.DONE)
            return

        self._enter(SyncState.INSERTING)
        logger.info("Inserting %s rows", len(rows))
        self.store.insert(rows)
        self.result.inserted = len(rows)

        self._enter(SyncState.RECORDING_EXECUTION)
        # the ledger counts fetched source issues, not inserted rows
        self.result.recorded = self.store.record_execution(started_at, len(issues))

        self._enter(SyncState.DONE)
        logger.info("Inserted %s issues", len(rows))

    def dump(self, dump_path: Path, rows: List[Dict[str, Any]]) -> None:
        dump_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = {
            "project": self.project,
            "jql": self.result.jql,
            "watermark": self.result.watermark.timestamp.isoformat() if self.result.watermark.timestamp else None,
            "fetched_at": utc_now().isoformat(),
            "rows": rows,
        }
        dump_path.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2, default=str))
        logger.info("Wrote extracted rows to %s", dump_path)


def build_run(config: SyncConfig) -> SyncRun:
    store = SupabaseStore.from_credentials(
        config.supabase_url,
        config.supabase_key,
        config.table,
        config.supabase_db_url,
    )
    jira = JiraClient(
        config.jira_base_url,
        config.jira_email,
        config.jira_api_token,
        page_size=config.page_size,
    )
    return SyncRun(
        project=config.project,
        load_fields=lambda: fetch_schema(config.schema_path, config.schema_bucket, store.client),
        source=jira,
        store=store,
        ignore_last_run=config.ignore_last_run,
        dry_run=config.dry_run,
        dump_path=config.dump_path,
    )


def run_sync(config: SyncConfig) -> SyncResult:
    return build_run(config).run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        config = load_config(argv)
    except SyncError as exc:
        setup_logging("ERROR")
        logger.error("%s", exc)
        return 1
    setup_logging(config.log_level)
    try:
        result = run_sync(config)
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Sync failed: %s", exc)
        return 1
    print(f"Synced {result.fetched} Jira issues into {config.table}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
