"""Run configuration built from the environment and the command line."""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from .errors import MissingConfigError
from .jira_client import DEFAULT_PAGE_SIZE

DEFAULT_TABLE = "jira_issues"
DEFAULT_SCHEMA_PATH = "schema.json"


@dataclass(frozen=True)
class SyncConfig:
    jira_base_url: str
    jira_email: str
    jira_api_token: str
    project: str
    supabase_url: str
    supabase_key: str
    table: str = DEFAULT_TABLE
    schema_path: str = DEFAULT_SCHEMA_PATH
    schema_bucket: Optional[str] = None
    supabase_db_url: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    ignore_last_run: bool = False
    dry_run: bool = False
    dump_path: Optional[str] = None
    log_level: str = "INFO"


def first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Jira issues into a Supabase table")
    parser.add_argument(
        "--project",
        default=os.getenv("JIRA_PROJECT"),
        help="Jira project key (default: $JIRA_PROJECT)",
    )
    parser.add_argument(
        "--table",
        default=os.getenv("SYNC_TABLE", DEFAULT_TABLE),
        help=f"Destination table; executions go to <table>_executions (default: {DEFAULT_TABLE})",
    )
    parser.add_argument(
        "--schema-bucket",
        default=os.getenv("SCHEMA_BUCKET"),
        help="Supabase Storage bucket holding the schema (reads a local file when omitted)",
    )
    parser.add_argument(
        "--schema-path",
        default=os.getenv("SCHEMA_PATH", DEFAULT_SCHEMA_PATH),
        help="Path of the schema JSON inside the bucket or on disk",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=int(os.getenv("JIRA_PAGE_SIZE", DEFAULT_PAGE_SIZE)),
        help="Max issues to request per Jira API call",
    )
    parser.add_argument(
        "--ignore-last-run",
        action="store_true",
        help="Ignore the last execution time and process all issues again",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and extract issues without writing to Supabase",
    )
    parser.add_argument(
        "--dump-path",
        help="Optional path to save the extracted rows as JSON",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("SYNC_LOG_LEVEL", "DEBUG" if os.getenv("DEBUG") else "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SyncConfig:
    values = {
        "JIRA_BASE_URL": first_env("JIRA_BASE_URL", "JIRA_BASEURL", "JIRA_URL"),
        "JIRA_EMAIL": first_env("JIRA_EMAIL", "JIRA_USERNAME"),
        "JIRA_API_KEY": first_env("JIRA_API_KEY", "JIRA_API_TOKEN", "JIRA_TOKEN"),
        "JIRA_PROJECT": args.project,
        "SUPABASE_URL": first_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
        "SUPABASE_SERVICE_ROLE_KEY": first_env("SUPABASE_SERVICE_ROLE_KEY"),
    }
    missing: List[str] = [name for name, value in values.items() if not value]
    if missing:
        raise MissingConfigError(missing)

    return SyncConfig(
        jira_base_url=values["JIRA_BASE_URL"] or "",
        jira_email=values["JIRA_EMAIL"] or "",
        jira_api_token=values["JIRA_API_KEY"] or "",
        project=values["JIRA_PROJECT"] or "",
        supabase_url=values["SUPABASE_URL"] or "",
        supabase_key=values["SUPABASE_SERVICE_ROLE_KEY"] or "",
        table=args.table,
        schema_path=args.schema_path,
        schema_bucket=args.schema_bucket or None,
        supabase_db_url=os.getenv("SUPABASE_DB_URL") or None,
        page_size=max(1, args.page_size),
        ignore_last_run=bool(args.ignore_last_run),
        dry_run=bool(args.dry_run),
        dump_path=args.dump_path,
        log_level=args.log_level,
    )


def load_config(argv: Optional[Sequence[str]] = None) -> SyncConfig:
    load_dotenv(override=False)
    return build_config(parse_args(argv))


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
