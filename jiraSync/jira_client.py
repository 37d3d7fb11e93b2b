"""Jira REST client used to pull every issue updated since the last sync."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, List, Optional, Sequence

import requests
from dateutil import tz

from .errors import JiraError, PaginationStalledError, TimezoneResolutionError

DEFAULT_PAGE_SIZE = 500
REQUEST_TIMEOUT = 30
MAX_API_RETRIES = 4
RETRY_BACKOFF_SECONDS = 3
# overlap with the previous run; issues in the overlap are fetched again
WATERMARK_BUFFER = timedelta(minutes=2)
JQL_TIME_FORMAT = "%Y-%m-%d %H:%M"


@dataclass
class SearchCursor:
    start_at: int = 0
    page_size: int = DEFAULT_PAGE_SIZE
    total: int = -1


def build_jql(project: str, updated_since: Optional[datetime] = None) -> str:
    clauses = [f"project = {project}"]
    if updated_since is not None:
        clauses.append(f'updated >= "{updated_since.strftime(JQL_TIME_FORMAT)}"')
    return " AND ".join(clauses) + " ORDER BY updated ASC"


def is_zero(moment: datetime) -> bool:
    return moment.replace(tzinfo=None) <= datetime.min + WATERMARK_BUFFER


class JiraClient:
    """Thin wrapper around the Jira REST API with retry/backoff."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        fields: Optional[Sequence[str]] = None,
        session: Optional[requests.Session] = None,
        retry_backoff: float = RETRY_BACKOFF_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.auth = (email, api_token)
        self.session.headers.update({"Accept": "application/json"})
        self.page_size = max(1, page_size)
        self.fields = list(fields) if fields else None
        self.retry_backoff = retry_backoff
        self.last_jql: Optional[str] = None
        self.log = logging.getLogger(self.__class__.__name__)

    def fetch_since(self, project: str, watermark: Optional[datetime]) -> List[Dict[str, Any]]:
        """Return every issue of ``project`` updated since ``watermark``.

        An unset watermark means a full sync without any time filter.
        Otherwise the watermark is moved into the Jira user's timezone, since
        JQL dates are interpreted there, and widened by ``WATERMARK_BUFFER``.
        """
        updated_since: Optional[datetime] = None
        if watermark is not None and not is_zero(watermark):
            updated_since = self.in_user_timezone(watermark) - WATERMARK_BUFFER
        jql = build_jql(project, updated_since)
        self.last_jql = jql
        self.log.info("Searching Jira with JQL: %s", jql)
        return self.search(jql)

    def search(self, jql: str) -> List[Dict[str, Any]]:
        """Collect all pages of a JQL search.

        The next ``startAt`` is derived from the response, not the request, so
        a server that shrinks the page size is followed rather than skipped.
        """
        issues: List[Dict[str, Any]] = []
        cursor = SearchCursor(page_size=self.page_size)

        while cursor.total == -1 or len(issues) < cursor.total:
            self.log.debug(
                "reading page current=%s total=%s startAt=%s maxResults=%s",
                len(issues),
                cursor.total,
                cursor.start_at,
                cursor.page_size,
            )
            page = self.search_page(jql, cursor.start_at, cursor.page_size)
            batch = page.get("issues") or []
            issues.extend(batch)
            cursor.total = int(page.get("total") or 0)
            if len(issues) >= cursor.total:
                break

            next_start = int(page.get("startAt") or 0) + int(page.get("maxResults") or 0)
            if not batch or next_start <= cursor.start_at:
                raise PaginationStalledError(cursor.start_at, len(issues), cursor.total)
            cursor.start_at = next_start
            cursor.page_size = int(page.get("maxResults") or cursor.page_size)

        return issues

    def search_page(self, jql: str, start_at: int, max_results: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"jql": jql, "maxResults": max_results}
        if start_at:
            params["startAt"] = start_at
        if self.fields:
            params["fields"] = ",".join(self.fields)
        payload = self._request("GET", f"{self.base_url}/rest/api/2/search", params=params)
        if not isinstance(payload, dict):
            raise JiraError("Unexpected search response")
        return payload

    def user_timezone(self) -> tzinfo:
        try:
            myself = self._request("GET", f"{self.base_url}/rest/api/2/myself")
        except JiraError as exc:
            raise TimezoneResolutionError(f"fetching Jira user: {exc}") from exc
        name = myself.get("timeZone") if isinstance(myself, dict) else None
        if not name:
            raise TimezoneResolutionError("Jira user has no timeZone set")
        zone = tz.gettz(name)
        if zone is None:
            raise TimezoneResolutionError(f"unknown Jira user timezone: {name}")
        return zone

    def in_user_timezone(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.user_timezone())

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        for attempt in range(1, MAX_API_RETRIES + 1):
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as exc:
                self.log.warning("Jira request failed (%s/%s): %s", attempt, MAX_API_RETRIES, exc)
                time.sleep(self.retry_backoff * attempt)
                continue

            if response.status_code >= 500:
                self.log.warning(
                    "Jira server error %s (%s/%s): %s",
                    response.status_code,
                    attempt,
                    MAX_API_RETRIES,
                    response.text,
                )
                time.sleep(self.retry_backoff * attempt)
                continue

            if response.status_code >= 400:
                raise JiraError(f"Jira API returned {response.status_code}: {response.text}")

            try:
                return response.json()
            except ValueError as exc:
                raise JiraError("Failed to parse Jira response as JSON") from exc

        raise JiraError(f"Failed Jira request after {MAX_API_RETRIES} attempts: {url}")
