"""Flatten raw Jira issues into rows shaped by a ``FieldSchema`` list."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import MissingKeyError, PathNotFoundError
from .schema import FieldSchema

FOUND = "found"
NOT_FOUND = "not_found"


@dataclass(frozen=True)
class PathLookup:
    status: str
    value: Any = None
    # index of the segment that could not be resolved
    failed_at: Optional[int] = None


def resolve_path(record: Mapping[str, Any], segments: Sequence[str]) -> PathLookup:
    level: Any = record
    for index, segment in enumerate(segments):
        if not isinstance(level, Mapping) or segment not in level:
            return PathLookup(NOT_FOUND, failed_at=index)
        level = level[segment]
    return PathLookup(FOUND, value=level)


class FieldExtractor:
    """Extracts the fields declared in a schema from raw issues."""

    def __init__(self, fields: Sequence[FieldSchema]) -> None:
        self.fields = list(fields)
        self.log = logging.getLogger(self.__class__.__name__)

    def extract(self, issue: Mapping[str, Any]) -> Dict[str, Any]:
        issue_key = issue.get("key") if isinstance(issue, Mapping) else None
        if issue_key is None:
            raise MissingKeyError(issue)
        self.log.debug("handling issue %s", issue_key)

        row: Dict[str, Any] = {}
        for field in self.fields:
            row[field.name] = self.extract_field(field, issue)
        return row

    def extract_many(self, issues: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return [self.extract(issue) for issue in issues]

    def extract_field(self, field: FieldSchema, issue: Mapping[str, Any]) -> Any:
        segments = field.segments
        lookup = resolve_path(issue, segments)
        if lookup.status == NOT_FOUND:
            if field.required:
                failed_at = lookup.failed_at or 0
                raise PathNotFoundError(segments[failed_at], segments[:failed_at], field.name)
            value = None
        else:
            value = lookup.value

        # repeated columns reject null, so an absent list is stored as empty
        if value is None and field.repeated:
            return []
        return value


def extract_many(fields: Sequence[FieldSchema], issues: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return FieldExtractor(fields).extract_many(issues)
