"""Declarative field schema shared by the extractor and the Supabase sink.

The schema is a JSON array of objects::

    [{"name": "key", "type": "string", "path": "key", "required": true},
     {"name": "labels", "type": "string", "path": "fields.labels", "repeated": true}]

``path`` is a dotted route into the raw Jira issue; ``name`` becomes the
column name in the destination table.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Sequence

from dateutil.parser import isoparser

from .errors import SchemaError

COLUMN_TYPES: Dict[str, str] = {
    "string": "text",
    "integer": "bigint",
    "int": "bigint",
    "int64": "bigint",
    "float": "double precision",
    "float64": "double precision",
    "numeric": "numeric",
    "boolean": "boolean",
    "bool": "boolean",
    "timestamp": "timestamptz",
    "datetime": "timestamp",
    "date": "date",
    "time": "time",
    "record": "jsonb",
    "struct": "jsonb",
    "json": "jsonb",
}

JSON_COLUMN = "jsonb"
TEMPORAL_TYPES = {"timestamp", "datetime", "date", "time"}

ISO_PARSER = isoparser()


@dataclass(frozen=True)
class FieldSchema:
    name: str
    type: str
    path: str
    required: bool = False
    repeated: bool = False

    @property
    def segments(self) -> List[str]:
        return self.path.split(".")

    @property
    def column_type(self) -> str:
        base = COLUMN_TYPES[self.type.strip().lower()]
        if self.repeated and base != JSON_COLUMN:
            return f"{base}[]"
        return base

    def column_definition(self) -> str:
        definition = f'"{self.name}" {self.column_type}'
        if self.required:
            definition += " not null"
        return definition


def parse_field(raw: Any, index: int) -> FieldSchema:
    if not isinstance(raw, dict):
        raise SchemaError(f"schema entry {index} is not an object: {raw!r}")
    name = str(raw.get("name") or "").strip()
    path = str(raw.get("path") or "").strip()
    field_type = str(raw.get("type") or "").strip()
    if not name:
        raise SchemaError(f"schema entry {index} has no name")
    if not path:
        raise SchemaError(f"schema field {name!r} has an empty path")
    if any(not segment for segment in path.split(".")):
        raise SchemaError(f"schema field {name!r} has an empty path segment: {path!r}")
    if field_type.lower() not in COLUMN_TYPES:
        raise SchemaError(f"schema field {name!r} has unsupported type {field_type!r}")
    return FieldSchema(
        name=name,
        type=field_type,
        path=path,
        required=bool(raw.get("required", False)),
        repeated=bool(raw.get("repeated", False)),
    )


def validate_schema(fields: Sequence[FieldSchema]) -> None:
    if not fields:
        raise SchemaError("schema declares no fields")
    seen = set()
    for field in fields:
        if field.name in seen:
            raise SchemaError(f"duplicate field name in schema: {field.name}")
        seen.add(field.name)


def load_schema(blob: bytes) -> List[FieldSchema]:
    """Decode a schema blob into validated ``FieldSchema`` entries."""
    try:
        raw = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"parsing schema: {exc}") from exc
    if not isinstance(raw, list):
        raise SchemaError("schema must be a JSON array of field definitions")
    fields = [parse_field(item, index) for index, item in enumerate(raw)]
    validate_schema(fields)
    return fields


def table_ddl(table: str, fields: Sequence[FieldSchema]) -> str:
    columns = ",\n    ".join(field.column_definition() for field in fields)
    ddl = f"create table if not exists public.{table} (\n    {columns}\n);\n"
    # fields added to the schema after the table exists become nullable columns
    for field in fields:
        ddl += f'alter table public.{table} add column if not exists "{field.name}" {field.column_type};\n'
    return ddl


def executions_ddl(table: str) -> str:
    ledger = executions_table(table)
    return f"""
create table if not exists public.{ledger} (
    "timestamp" timestamptz not null,
    inserted integer not null
) partition by range ("timestamp");
create table if not exists public.{ledger}_default partition of public.{ledger} default;
"""


def executions_table(table: str) -> str:
    return f"{table}_executions"


def _scalar_error(field: FieldSchema, value: Any) -> Optional[str]:
    kind = field.type.strip().lower()
    if kind in {"integer", "int", "int64"}:
        if isinstance(value, bool) or not isinstance(value, int):
            return f"{field.name}: expected integer, got {type(value).__name__}"
    elif kind in {"float", "float64", "numeric"}:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"{field.name}: expected number, got {type(value).__name__}"
    elif kind in {"boolean", "bool"}:
        if not isinstance(value, bool):
            return f"{field.name}: expected boolean, got {type(value).__name__}"
    elif kind == "string":
        if not isinstance(value, str):
            return f"{field.name}: expected string, got {type(value).__name__}"
    elif kind in TEMPORAL_TYPES:
        if isinstance(value, str):
            try:
                if kind == "time":
                    ISO_PARSER.parse_isotime(value)
                else:
                    ISO_PARSER.isoparse(value)
            except (ValueError, OverflowError):
                return f"{field.name}: invalid {kind} {value!r}"
        elif not isinstance(value, (date, datetime, time)):
            return f"{field.name}: expected {kind}, got {type(value).__name__}"
    return None


def value_errors(field: FieldSchema, value: Any) -> List[str]:
    """Return every reason ``value`` cannot be stored in ``field``'s column."""
    if value is None:
        if field.repeated:
            return [f"{field.name}: repeated field is null"]
        if field.required:
            return [f"{field.name}: required field is null"]
        return []
    if field.repeated:
        if not isinstance(value, list):
            return [f"{field.name}: repeated field is not a list"]
        if field.column_type == JSON_COLUMN:
            return []
        errors = []
        for item in value:
            if item is None:
                errors.append(f"{field.name}: repeated field contains null")
                continue
            error = _scalar_error(field, item)
            if error:
                errors.append(error)
        return errors
    error = _scalar_error(field, value)
    return [error] if error else []
