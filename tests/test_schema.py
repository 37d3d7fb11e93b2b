import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import httpx
from storage3.utils import StorageException

from jiraSync.errors import SchemaError
from jiraSync.schema import FieldSchema, executions_ddl, load_schema, table_ddl, value_errors
from jiraSync.schema_source import fetch_schema, read_schema_blob

SCHEMA = [
  {"name": "key", "type": "string", "path": "key", "required": True},
  {"name": "summary", "type": "STRING", "path": "fields.summary"},
  {"name": "labels", "type": "string", "path": "fields.labels", "repeated": True},
  {"name": "updated", "type": "timestamp", "path": "fields.updated"},
  {"name": "reporter", "type": "record", "path": "fields.reporter"},
]


class LoadSchemaTestCase(unittest.TestCase):
  def test_loads_field_definitions(self) -> None:
    fields = load_schema(json.dumps(SCHEMA).encode())

    self.assertEqual(len(fields), 5)
    self.assertEqual(fields[0], FieldSchema(name="key", type="string", path="key", required=True))
    self.assertTrue(fields[2].repeated)
    self.assertFalse(fields[1].required)

  def test_rejects_duplicate_names(self) -> None:
    blob = json.dumps([
      {"name": "summary", "type": "string", "path": "fields.summary"},
      {"name": "summary", "type": "string", "path": "fields.description"},
    ]).encode()

    with self.assertRaises(SchemaError):
      load_schema(blob)

  def test_rejects_empty_path(self) -> None:
    with self.assertRaises(SchemaError):
      load_schema(b'[{"name": "summary", "type": "string", "path": ""}]')

  def test_rejects_empty_path_segment(self) -> None:
    with self.assertRaises(SchemaError):
      load_schema(b'[{"name": "summary", "type": "string", "path": "fields..summary"}]')

  def test_rejects_unknown_type(self) -> None:
    with self.assertRaises(SchemaError):
      load_schema(b'[{"name": "summary", "type": "geography", "path": "fields.summary"}]')

  def test_rejects_invalid_json(self) -> None:
    with self.assertRaises(SchemaError):
      load_schema(b"{not json")

  def test_rejects_non_array(self) -> None:
    with self.assertRaises(SchemaError):
      load_schema(b'{"name": "summary"}')


class ColumnTypeTestCase(unittest.TestCase):
  def test_types_map_case_insensitively(self) -> None:
    self.assertEqual(FieldSchema(name="a", type="STRING", path="a").column_type, "text")
    self.assertEqual(FieldSchema(name="a", type="Integer", path="a").column_type, "bigint")
    self.assertEqual(FieldSchema(name="a", type="timestamp", path="a").column_type, "timestamptz")

  def test_repeated_scalar_becomes_array(self) -> None:
    field = FieldSchema(name="labels", type="string", path="fields.labels", repeated=True)
    self.assertEqual(field.column_type, "text[]")

  def test_repeated_record_stays_json(self) -> None:
    field = FieldSchema(name="comments", type="record", path="fields.comment.comments", repeated=True)
    self.assertEqual(field.column_type, "jsonb")

  def test_table_ddl_marks_required_columns(self) -> None:
    ddl = table_ddl("jira_issues", load_schema(json.dumps(SCHEMA).encode()))

    self.assertIn("create table if not exists public.jira_issues", ddl)
    self.assertIn('"key" text not null', ddl)
    self.assertIn('"labels" text[]', ddl)
    self.assertIn('"reporter" jsonb', ddl)

  def test_table_ddl_adds_columns_for_new_fields(self) -> None:
    fields = load_schema(json.dumps(SCHEMA + [{"name": "priority", "type": "string", "path": "fields.priority.name"}]).encode())

    ddl = table_ddl("jira_issues", fields)

    self.assertIn('alter table public.jira_issues add column if not exists "priority" text;', ddl)
    self.assertIn('alter table public.jira_issues add column if not exists "labels" text[];', ddl)
    self.assertNotIn('add column if not exists "key" text not null', ddl)

  def test_executions_ddl_is_partitioned_by_timestamp(self) -> None:
    ddl = executions_ddl("jira_issues")

    self.assertIn("public.jira_issues_executions", ddl)
    self.assertIn('"timestamp" timestamptz not null', ddl)
    self.assertIn("inserted integer not null", ddl)
    self.assertIn('partition by range ("timestamp")', ddl)


class ValueErrorsTestCase(unittest.TestCase):
  def test_required_null_is_reported(self) -> None:
    field = FieldSchema(name="key", type="string", path="key", required=True)
    self.assertEqual(value_errors(field, None), ["key: required field is null"])

  def test_repeated_requires_list(self) -> None:
    field = FieldSchema(name="labels", type="string", path="fields.labels", repeated=True)
    self.assertEqual(value_errors(field, ["a", "b"]), [])
    self.assertEqual(value_errors(field, "a"), ["labels: repeated field is not a list"])

  def test_integer_rejects_bool_and_text(self) -> None:
    field = FieldSchema(name="votes", type="integer", path="fields.votes.votes")
    self.assertEqual(value_errors(field, 3), [])
    self.assertEqual(len(value_errors(field, True)), 1)
    self.assertEqual(len(value_errors(field, "3")), 1)

  def test_unparseable_timestamp_is_reported(self) -> None:
    field = FieldSchema(name="updated", type="timestamp", path="fields.updated")
    self.assertEqual(value_errors(field, "2019-05-02T10:15:42.123+0200"), [])
    self.assertEqual(value_errors(field, "yesterday-ish"), ["updated: invalid timestamp 'yesterday-ish'"])

  def test_date_and_time_strings_are_parsed(self) -> None:
    due = FieldSchema(name="due", type="date", path="fields.duedate")
    at = FieldSchema(name="at", type="time", path="fields.at")
    self.assertEqual(value_errors(due, "2024-03-01"), [])
    self.assertEqual(len(value_errors(due, "soon")), 1)
    self.assertEqual(value_errors(at, "10:15:00"), [])
    self.assertEqual(len(value_errors(at, "teatime")), 1)

  def test_optional_null_is_fine(self) -> None:
    field = FieldSchema(name="summary", type="string", path="fields.summary")
    self.assertEqual(value_errors(field, None), [])


class SchemaSourceTestCase(unittest.TestCase):
  def test_reads_local_file(self) -> None:
    with tempfile.TemporaryDirectory() as tmp:
      path = Path(tmp) / "schema.json"
      path.write_text(json.dumps(SCHEMA))

      fields = fetch_schema(str(path))

    self.assertEqual([field.name for field in fields], ["key", "summary", "labels", "updated", "reporter"])

  def test_missing_local_file_is_schema_error(self) -> None:
    with self.assertRaises(SchemaError):
      read_schema_blob("/nonexistent/schema.json")

  def test_downloads_from_storage_bucket(self) -> None:
    client = mock.MagicMock()
    client.storage.from_.return_value.download.return_value = json.dumps(SCHEMA).encode()

    fields = fetch_schema("jira/schema.json", bucket="schemas", client=client)

    client.storage.from_.assert_called_once_with("schemas")
    client.storage.from_.return_value.download.assert_called_once_with("jira/schema.json")
    self.assertEqual(len(fields), 5)

  def test_storage_failure_is_schema_error(self) -> None:
    client = mock.MagicMock()
    client.storage.from_.return_value.download.side_effect = StorageException("object not found")

    with self.assertRaises(SchemaError):
      read_schema_blob("jira/schema.json", bucket="schemas", client=client)

  def test_storage_transport_failure_is_schema_error(self) -> None:
    client = mock.MagicMock()
    client.storage.from_.return_value.download.side_effect = httpx.ConnectError("connection refused")

    with self.assertRaises(SchemaError):
      read_schema_blob("jira/schema.json", bucket="schemas", client=client)

  def test_bucket_without_client_is_schema_error(self) -> None:
    with self.assertRaises(SchemaError):
      read_schema_blob("jira/schema.json", bucket="schemas")


if __name__ == "__main__":
  unittest.main()
