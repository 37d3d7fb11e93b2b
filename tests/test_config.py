import os
import unittest
from unittest import mock

from jiraSync.config import build_config, parse_args
from jiraSync.errors import MissingConfigError

ENV = {
  "JIRA_BASE_URL": "https://example.atlassian.net",
  "JIRA_USERNAME": "bot@example.com",
  "JIRA_API_TOKEN": "token",
  "JIRA_PROJECT": "CC",
  "NEXT_PUBLIC_SUPABASE_URL": "https://project.supabase.co",
  "SUPABASE_SERVICE_ROLE_KEY": "service-key",
}


class BuildConfigTestCase(unittest.TestCase):
  def test_reads_environment_aliases(self) -> None:
    with mock.patch.dict(os.environ, ENV, clear=True):
      config = build_config(parse_args([]))

    self.assertEqual(config.jira_email, "bot@example.com")
    self.assertEqual(config.jira_api_token, "token")
    self.assertEqual(config.project, "CC")
    self.assertEqual(config.supabase_url, "https://project.supabase.co")
    self.assertEqual(config.table, "jira_issues")
    self.assertIsNone(config.schema_bucket)
    self.assertFalse(config.ignore_last_run)

  def test_cli_flags_override_defaults(self) -> None:
    with mock.patch.dict(os.environ, ENV, clear=True):
      config = build_config(parse_args([
        "--project", "OPS",
        "--table", "ops_issues",
        "--schema-bucket", "schemas",
        "--page-size", "0",
        "--ignore-last-run",
        "--dry-run",
      ]))

    self.assertEqual(config.project, "OPS")
    self.assertEqual(config.table, "ops_issues")
    self.assertEqual(config.schema_bucket, "schemas")
    self.assertEqual(config.page_size, 1)
    self.assertTrue(config.ignore_last_run)
    self.assertTrue(config.dry_run)

  def test_missing_values_are_listed(self) -> None:
    with mock.patch.dict(os.environ, {"JIRA_BASE_URL": "https://example.atlassian.net"}, clear=True):
      with self.assertRaises(MissingConfigError) as ctx:
        build_config(parse_args([]))

    self.assertEqual(
      ctx.exception.missing,
      ["JIRA_EMAIL", "JIRA_API_KEY", "JIRA_PROJECT", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"],
    )


if __name__ == "__main__":
  unittest.main()
