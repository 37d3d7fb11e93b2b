import os
import subprocess
import sys
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

PYTHON_BIN = os.getenv("PYTHON_BIN", sys.executable or "python3")
SYNC_MODULE = "jiraSync"


class MissingCredentialsError(RuntimeError):
    pass


def _required_env() -> Dict[str, str]:
    supabase_url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    jira_base = os.getenv("JIRA_BASE_URL") or os.getenv("JIRA_BASEURL") or os.getenv("JIRA_URL")
    jira_user = os.getenv("JIRA_USERNAME") or os.getenv("JIRA_EMAIL")
    jira_token = os.getenv("JIRA_API_TOKEN") or os.getenv("JIRA_API_KEY") or os.getenv("JIRA_TOKEN")
    jira_project = os.getenv("JIRA_PROJECT")

    missing = []
    if not supabase_url:
        missing.append("SUPABASE_URL")
    if not supabase_key:
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    if not jira_base:
        missing.append("JIRA_BASE_URL")
    if not jira_user:
        missing.append("JIRA_USERNAME")
    if not jira_token:
        missing.append("JIRA_API_TOKEN/JIRA_API_KEY")
    if not jira_project:
        missing.append("JIRA_PROJECT")

    if missing:
        raise MissingCredentialsError(f"Missing credentials: {', '.join(missing)}")

    return {
        "SUPABASE_URL": supabase_url,
        "SUPABASE_SERVICE_ROLE_KEY": supabase_key,
        "JIRA_BASE_URL": jira_base,
        "JIRA_EMAIL": jira_user,
        "JIRA_API_KEY": jira_token,
        "JIRA_PROJECT": jira_project,
    }


def run(ignore_last_run: bool = False, extra_args: Optional[List[str]] = None) -> Tuple[str, str]:
    env = {
        **os.environ,
        **_required_env(),
        "PYTHONUNBUFFERED": "1"
    }
    args = [PYTHON_BIN, "-m", SYNC_MODULE]
    if ignore_last_run:
        args.append("--ignore-last-run")
    if extra_args:
        args.extend(extra_args)
    try:
        completed = subprocess.run(
            args,
            check=True,
            capture_output=True,
            text=True,
            env=env
        )
    except subprocess.CalledProcessError as exc:
        raise RuntimeError(
            f"jira sync exited with {exc.returncode}. stdout:\n{exc.stdout or ''}\n\nstderr:\n{exc.stderr or ''}"
        ) from exc
    return completed.stdout or "", completed.stderr or ""


def describe_success(stdout: str) -> str:
    timestamp = datetime.now(timezone.utc).isoformat()
    summary = stdout.strip().splitlines()
    top_line = summary[0] if summary else "Sync finished."
    return f"[{timestamp}] {top_line}"
