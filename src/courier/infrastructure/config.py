"""Configuration constants, .env parsing, and delivery limits."""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def read_env_file(keys: list[str], env_file: Path | None = None) -> dict[str, str]:
    """Return the requested keys from a ``.env`` file, by default in the working directory.

    Values are never copied into os.environ, so the Resend API key stays out
    of the environment of anything courier spawns. Lines may carry a leading
    ``export``; blank values are dropped.
    """
    path = env_file or Path.cwd() / ".env"
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return {}

    wanted = set(keys)
    found: dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = _unquote(value.strip())
        if key in wanted and value:
            found[key] = value
    return found


# Read config values from .env (os.environ takes precedence).
_env_config = read_env_file(["RESEND_API_KEY", "RESEND_API_URL", "COURIER_STORE_DIR"])

RESEND_API_KEY: str = os.environ.get("RESEND_API_KEY") or _env_config.get("RESEND_API_KEY", "")
RESEND_API_URL: str = os.environ.get("RESEND_API_URL") or _env_config.get("RESEND_API_URL", "https://api.resend.com/emails")
RESEND_TIMEOUT: float = float(os.environ.get("RESEND_TIMEOUT", "10"))

# Absolute paths
PROJECT_ROOT: Path = Path.cwd()
STORE_DIR: Path = Path(
    os.environ.get("COURIER_STORE_DIR") or _env_config.get("COURIER_STORE_DIR", str(PROJECT_ROOT / "store"))
).resolve()
DATABASE_FILE: str = "courier.db"

# A run still marked "running" after this long is presumed dead.
STALE_RUN_TIMEOUT: timedelta = timedelta(minutes=int(os.environ.get("STALE_RUN_TIMEOUT_MINUTES", "5")))
# Scheduled one-time tasks must be at least this far in the future to activate.
MIN_SCHEDULE_LEAD: timedelta = timedelta(minutes=1)
MAX_RECIPIENTS_PER_RUN: int = max(1, int(os.environ.get("MAX_RECIPIENTS_PER_RUN", "50")))
PREVIEW_LIMIT: int = 20
