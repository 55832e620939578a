"""Pins the chat_sync settings to .env.test before the package is imported.

Values override the shell environment so a developer's real AUTH_TOKEN or
REDIS_URL never reaches the test run.
"""
from __future__ import annotations

import os
from pathlib import Path


def _load_test_env(path: Path) -> None:
    if not path.exists():
        return
    for raw in path.read_text().splitlines():
        entry = raw.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        key, value = (part.strip() for part in entry.split("=", 1))
        os.environ[key] = value.strip("\"'")


_load_test_env(Path(__file__).resolve().parent / ".env.test")
