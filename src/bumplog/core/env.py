"""
Environment + project-root helpers.

Deployments keep the Supabase URL/key in a `.env` file next to the checkout, while
the logger is started from the CLI, uvicorn or tests in different working
directories. The local cache directory is relative by default, so it must resolve
against one root no matter where the process was launched.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

_ROOT_MARKERS = (".env", ".git", "pyproject.toml")


def _explicit_env_file() -> Path | None:
    value = os.getenv("BUMPLOG_ENV_FILE")
    return Path(value).expanduser().resolve() if value else None


@lru_cache
def get_project_root() -> Path:
    """Return the directory relative paths resolve against (cached).

    Order: `BUMPLOG_PROJECT_ROOT`, the parent of `BUMPLOG_ENV_FILE`, the nearest
    ancestor of the CWD holding one of `_ROOT_MARKERS`, then the CWD itself.
    """
    override = os.getenv("BUMPLOG_PROJECT_ROOT")
    if override:
        return Path(override).expanduser().resolve()

    env_file = _explicit_env_file()
    if env_file is not None:
        return env_file.parent

    cwd = Path.cwd().resolve()
    for candidate in (cwd, *cwd.parents):
        if any((candidate / marker).exists() for marker in _ROOT_MARKERS):
            return candidate
    return cwd


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the `.env` file once; returns its path, or None when there is none.

    Variables already set in the process environment win.
    """
    env_path = _explicit_env_file() or get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def resolve_project_path(path: str | Path) -> Path:
    """Resolve a possibly-relative path against the project root."""
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return (get_project_root() / p).resolve()
