"""
Environment and project-root helpers.

Routing API keys (`GEOAPIFY_API_KEY`, `OPENROUTESERVICE_API_KEY`) normally live in a
repo-local `.env`, and the bundled driver listing is addressed as `data/drivers.json`.
Both only work if we know where the project root is, regardless of whether we were
started by uvicorn, the CLI or pytest, and from which working directory.

Root resolution order:
1. `RIDEMAP_PROJECT_ROOT`
2. the parent directory of `RIDEMAP_ENV_FILE`
3. the nearest ancestor of the CWD holding `.env`, `.git`, or both `src/` and `data/`
4. the same search starting from this module (installed CLI run elsewhere)
5. the CWD
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


def _is_root(path: Path) -> bool:
    if (path / ".env").is_file() or (path / ".git").exists():
        return True
    return (path / "src").is_dir() and (path / "data").is_dir()


def _search_up(start: Path) -> Path | None:
    start = start.resolve()
    return next((p for p in (start, *start.parents) if _is_root(p)), None)


def _env_file_override() -> Path | None:
    value = os.getenv("RIDEMAP_ENV_FILE")
    return Path(value).expanduser().resolve() if value else None


@lru_cache
def get_project_root() -> Path:
    """Return the project root directory (cached for the process lifetime)."""
    explicit_root = os.getenv("RIDEMAP_PROJECT_ROOT")
    if explicit_root:
        return Path(explicit_root).expanduser().resolve()

    env_file = _env_file_override()
    if env_file is not None:
        return env_file.parent

    return _search_up(Path.cwd()) or _search_up(Path(__file__).parent) or Path.cwd().resolve()


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the project's `.env` at most once and return its path.

    Variables already present in the process environment win over the file.
    An explicit `RIDEMAP_ENV_FILE` that does not exist loads nothing.
    """
    env_path = _env_file_override() or get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def resolve_project_path(path: str | Path) -> Path:
    """Resolve `path` against the project root unless it is already absolute."""
    candidate = Path(path).expanduser()
    return candidate if candidate.is_absolute() else (get_project_root() / candidate).resolve()
