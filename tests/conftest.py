"""Shared test fixtures for Primerloom."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from pathlib import Path

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


@pytest.fixture()
def now() -> datetime:
    """Fixed clock for marker age and expiry."""
    return NOW


@pytest.fixture()
def cache_data() -> dict[str, Any]:
    """A realistic index cache for a small Python project."""
    return {
        "project": {"name": "shop", "language": "python"},
        "files": {
            "src/app.py": {"language": "python"},
            "web/ui.ts": {"language": "typescript"},
        },
        "capabilities": ["shell"],
        "domains": {
            "billing": {
                "description": "Invoices and payments",
                "files": ["src/billing/a.py", "src/billing/b.py"],
            },
            "auth": {"description": "", "files": ["src/auth/session.py"]},
        },
        "constraints": {
            "by_lock_level": {
                "frozen": ["src/auth/session.py"],
                "restricted": ["src/billing/ledger.py"],
                "tests-required": ["src/billing/a.py"],
            },
            "by_file": {"src/auth/session.py": {"directive": "security-critical"}},
            "hacks": [
                {
                    "file": "src/billing/b.py",
                    "reason": "retry workaround",
                    "created_at": "2026-01-01T00:00:00Z",
                    "expires": "2026-01-10T00:00:00Z",
                },
                {
                    "file": "src/app.py",
                    "reason": "feature flag",
                    "created_at": "2026-01-14T00:00:00Z",
                    "expires": "2026-03-01T00:00:00Z",
                },
            ],
            "debug_sessions": [
                {
                    "id": "dbg-1",
                    "problem": "flaky checkout test",
                    "status": "active",
                    "attempts": [{"result": "failed"}, {"result": "failed"}],
                },
                {"id": "dbg-0", "problem": "old issue", "status": "resolved", "attempts": []},
            ],
        },
        "conventions": {
            "file_naming": [
                {
                    "directory": "src/api",
                    "pattern": "*_handler.py",
                    "confidence": 0.9,
                    "examples": ["user_handler.py", "order_handler.py"],
                }
            ]
        },
    }


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create a minimal project structure with an empty ``.primerloom/`` directory."""
    (tmp_path / ".primerloom").mkdir()
    return tmp_path


@pytest.fixture()
def indexed_project(tmp_project: Path, cache_data: dict[str, Any]) -> Path:
    """A project whose ``.primerloom/cache.json`` holds :func:`cache_data`."""
    (tmp_project / ".primerloom" / "cache.json").write_text(json.dumps(cache_data))
    return tmp_project
