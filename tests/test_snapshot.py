"""Tests for primerloom.index.snapshot — cache reader and snapshot facts."""

from __future__ import annotations

import json
from dataclasses import FrozenInstanceError
from typing import TYPE_CHECKING, Any

import pytest

from primerloom.index.snapshot import (
    CACHE_UNREADABLE_WARNING,
    EMPTY_SNAPSHOT,
    ProjectSnapshot,
    get_project_context,
    snapshot_from_cache,
)

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path


class TestGetProjectContext:
    def test_missing_cache_yields_empty_snapshot(self, tmp_path: Path) -> None:
        result = get_project_context(tmp_path / "nope.json")
        assert result.snapshot == EMPTY_SNAPSHOT
        assert result.readable is False
        assert result.warnings == (CACHE_UNREADABLE_WARNING,)

    def test_invalid_json_yields_empty_snapshot(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        result = get_project_context(path)
        assert result.snapshot.is_empty
        assert result.readable is False

    def test_non_mapping_yields_empty_snapshot(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("[1, 2, 3]")
        result = get_project_context(path)
        assert result.readable is False
        assert CACHE_UNREADABLE_WARNING in result.warnings

    def test_cache_is_a_directory(self, tmp_path: Path) -> None:
        result = get_project_context(tmp_path)
        assert result.readable is False

    def test_readable_cache(
        self, tmp_path: Path, cache_data: dict[str, Any], now: datetime
    ) -> None:
        path = tmp_path / "cache.json"
        path.write_text(json.dumps(cache_data))
        result = get_project_context(path, now=now)
        assert result.readable is True
        assert result.warnings == ()
        assert result.snapshot.language == "python"

    def test_empty_object_is_readable(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("{}")
        result = get_project_context(path)
        assert result.readable is True
        assert result.snapshot == EMPTY_SNAPSHOT


class TestSnapshotFromCache:
    def test_lock_counts_and_protected_files(
        self, cache_data: dict[str, Any], now: datetime
    ) -> None:
        snap = snapshot_from_cache(cache_data, now=now)
        assert snap.lock_counts == {"frozen": 1, "restricted": 1, "tests-required": 1}
        assert snap.frozen_count == 1
        assert snap.restricted_count == 1
        assert snap.protected_count == 2
        assert [(f.path, f.level, f.reason) for f in snap.protected_files] == [
            ("src/auth/session.py", "frozen", "security-critical"),
            ("src/billing/ledger.py", "restricted", None),
        ]

    def test_domains_sorted_with_file_counts(
        self, cache_data: dict[str, Any], now: datetime
    ) -> None:
        snap = snapshot_from_cache(cache_data, now=now)
        assert [(d.name, d.file_count) for d in snap.domains] == [("auth", 1), ("billing", 2)]
        assert snap.domains[1].description == "Invoices and payments"

    def test_markers_age_and_expiry(self, cache_data: dict[str, Any], now: datetime) -> None:
        snap = snapshot_from_cache(cache_data, now=now)
        assert [m.file for m in snap.markers] == ["src/app.py", "src/billing/b.py"]
        fresh, stale = snap.markers
        assert fresh.age_days == 1
        assert fresh.expired is False
        assert stale.age_days == 14
        assert stale.expired is True
        assert stale.expires == "2026-01-10"
        assert snap.expired_marker_count == 1

    def test_only_active_debug_sessions(self, cache_data: dict[str, Any], now: datetime) -> None:
        snap = snapshot_from_cache(cache_data, now=now)
        assert [(a.id, a.attempt_count) for a in snap.failed_attempts] == [("dbg-1", 2)]

    def test_conventions(self, cache_data: dict[str, Any], now: datetime) -> None:
        snap = snapshot_from_cache(cache_data, now=now)
        (conv,) = snap.conventions
        assert conv.directory == "src/api"
        assert conv.pattern == "*_handler.py"
        assert conv.confidence == pytest.approx(0.9)
        assert conv.examples == ("user_handler.py", "order_handler.py")

    def test_capabilities(self, cache_data: dict[str, Any], now: datetime) -> None:
        snap = snapshot_from_cache(cache_data, now=now)
        assert snap.capabilities == frozenset({"shell"})

    def test_language_falls_back_to_most_common_file_language(self) -> None:
        data = {
            "files": {
                "a.rs": {"language": "rust"},
                "b.rs": {"language": "rust"},
                "c.py": {"language": "python"},
            }
        }
        assert snapshot_from_cache(data).language == "rust"

    def test_language_tie_breaks_alphabetically(self) -> None:
        data = {"files": {"a.ts": {"language": "typescript"}, "b.go": {"language": "go"}}}
        assert snapshot_from_cache(data).language == "go"

    def test_malformed_entries_are_skipped(self, now: datetime) -> None:
        data = {
            "constraints": {
                "by_lock_level": {"frozen": "not-a-list", "restricted": ["x.py"]},
                "hacks": [{"reason": "no file"}, "junk", {"file": "ok.py", "expires": "bogus"}],
                "debug_sessions": [{"problem": "no id"}],
            },
            "conventions": {"file_naming": [{"directory": "src"}, {"pattern": "*.py", "confidence": "high"}]},
            "domains": ["not", "a", "mapping"],
        }
        snap = snapshot_from_cache(data, now=now)
        assert snap.lock_counts == {"restricted": 1}
        assert [m.file for m in snap.markers] == ["ok.py"]
        assert snap.markers[0].expires is None
        assert snap.markers[0].expired is False
        assert snap.failed_attempts == ()
        assert [c.pattern for c in snap.conventions] == ["*.py"]
        assert snap.conventions[0].confidence == 0.0
        assert snap.domains == ()


class TestProjectSnapshot:
    def test_frozen(self) -> None:
        snap = ProjectSnapshot(language="python")
        with pytest.raises(FrozenInstanceError):
            snap.language = "rust"  # type: ignore[misc]

    def test_empty_snapshot_counts(self) -> None:
        assert EMPTY_SNAPSHOT.protected_count == 0
        assert EMPTY_SNAPSHOT.expired_marker_count == 0
        assert EMPTY_SNAPSHOT.is_empty
