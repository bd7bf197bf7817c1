"""Project Context Snapshot: read-only project facts captured from the index cache.

The cache is written by the indexer (out of scope here) as JSON::

    {
      "project": {"name": "shop", "language": "python"},
      "files": {"src/app.py": {"language": "python"}},
      "capabilities": ["shell"],
      "domains": {"billing": {"description": "...", "files": ["src/billing/a.py"]}},
      "constraints": {
        "by_lock_level": {"frozen": ["src/auth/session.py"], "restricted": []},
        "by_file": {"src/auth/session.py": {"directive": "security-critical"}},
        "hacks": [{"file": "...", "reason": "...", "created_at": "...", "expires": "..."}],
        "debug_sessions": [{"id": "...", "problem": "...", "status": "active",
                            "attempts": [{"result": "failed"}]}]
      },
      "conventions": {"file_naming": [{"directory": "src/api", "pattern": "*_handler.py",
                                       "confidence": 0.9, "examples": ["user_handler.py"]}]}
    }

Reading never raises: an unreadable cache degrades to :data:`EMPTY_SNAPSHOT`.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CACHE_UNREADABLE_WARNING = "cache unreadable, dynamic context disabled"

# Lock levels that make a file "protected" (agents must not edit freely).
PROTECTED_LEVELS: tuple[str, ...] = ("frozen", "restricted")


@dataclass(frozen=True)
class ProtectedFile:
    path: str
    level: str
    reason: str | None = None


@dataclass(frozen=True)
class DomainInfo:
    name: str
    description: str = ""
    file_count: int = 0


@dataclass(frozen=True)
class TemporaryMarker:
    """An open temporary-code marker ("hack") with its age."""

    file: str
    reason: str
    expires: str | None = None
    age_days: int | None = None
    expired: bool = False


@dataclass(frozen=True)
class FailedAttempt:
    """An active debugging session with failed attempts so far."""

    id: str
    problem: str
    attempt_count: int = 0


@dataclass(frozen=True)
class NamingConvention:
    directory: str
    pattern: str
    confidence: float = 0.0
    examples: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProjectSnapshot:
    """Immutable facts about the current project."""

    language: str | None = None
    capabilities: frozenset[str] = frozenset()
    protected_files: tuple[ProtectedFile, ...] = ()
    lock_counts: dict[str, int] = field(default_factory=dict)
    domains: tuple[DomainInfo, ...] = ()
    markers: tuple[TemporaryMarker, ...] = ()
    failed_attempts: tuple[FailedAttempt, ...] = ()
    conventions: tuple[NamingConvention, ...] = ()

    @property
    def frozen_count(self) -> int:
        return self.lock_counts.get("frozen", 0)

    @property
    def restricted_count(self) -> int:
        return self.lock_counts.get("restricted", 0)

    @property
    def protected_count(self) -> int:
        return self.frozen_count + self.restricted_count

    @property
    def expired_marker_count(self) -> int:
        return sum(1 for m in self.markers if m.expired)

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_SNAPSHOT


EMPTY_SNAPSHOT = ProjectSnapshot()


@dataclass(frozen=True)
class SnapshotResult:
    """Outcome of reading the cache: the snapshot plus non-fatal diagnostics."""

    snapshot: ProjectSnapshot
    readable: bool = True
    warnings: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Cache parsing helpers
# ---------------------------------------------------------------------------


def _parse_timestamp(raw: object) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring malformed timestamp %r", raw)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _primary_language(data: dict[str, Any]) -> str | None:
    project = data.get("project")
    if isinstance(project, dict) and isinstance(project.get("language"), str):
        return str(project["language"])

    files = data.get("files")
    if not isinstance(files, dict):
        return None
    counts: Counter[str] = Counter()
    for entry in files.values():
        if isinstance(entry, dict) and isinstance(entry.get("language"), str):
            counts[entry["language"]] += 1
    if not counts:
        return None
    # Most files wins; ties resolve alphabetically.
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


def _protected_files(
    constraints: dict[str, Any],
) -> tuple[tuple[ProtectedFile, ...], dict[str, int]]:
    by_level = constraints.get("by_lock_level")
    by_file = constraints.get("by_file")
    if not isinstance(by_level, dict):
        return (), {}
    if not isinstance(by_file, dict):
        by_file = {}

    lock_counts: dict[str, int] = {}
    files: list[ProtectedFile] = []
    for level in sorted(by_level):
        paths = by_level[level]
        if not isinstance(paths, list):
            logger.debug("Skipping lock level %r: not a list", level)
            continue
        str_paths = sorted(str(p) for p in paths)
        lock_counts[str(level)] = len(str_paths)
        if level not in PROTECTED_LEVELS:
            continue
        for path in str_paths:
            info = by_file.get(path)
            reason = None
            if isinstance(info, dict):
                raw_reason = info.get("directive") or info.get("reason")
                reason = str(raw_reason) if raw_reason else None
            files.append(ProtectedFile(path=path, level=str(level), reason=reason))

    # frozen before restricted, then by path
    files.sort(key=lambda f: (PROTECTED_LEVELS.index(f.level), f.path))
    return tuple(files), lock_counts


def _markers(constraints: dict[str, Any], now: datetime) -> tuple[TemporaryMarker, ...]:
    raw = constraints.get("hacks")
    if not isinstance(raw, list):
        return ()
    markers: list[TemporaryMarker] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("file"):
            logger.debug("Skipping malformed hack entry: %r", entry)
            continue
        created = _parse_timestamp(entry.get("created_at"))
        expires = _parse_timestamp(entry.get("expires"))
        age_days = (now - created).days if created is not None else None
        markers.append(
            TemporaryMarker(
                file=str(entry["file"]),
                reason=str(entry.get("reason", "")),
                expires=expires.date().isoformat() if expires is not None else None,
                age_days=age_days,
                expired=expires is not None and expires < now,
            )
        )
    markers.sort(key=lambda m: (m.file, m.reason))
    return tuple(markers)


def _failed_attempts(constraints: dict[str, Any]) -> tuple[FailedAttempt, ...]:
    raw = constraints.get("debug_sessions")
    if not isinstance(raw, list):
        return ()
    attempts: list[FailedAttempt] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.debug("Skipping malformed debug session: %r", entry)
            continue
        if str(entry.get("status", "active")) != "active":
            continue
        tries = entry.get("attempts")
        attempts.append(
            FailedAttempt(
                id=str(entry["id"]),
                problem=str(entry.get("problem", "")),
                attempt_count=len(tries) if isinstance(tries, list) else 0,
            )
        )
    attempts.sort(key=lambda a: a.id)
    return tuple(attempts)


def _domains(data: dict[str, Any]) -> tuple[DomainInfo, ...]:
    raw = data.get("domains")
    if not isinstance(raw, dict):
        return ()
    domains: list[DomainInfo] = []
    for name in sorted(raw):
        entry = raw[name]
        if not isinstance(entry, dict):
            entry = {}
        files = entry.get("files")
        domains.append(
            DomainInfo(
                name=str(name),
                description=str(entry.get("description") or ""),
                file_count=len(files) if isinstance(files, list) else 0,
            )
        )
    return tuple(domains)


def _conventions(data: dict[str, Any]) -> tuple[NamingConvention, ...]:
    block = data.get("conventions")
    if not isinstance(block, dict):
        return ()
    raw = block.get("file_naming")
    if not isinstance(raw, list):
        return ()
    conventions: list[NamingConvention] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("pattern"):
            logger.debug("Skipping malformed naming convention: %r", entry)
            continue
        examples = entry.get("examples")
        try:
            confidence = float(entry.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        conventions.append(
            NamingConvention(
                directory=str(entry.get("directory", "")),
                pattern=str(entry["pattern"]),
                confidence=confidence,
                examples=tuple(str(e) for e in examples) if isinstance(examples, list) else (),
            )
        )
    conventions.sort(key=lambda c: (c.directory, c.pattern))
    return tuple(conventions)


def snapshot_from_cache(data: dict[str, Any], *, now: datetime | None = None) -> ProjectSnapshot:
    """Build a snapshot from an already-parsed cache mapping."""
    if now is None:
        now = datetime.now(tz=timezone.utc)

    constraints = data.get("constraints")
    if not isinstance(constraints, dict):
        constraints = {}

    protected, lock_counts = _protected_files(constraints)
    capabilities = data.get("capabilities")

    return ProjectSnapshot(
        language=_primary_language(data),
        capabilities=(
            frozenset(str(c) for c in capabilities) if isinstance(capabilities, list) else frozenset()
        ),
        protected_files=protected,
        lock_counts=lock_counts,
        domains=_domains(data),
        markers=_markers(constraints, now),
        failed_attempts=_failed_attempts(constraints),
        conventions=_conventions(data),
    )


def get_project_context(cache_path: Path, *, now: datetime | None = None) -> SnapshotResult:
    """Read the index cache once and capture a :class:`ProjectSnapshot`.

    A missing, unreadable or malformed cache yields :data:`EMPTY_SNAPSHOT`
    with ``readable=False`` and a warning; this function never raises.
    """
    try:
        text = cache_path.read_text(encoding="utf-8")
        data = json.loads(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Cannot read cache %s: %s", cache_path, exc)
        return SnapshotResult(EMPTY_SNAPSHOT, readable=False, warnings=(CACHE_UNREADABLE_WARNING,))

    if not isinstance(data, dict):
        logger.warning("Cache %s is not a JSON object", cache_path)
        return SnapshotResult(EMPTY_SNAPSHOT, readable=False, warnings=(CACHE_UNREADABLE_WARNING,))

    return SnapshotResult(snapshot_from_cache(data, now=now))
