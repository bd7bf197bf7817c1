"""Index domain: read-only project facts captured from the index cache."""

from primerloom.index.snapshot import (
    EMPTY_SNAPSHOT,
    DomainInfo,
    FailedAttempt,
    NamingConvention,
    ProjectSnapshot,
    ProtectedFile,
    SnapshotResult,
    TemporaryMarker,
    get_project_context,
    snapshot_from_cache,
)

__all__ = [
    "EMPTY_SNAPSHOT",
    "DomainInfo",
    "FailedAttempt",
    "NamingConvention",
    "ProjectSnapshot",
    "ProtectedFile",
    "SnapshotResult",
    "TemporaryMarker",
    "get_project_context",
    "snapshot_from_cache",
]
