"""Primer pipeline: catalog -> filter -> conditions -> dynamic -> score -> select."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from primerloom.index.snapshot import get_project_context
from primerloom.primer.catalog import load_project_catalog
from primerloom.primer.conditions import evaluate_condition
from primerloom.primer.dynamic import materialize_dynamic
from primerloom.primer.filters import (
    FilterOptions,
    UnknownFilterError,
    filter_sections,
    validate_filters,
)
from primerloom.primer.renderer import render
from primerloom.primer.scoring import normalize_weights, resolve_preset, score_sections
from primerloom.primer.selector import select_sections

if TYPE_CHECKING:
    from pathlib import Path

    from primerloom.index.snapshot import SnapshotResult
    from primerloom.primer.models import Catalog, SelectionResult, WeightPreset

logger = logging.getLogger(__name__)

NO_DYNAMIC_WARNING = "dynamic content suppressed (--no-dynamic)"

PRIMER_DIR = ".primerloom"
CACHE_FILE = "cache.json"
OVERRIDE_FILE = "primer.yml"


class PrimerError(Exception):
    """Raised when an invocation is rejected; no partial result is produced.

    ``kind`` names the offending input class and ``value`` the offending
    value (preset name, filter token, budget, ...).
    """

    def __init__(self, message: str, *, kind: str, value: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.value = value

    def to_dict(self) -> dict[str, object]:
        value = self.value
        if value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        return {"error": {"kind": self.kind, "message": self.message, "value": value}}


@dataclass(frozen=True)
class PrimerRequest:
    """Invocation parameters for one primer selection."""

    budget: int
    preset: str | None = None
    weights: dict[str, float] | None = None
    filters: FilterOptions = field(default_factory=FilterOptions)
    no_dynamic: bool = False


def default_cache_path(project_root: Path) -> Path:
    return project_root / PRIMER_DIR / CACHE_FILE


def default_override_path(project_root: Path) -> Path:
    return project_root / PRIMER_DIR / OVERRIDE_FILE


def resolve_request_preset(catalog: Catalog, request: PrimerRequest) -> WeightPreset:
    """Resolve and validate the preset, raising :class:`PrimerError` (kind ``preset``)."""
    try:
        preset = resolve_preset(
            request.preset, custom_weights=request.weights, catalog_presets=catalog.presets
        )
        normalize_weights(preset.weights)
    except ValueError as exc:
        value = request.preset if request.weights is None else request.weights
        raise PrimerError(str(exc), kind="preset", value=value) from exc
    return preset


def select_primer(
    catalog: Catalog,
    snapshot: SnapshotResult,
    request: PrimerRequest,
) -> SelectionResult:
    """Run the selection pipeline over an already-loaded catalog and snapshot.

    Pure: identical inputs always produce an identical result.

    Parameters
    ----------
    catalog:
        Merged, validated catalog.
    snapshot:
        Result of reading the index cache; an unreadable cache disables
        dynamic sections.
    request:
        Budget, preset or custom weights, filters and ``no_dynamic``.

    Raises
    ------
    PrimerError
        For a non-positive budget, unknown preset or invalid weights, or a
        filter that references an unknown identifier.
    """
    if request.budget <= 0:
        msg = f"budget must be a positive integer, got {request.budget}"
        raise PrimerError(msg, kind="budget", value=request.budget)

    preset = resolve_request_preset(catalog, request)

    try:
        validate_filters(catalog, request.filters)
    except UnknownFilterError as exc:
        raise PrimerError(str(exc), kind="filter", value=exc.token) from exc

    warnings: list[str] = list(snapshot.warnings)
    if request.no_dynamic:
        warnings.append(NO_DYNAMIC_WARNING)
    dynamic_enabled = snapshot.readable and not request.no_dynamic

    options = dataclasses.replace(request.filters, dynamic_enabled=dynamic_enabled)
    filtered = filter_sections(catalog, options)
    facts = snapshot.snapshot
    applicable = tuple(
        s for s in filtered if s.required or evaluate_condition(s.condition, facts)
    )
    materialized, dynamic_warnings = materialize_dynamic(applicable, facts)
    warnings.extend(dynamic_warnings)

    scored = score_sections(materialized, preset, facts, apply_modifiers=not request.no_dynamic)
    result = select_sections(scored, request.budget, preset=preset.name)
    logger.debug(
        "Selected %d of %d candidates (%d/%d tokens)",
        len(result.sections),
        len(scored),
        result.total_tokens_used,
        request.budget,
    )
    return dataclasses.replace(result, warnings=(*warnings, *result.warnings))


def load_catalog_for(project_root: Path, catalog_path: Path | None = None) -> Catalog:
    """Load the packaged catalog merged with the project override.

    Raises :class:`PrimerError` (kind ``catalog``) on any load failure.
    """
    explicit = catalog_path is not None
    path = catalog_path if catalog_path is not None else default_override_path(project_root)
    try:
        return load_project_catalog(path, explicit=explicit)
    except (OSError, ValueError) as exc:
        msg = f"Invalid catalog: {exc}"
        raise PrimerError(msg, kind="catalog", value=str(path)) from exc


def run_primer(
    project_root: Path,
    request: PrimerRequest,
    *,
    catalog_path: Path | None = None,
    cache_path: Path | None = None,
) -> SelectionResult:
    """Load catalog and snapshot for *project_root*, then select.

    The cache is read exactly once, before any condition is evaluated.
    """
    catalog = load_catalog_for(project_root, catalog_path)
    if cache_path is None:
        cache_path = default_cache_path(project_root)
    snapshot = get_project_context(cache_path)
    return select_primer(catalog, snapshot, request)


def render_primer(
    result: SelectionResult, fmt: str, *, explain: bool = False, preview: bool = False
) -> str:
    """Render, raising :class:`PrimerError` (kind ``format``) for unknown formats."""
    try:
        return render(result, fmt, explain=explain, preview=preview)
    except ValueError as exc:
        raise PrimerError(str(exc), kind="format", value=fmt) from exc
