"""Primer domain: catalog, filters, conditions, dynamic content, scoring, selection, rendering.

Note: ``primerloom.primer.engine`` is NOT re-exported here because it pulls in
the index reader and every stage; import it directly::

    from primerloom.primer.engine import PrimerError, PrimerRequest, run_primer
"""

from primerloom.primer.catalog import (
    load_catalog,
    load_default_catalog,
    load_project_catalog,
    merge_overrides,
    parse_catalog,
)
from primerloom.primer.conditions import (
    AllOf,
    AnyOf,
    Compare,
    Condition,
    Contains,
    Not,
    evaluate_condition,
    parse_condition,
)
from primerloom.primer.dynamic import estimate_tokens, materialize_dynamic
from primerloom.primer.filters import (
    FilterOptions,
    UnknownFilterError,
    filter_sections,
    matches_capabilities,
    validate_filters,
)
from primerloom.primer.models import (
    Catalog,
    Phase,
    ScoredSection,
    Section,
    SectionBody,
    SelectedSection,
    SelectionResult,
    WeightPreset,
)
from primerloom.primer.renderer import render
from primerloom.primer.scoring import (
    BUILTIN_PRESETS,
    normalize_weights,
    resolve_preset,
    score_section,
    score_sections,
)
from primerloom.primer.selector import select_sections

__all__ = [
    "BUILTIN_PRESETS",
    "AllOf",
    "AnyOf",
    "Catalog",
    "Compare",
    "Condition",
    "Contains",
    "FilterOptions",
    "Not",
    "Phase",
    "ScoredSection",
    "Section",
    "SectionBody",
    "SelectedSection",
    "SelectionResult",
    "UnknownFilterError",
    "WeightPreset",
    "estimate_tokens",
    "evaluate_condition",
    "filter_sections",
    "load_catalog",
    "load_default_catalog",
    "load_project_catalog",
    "materialize_dynamic",
    "matches_capabilities",
    "merge_overrides",
    "normalize_weights",
    "parse_catalog",
    "parse_condition",
    "render",
    "resolve_preset",
    "score_section",
    "score_sections",
    "select_sections",
    "validate_filters",
]
