"""Value Scorer: weight presets, normalization and per-section value."""

from __future__ import annotations

from typing import TYPE_CHECKING

from primerloom.primer.conditions import describe_condition, evaluate_condition
from primerloom.primer.models import DIMENSIONS, DimensionContribution, ScoredSection, WeightPreset

if TYPE_CHECKING:
    from collections.abc import Iterable

    from primerloom.index.snapshot import ProjectSnapshot
    from primerloom.primer.models import Section, ValueModifier

# ---------------------------------------------------------------------------
# Built-in presets
# ---------------------------------------------------------------------------

SAFE = WeightPreset(
    name="safe",
    description="Prioritize guardrails: protected files, risky edits, safety rules.",
    weights={"safety": 0.7, "efficiency": 0.1, "accuracy": 0.1, "base": 0.1},
)

EFFICIENT = WeightPreset(
    name="efficient",
    description="Prioritize workflow shortcuts and tooling that save agent turns.",
    weights={"safety": 0.1, "efficiency": 0.6, "accuracy": 0.1, "base": 0.2},
)

ACCURATE = WeightPreset(
    name="accurate",
    description="Prioritize architecture and convention facts that prevent wrong edits.",
    weights={"safety": 0.15, "efficiency": 0.1, "accuracy": 0.6, "base": 0.15},
)

BALANCED = WeightPreset(
    name="balanced",
    description="Even weighting with a slight safety bias.",
    weights={"safety": 1.5, "efficiency": 1.0, "accuracy": 1.0, "base": 1.0},
)

BUILTIN_PRESETS: dict[str, WeightPreset] = {
    p.name: p for p in (SAFE, EFFICIENT, ACCURATE, BALANCED)
}
DEFAULT_PRESET = "balanced"
CUSTOM_PRESET = "custom"

# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------


def parse_weights(raw: object, context: str) -> dict[str, float]:
    """Validate a dimension -> weight mapping; weights must be non-negative, not all zero."""
    if not isinstance(raw, dict) or not raw:
        msg = f"{context}: weights must be a non-empty mapping of dimension -> number"
        raise ValueError(msg)
    weights: dict[str, float] = {}
    for dim, value in raw.items():
        if dim not in DIMENSIONS:
            msg = f"{context}: unknown dimension '{dim}', must be one of {list(DIMENSIONS)}"
            raise ValueError(msg)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            msg = f"{context}: weight for '{dim}' must be a non-negative number, got {value!r}"
            raise ValueError(msg)
        weights[str(dim)] = float(value)
    if sum(weights.values()) <= 0:
        msg = f"{context}: at least one weight must be positive"
        raise ValueError(msg)
    return weights


def parse_weight_string(text: str) -> dict[str, float]:
    """Parse ``"safety=2,base=1"`` into a validated weight mapping."""
    raw: dict[str, float] = {}
    for chunk in text.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        dim, sep, value = chunk.partition("=")
        if not sep:
            msg = f"--weights: expected 'dimension=number', got '{chunk}'"
            raise ValueError(msg)
        try:
            raw[dim.strip()] = float(value)
        except ValueError as exc:
            msg = f"--weights: '{value.strip()}' is not a number"
            raise ValueError(msg) from exc
    return parse_weights(raw, "--weights")


def normalize_weights(weights: dict[str, float]) -> dict[str, float]:
    """Scale *weights* to sum to 1 over the fixed dimension order.

    Missing dimensions weigh 0.  Raises ``ValueError`` on negative or
    all-zero weights.
    """
    total = 0.0
    for dim in DIMENSIONS:
        value = weights.get(dim, 0.0)
        if value < 0:
            msg = f"weight for '{dim}' must be non-negative, got {value}"
            raise ValueError(msg)
        total += value
    if total <= 0:
        msg = "weights must not all be zero"
        raise ValueError(msg)
    return {dim: weights.get(dim, 0.0) / total for dim in DIMENSIONS}


def resolve_preset(
    name: str | None,
    *,
    custom_weights: dict[str, float] | None = None,
    catalog_presets: dict[str, WeightPreset] | None = None,
) -> WeightPreset:
    """Pick the active preset; custom weights win over a name.

    Catalog presets shadow built-ins with the same name.
    """
    if custom_weights is not None:
        return WeightPreset(name=CUSTOM_PRESET, weights=dict(custom_weights), description="--weights")

    available = {**BUILTIN_PRESETS, **(catalog_presets or {})}
    preset_name = name or DEFAULT_PRESET
    preset = available.get(preset_name)
    if preset is None:
        msg = f"unknown preset '{preset_name}', must be one of {sorted(available)}"
        raise ValueError(msg)
    return preset


def available_presets(catalog_presets: dict[str, WeightPreset] | None = None) -> list[WeightPreset]:
    merged = {**BUILTIN_PRESETS, **(catalog_presets or {})}
    return [merged[name] for name in sorted(merged)]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def active_modifiers(section: Section, snapshot: ProjectSnapshot) -> list[ValueModifier]:
    return [m for m in section.modifiers if evaluate_condition(m.condition, snapshot)]


def modifier_label(modifier: ValueModifier) -> str:
    return modifier.reason or describe_condition(modifier.condition)


def effective_scores(
    section: Section, snapshot: ProjectSnapshot, *, apply_modifiers: bool = True
) -> dict[str, float]:
    """Dimension scores after value modifiers whose conditions hold.

    Modifiers apply in declared order; within one modifier ``set`` comes
    first, then ``multiply``, then ``add``.  Results are clamped to [0, 1].
    """
    scores = {dim: section.dimension_scores.get(dim, 0.0) for dim in DIMENSIONS}
    if not apply_modifiers:
        return scores
    for modifier in active_modifiers(section, snapshot):
        targets = (modifier.dimension,) if modifier.dimension else DIMENSIONS
        for dim in targets:
            value = scores[dim]
            if modifier.set is not None:
                value = modifier.set
            if modifier.multiply is not None:
                value *= modifier.multiply
            if modifier.add is not None:
                value += modifier.add
            scores[dim] = _clamp(value)
    return scores


def score_section(
    section: Section,
    weights: dict[str, float],
    snapshot: ProjectSnapshot,
    *,
    apply_modifiers: bool = True,
) -> ScoredSection:
    """Compute score and value density for one section.

    *weights* must already be normalized.  The sum runs left to right over
    the fixed dimension order so the result never depends on dict ordering.
    """
    scores = effective_scores(section, snapshot, apply_modifiers=apply_modifiers)
    breakdown: list[DimensionContribution] = []
    total = 0.0
    for dim in DIMENSIONS:
        value = weights[dim] * scores[dim]
        breakdown.append(DimensionContribution(dim, scores[dim], weights[dim], value))
        total += value
    return ScoredSection(
        section=section,
        score=total,
        value_density=total / max(section.token_cost, 1),
        breakdown=tuple(breakdown),
        conditional=section.condition is not None,
        applied_modifiers=(
            tuple(modifier_label(m) for m in active_modifiers(section, snapshot))
            if apply_modifiers
            else ()
        ),
    )


def score_sections(
    sections: Iterable[Section],
    preset: WeightPreset,
    snapshot: ProjectSnapshot,
    *,
    apply_modifiers: bool = True,
) -> tuple[ScoredSection, ...]:
    weights = normalize_weights(preset.weights)
    return tuple(
        score_section(s, weights, snapshot, apply_modifiers=apply_modifiers) for s in sections
    )
