"""Renderer: serialize a SelectionResult as markdown, compact, json or text."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Callable

from primerloom.primer.conditions import describe_condition
from primerloom.primer.models import OUTPUT_FORMATS
from primerloom.primer.scoring import normalize_weights

if TYPE_CHECKING:
    from primerloom.primer.models import (
        Catalog,
        Omission,
        SelectedSection,
        SelectionResult,
        WeightPreset,
    )

PRIMER_TITLE = "Project Primer"
_SCORE_DIGITS = 6


def _explain_line(item: SelectedSection) -> str:
    parts = [
        f"phase={item.phase.value}",
        f"score={item.score:.4f}",
        f"density={item.value_density:.6f}",
    ]
    parts.extend(f"{c.dimension}={c.score:.2f}x{c.weight:.3f}" for c in item.breakdown)
    if item.applied_modifiers:
        parts.append("modifiers=" + "; ".join(item.applied_modifiers))
    return " ".join(parts)


def _footer(result: SelectionResult) -> str:
    line = f"{result.total_tokens_used}/{result.budget} tokens, preset {result.preset}"
    if result.over_budget:
        line += ", OVER BUDGET"
    return line


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def format_markdown(result: SelectionResult, *, explain: bool = False, preview: bool = False) -> str:
    """Human-readable structured layout.

    Example::

        # Project Primer

        ## Protected Files
        2 files are locked (frozen, restricted); ...

        ---
        _340/2000 tokens, preset balanced_
    """
    lines: list[str] = [f"# {PRIMER_TITLE}", ""]

    if preview:
        lines.append("| id | category | tokens | phase |")
        lines.append("|---|---|---:|---|")
        for item in result.sections:
            s = item.section
            lines.append(f"| {s.id} | {s.category} | {s.token_cost} | {item.phase.value} |")
        lines.append("")
    else:
        for item in result.sections:
            lines.append(f"## {item.section.title}")
            lines.append("")
            body = item.section.body.for_format("markdown")
            if body:
                lines.append(body)
                lines.append("")
            if explain:
                lines.append(f"> {_explain_line(item)}")
                lines.append("")

    if preview and explain:
        for item in result.sections:
            lines.append(f"- `{item.section.id}`: {_explain_line(item)}")
        lines.append("")

    lines.append("---")
    lines.append(f"_{_footer(result)}_")

    if result.warnings:
        lines.append("")
        lines.append("## Warnings")
        lines.append("")
        lines.extend(f"- {w}" for w in result.warnings)

    return "\n".join(lines)


def format_compact(result: SelectionResult, *, explain: bool = False, preview: bool = False) -> str:
    """Single block, one ``[id] body`` line per section."""
    lines: list[str] = []
    for item in result.sections:
        s = item.section
        if preview:
            line = f"[{s.id}] {s.category} {s.token_cost} {item.phase.value}"
        else:
            line = f"[{s.id}] {' '.join(s.body.for_format('compact').split())}"
        if explain:
            line += f" ({_explain_line(item)})"
        lines.append(line)
    lines.append(f"({_footer(result)})")
    lines.extend(f"[!] {w}" for w in result.warnings)
    return "\n".join(lines)


def format_text(result: SelectionResult, *, explain: bool = False, preview: bool = False) -> str:
    """Plain text with uppercase titles underlined by ``=``."""
    title = PRIMER_TITLE.upper()
    lines: list[str] = [title, "=" * len(title), ""]
    for item in result.sections:
        s = item.section
        if preview:
            lines.append(f"{s.id}  {s.category}  {s.token_cost} tokens  {item.phase.value}")
            if explain:
                lines.append(f"  {_explain_line(item)}")
            continue
        heading = s.title.upper()
        lines.append(heading)
        lines.append("=" * len(heading))
        body = s.body.for_format("text")
        if body:
            lines.append(body)
        if explain:
            lines.append(f"[{_explain_line(item)}]")
        lines.append("")

    if preview:
        lines.append("")
    lines.append(_footer(result))
    if result.warnings:
        lines.append("")
        lines.append("WARNINGS")
        lines.append("=" * len("WARNINGS"))
        lines.extend(f"- {w}" for w in result.warnings)
    return "\n".join(lines)


def _omission_entry(omission: Omission) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": omission.section_id,
        "phase": omission.phase.value,
        "token_cost": omission.token_cost,
        "reason": omission.reason,
    }
    if omission.blocked_by:
        entry["blocked_by"] = omission.blocked_by
    return entry


def selection_to_dict(
    result: SelectionResult, *, explain: bool = False, preview: bool = False
) -> dict[str, Any]:
    """Machine-readable form; ``body`` is absent under preview, scores only with explain."""
    sections: list[dict[str, Any]] = []
    for item in result.sections:
        s = item.section
        entry: dict[str, Any] = {
            "id": s.id,
            "category": s.category,
            "phase": item.phase.value,
            "token_cost": s.token_cost,
        }
        if not preview:
            entry["body"] = s.body.for_format("markdown")
        if explain:
            entry["score"] = round(item.score, _SCORE_DIGITS)
            entry["value_density"] = round(item.value_density, _SCORE_DIGITS)
            entry["dimensions"] = {
                c.dimension: {
                    "score": round(c.score, _SCORE_DIGITS),
                    "weight": round(c.weight, _SCORE_DIGITS),
                    "value": round(c.value, _SCORE_DIGITS),
                }
                for c in item.breakdown
            }
            entry["modifiers"] = list(item.applied_modifiers)
        sections.append(entry)

    return {
        "budget": result.budget,
        "total_tokens_used": result.total_tokens_used,
        "over_budget": result.over_budget,
        "preset": result.preset,
        "sections": sections,
        "omitted": [_omission_entry(o) for o in result.omitted],
        "warnings": list(result.warnings),
    }


def format_json(result: SelectionResult, *, explain: bool = False, preview: bool = False) -> str:
    return json.dumps(
        selection_to_dict(result, explain=explain, preview=preview),
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
    )


_FORMATTERS: dict[str, Callable[..., str]] = {
    "markdown": format_markdown,
    "compact": format_compact,
    "json": format_json,
    "text": format_text,
}


def render(
    result: SelectionResult, fmt: str = "markdown", *, explain: bool = False, preview: bool = False
) -> str:
    """Serialize *result* in the requested format.

    Raises ``ValueError`` for an unknown format.
    """
    formatter = _FORMATTERS.get(fmt)
    if formatter is None:
        msg = f"unknown output format '{fmt}', must be one of {list(OUTPUT_FORMATS)}"
        raise ValueError(msg)
    return formatter(result, explain=explain, preview=preview)


# ---------------------------------------------------------------------------
# Catalog listings (bypass selection)
# ---------------------------------------------------------------------------


def section_listing(catalog: Catalog) -> list[dict[str, Any]]:
    """Catalog metadata rows for ``--list-sections``."""
    rows: list[dict[str, Any]] = []
    for s in sorted(catalog.sections, key=lambda s: (s.category, s.id)):
        rows.append(
            {
                "id": s.id,
                "name": s.title,
                "description": s.description,
                "category": s.category,
                "tier": s.tier_label,
                "required": s.required,
                "dynamic": s.dynamic.source if s.dynamic is not None else None,
                "token_cost": None if s.is_dynamic else s.token_cost,
                "condition": describe_condition(s.condition) or None,
                "capabilities": sorted(s.capabilities),
                "capabilities_any": sorted(s.capabilities_any),
                "depends_on": list(s.depends_on),
                "conflicts_with": list(s.conflicts_with),
                "tags": list(s.tags),
                "disabled": s.id in catalog.disabled,
            }
        )
    return rows


def preset_listing(presets: list[WeightPreset]) -> list[dict[str, Any]]:
    """Preset rows for ``--list-presets``, weights shown normalized."""
    return [
        {
            "name": p.name,
            "description": p.description,
            "weights": {
                dim: round(w, _SCORE_DIGITS) for dim, w in normalize_weights(p.weights).items()
            },
        }
        for p in presets
    ]
