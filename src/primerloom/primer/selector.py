"""Phase Selector: commit scored sections against a token budget.

Four phases run in order against ``remaining = budget``:

1. **required**: every required section, ordered by ``(priority, id)``,
   admitted unconditionally.  ``remaining`` may go negative.
2. **conditional**: non-required sections whose condition holds, ordered by
   ``(token_cost, id)``, admitted iff ``token_cost <= max(remaining, 0)``.
3. **safety**: remaining ``safety``-category sections, ordered by
   descending score then ``(token_cost, id)``, same admission rule.
4. **value**: everything else, ordered by descending value density,
   descending score, ascending cost, ascending id.  Admission stops at the
   first section that does not fit; it and every lower-ranked section are
   omitted.

Relationships between sections apply in phases 2 to 4.  A section is
skipped when it conflicts with an admitted section (either side may declare
``conflicts_with``) or when one of its ``depends_on`` ids has not been
admitted yet.  Such a skip is recorded as an omission but never ends the
value phase.  Required sections ignore relationships; their conflicts still
block later phases.

Phase 4 is a greedy approximation of budgeted maximization, not an exact
knapsack solver.  Stopping at the first miss (instead of skipping ahead to
smaller sections) keeps the value phase a prefix of its ranking.  A larger
budget therefore only extends the value phase while phases 2 and 3 admit
the same sections and no admission blocks a value section.  A conditional
or safety section that newly fits consumes budget first and can push value
sections out.  Sections omitted in phases 2 and 3 are never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from primerloom.primer.models import Omission, Phase, SelectedSection, SelectionResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from primerloom.primer.models import ScoredSection, Section

SAFETY_CATEGORY = "safety"


def _required_key(item: ScoredSection) -> tuple[int, str]:
    return (item.section.priority, item.section.id)


def _conditional_key(item: ScoredSection) -> tuple[int, str]:
    return (item.section.token_cost, item.section.id)


def _safety_key(item: ScoredSection) -> tuple[float, int, str]:
    return (-item.score, item.section.token_cost, item.section.id)


def _value_key(item: ScoredSection) -> tuple[float, float, int, str]:
    return (-item.value_density, -item.score, item.section.token_cost, item.section.id)


def omission_warning(omission: Omission) -> str:
    phase = f"{omission.phase.value} phase"
    if omission.reason == "conflict":
        return f"omitted for conflict: {omission.section_id} (conflicts with {omission.blocked_by}, {phase})"
    if omission.reason == "dependency":
        return f"omitted for dependency: {omission.section_id} (requires {omission.blocked_by}, {phase})"
    return f"omitted for budget: {omission.section_id} ({omission.token_cost} tokens, {phase})"


def _blocker(section: Section, admitted: set[str], excluded: dict[str, str]) -> tuple[str, str] | None:
    """Return ``(reason, other_id)`` when a relationship keeps *section* out."""
    if section.id in excluded:
        return ("conflict", excluded[section.id])
    for other in section.conflicts_with:
        if other in admitted:
            return ("conflict", other)
    for dep in section.depends_on:
        if dep not in admitted:
            return ("dependency", dep)
    return None


def partition(
    candidates: Sequence[ScoredSection],
) -> dict[Phase, list[ScoredSection]]:
    """Split candidates into their phase pools, each in admission order."""
    pools: dict[Phase, list[ScoredSection]] = {phase: [] for phase in Phase}
    for item in candidates:
        section = item.section
        if section.required:
            pools[Phase.REQUIRED].append(item)
        elif item.conditional:
            pools[Phase.CONDITIONAL].append(item)
        elif section.category == SAFETY_CATEGORY:
            pools[Phase.SAFETY].append(item)
        else:
            pools[Phase.VALUE].append(item)

    pools[Phase.REQUIRED].sort(key=_required_key)
    pools[Phase.CONDITIONAL].sort(key=_conditional_key)
    pools[Phase.SAFETY].sort(key=_safety_key)
    pools[Phase.VALUE].sort(key=_value_key)
    return pools


def select_sections(
    candidates: Sequence[ScoredSection],
    budget: int,
    *,
    preset: str = "balanced",
) -> SelectionResult:
    """Run the four admission phases over *candidates*.

    Parameters
    ----------
    candidates:
        Filtered, applicable, scored sections with unique ids.  A
        non-required section whose condition evaluated false must not be
        passed in.
    budget:
        Positive token budget.
    preset:
        Name of the active weight preset, recorded in the result.
    """
    ids = [item.section.id for item in candidates]
    if len(set(ids)) != len(ids):
        msg = "candidate section ids must be unique"
        raise ValueError(msg)

    pools = partition(candidates)
    selected: list[SelectedSection] = []
    omitted: list[Omission] = []
    admitted: set[str] = set()
    excluded: dict[str, str] = {}  # blocked id -> admitted section that conflicts with it
    remaining = budget

    def admit(item: ScoredSection, phase: Phase) -> None:
        nonlocal remaining
        section = item.section
        selected.append(
            SelectedSection(
                section=section,
                phase=phase,
                score=item.score,
                value_density=item.value_density,
                breakdown=item.breakdown,
                applied_modifiers=item.applied_modifiers,
            )
        )
        admitted.add(section.id)
        for other in section.conflicts_with:
            excluded.setdefault(other, section.id)
        remaining -= section.token_cost

    def skip_blocked(item: ScoredSection, phase: Phase) -> bool:
        blocker = _blocker(item.section, admitted, excluded)
        if blocker is None:
            return False
        reason, other = blocker
        omitted.append(Omission(item.section.id, phase, item.section.token_cost, reason, other))
        return True

    def omit(item: ScoredSection, phase: Phase) -> None:
        if not skip_blocked(item, phase):
            omitted.append(Omission(item.section.id, phase, item.section.token_cost))

    for item in pools[Phase.REQUIRED]:
        admit(item, Phase.REQUIRED)

    for phase in (Phase.CONDITIONAL, Phase.SAFETY):
        for item in pools[phase]:
            if skip_blocked(item, phase):
                continue
            if item.section.token_cost <= max(remaining, 0):
                admit(item, phase)
            else:
                omit(item, phase)

    value_pool = pools[Phase.VALUE]
    for pos, item in enumerate(value_pool):
        if skip_blocked(item, Phase.VALUE):
            continue
        if item.section.token_cost > max(remaining, 0):
            for rest in value_pool[pos:]:
                omit(rest, Phase.VALUE)
            break
        admit(item, Phase.VALUE)

    total = sum(s.section.token_cost for s in selected)
    warnings: list[str] = []
    if total > budget:
        warnings.append(f"required sections exceed budget by {total - budget} tokens")
    warnings.extend(omission_warning(o) for o in omitted)

    return SelectionResult(
        sections=tuple(selected),
        budget=budget,
        total_tokens_used=total,
        over_budget=total > budget,
        preset=preset,
        omitted=tuple(omitted),
        warnings=tuple(warnings),
    )
