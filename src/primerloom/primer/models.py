"""Immutable data model for the primer selection engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from primerloom.primer.conditions import Condition

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Fixed dimension order; every weighted sum walks it left to right.
DIMENSIONS: tuple[str, ...] = ("safety", "efficiency", "accuracy", "base")

VALID_CATEGORIES: frozenset[str] = frozenset(
    {"safety", "conventions", "architecture", "workflow", "tooling", "reference"}
)
TIER_LABELS: tuple[str, ...] = (
    "survival",
    "essential",
    "operational",
    "informed",
    "complete",
    "expert",
)
OUTPUT_FORMATS: tuple[str, ...] = ("markdown", "compact", "json", "text")

DEFAULT_PRIORITY = 100
DEFAULT_MAX_ITEMS = 10


class Phase(enum.Enum):
    """Admission phase of a selected section."""

    REQUIRED = "required"
    CONDITIONAL = "conditional"
    SAFETY = "safety"
    VALUE = "value"


# ---------------------------------------------------------------------------
# Section records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SectionBody:
    """Per-format body templates; compact and text fall back to markdown."""

    markdown: str
    compact: str | None = None
    text: str | None = None

    def for_format(self, fmt: str) -> str:
        if fmt == "compact" and self.compact is not None:
            return self.compact
        if fmt == "text" and self.text is not None:
            return self.text
        return self.markdown


@dataclass(frozen=True)
class ValueModifier:
    """Adjusts dimension scores while its condition holds."""

    condition: Condition
    dimension: str | None = None  # None -> all dimensions
    add: float | None = None
    multiply: float | None = None
    set: float | None = None
    reason: str = ""


@dataclass(frozen=True)
class DynamicSource:
    """Marks a section whose body is generated from the project snapshot."""

    source: str
    max_items: int = DEFAULT_MAX_ITEMS
    empty: str = "exclude"  # "exclude" | "placeholder"
    placeholder: str = ""
    levels: tuple[str, ...] = ()  # protected-files only


@dataclass(frozen=True)
class Section:
    """A candidate unit of primer context."""

    id: str
    category: str
    token_cost: int
    dimension_scores: dict[str, float]
    body: SectionBody
    name: str = ""
    description: str = ""
    tier_label: str = "essential"
    priority: int = DEFAULT_PRIORITY
    required: bool = False
    condition: Condition | None = None
    capabilities: frozenset[str] = frozenset()
    capabilities_any: frozenset[str] = frozenset()
    dynamic: DynamicSource | None = None
    modifiers: tuple[ValueModifier, ...] = ()
    tags: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()  # ids that must be selected first
    conflicts_with: tuple[str, ...] = ()

    @property
    def title(self) -> str:
        return self.name or self.id

    @property
    def is_dynamic(self) -> bool:
        return self.dynamic is not None


@dataclass(frozen=True)
class Category:
    """Topical bucket metadata."""

    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class Capability:
    """An environment capability tag (shell, mcp, ...)."""

    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class WeightPreset:
    """Named dimension weights; normalized to sum to 1 before scoring."""

    name: str
    weights: dict[str, float]
    description: str = ""


@dataclass(frozen=True)
class Catalog:
    """The merged, validated set of candidate sections plus metadata."""

    version: int
    sections: tuple[Section, ...]
    categories: dict[str, Category] = field(default_factory=dict)
    capabilities: dict[str, Capability] = field(default_factory=dict)
    presets: dict[str, WeightPreset] = field(default_factory=dict)
    disabled: frozenset[str] = frozenset()

    def get(self, section_id: str) -> Section | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None


# ---------------------------------------------------------------------------
# Scoring and selection records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DimensionContribution:
    """One row of a score breakdown: ``score * weight = value``."""

    dimension: str
    score: float
    weight: float
    value: float


@dataclass(frozen=True)
class ScoredSection:
    """A filtered, applicable section with its computed value."""

    section: Section
    score: float
    value_density: float
    breakdown: tuple[DimensionContribution, ...] = ()
    conditional: bool = False  # condition present and true
    applied_modifiers: tuple[str, ...] = ()  # reasons of modifiers that fired


@dataclass(frozen=True)
class SelectedSection:
    """A section admitted into the primer."""

    section: Section
    phase: Phase
    score: float
    value_density: float
    breakdown: tuple[DimensionContribution, ...] = ()
    applied_modifiers: tuple[str, ...] = ()


@dataclass(frozen=True)
class Omission:
    """A section left out of the primer.

    ``reason`` is ``budget``, ``conflict`` or ``dependency``; ``blocked_by``
    names the conflicting or missing section for the last two.
    """

    section_id: str
    phase: Phase
    token_cost: int
    reason: str = "budget"
    blocked_by: str = ""


@dataclass(frozen=True)
class SelectionResult:
    """Ordered primer selection plus budget accounting and warnings."""

    sections: tuple[SelectedSection, ...]
    budget: int
    total_tokens_used: int
    over_budget: bool
    preset: str = "balanced"
    omitted: tuple[Omission, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def section_ids(self) -> list[str]:
        return [s.section.id for s in self.sections]

    def phase_of(self, section_id: str) -> Phase | None:
        for selected in self.sections:
            if selected.section.id == section_id:
                return selected.phase
        return None
