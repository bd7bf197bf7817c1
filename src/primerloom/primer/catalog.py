"""Section catalog: parse sections.yml, validate, and merge project overrides."""

from __future__ import annotations

import dataclasses
import importlib.resources
import logging
import re
from typing import TYPE_CHECKING, Any

import yaml

from primerloom.primer.conditions import parse_condition
from primerloom.primer.dynamic import SOURCES, estimate_tokens
from primerloom.primer.models import (
    DEFAULT_MAX_ITEMS,
    DEFAULT_PRIORITY,
    DIMENSIONS,
    TIER_LABELS,
    VALID_CATEGORIES,
    Capability,
    Catalog,
    Category,
    DynamicSource,
    Section,
    SectionBody,
    ValueModifier,
    WeightPreset,
)
from primerloom.primer.scoring import parse_weights

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_CATALOG_VERSIONS: frozenset[int] = frozenset({1})
VALID_EMPTY_BEHAVIORS: frozenset[str] = frozenset({"exclude", "placeholder"})
PATCHABLE_FIELDS: frozenset[str] = frozenset(
    {"token_cost", "required", "condition", "scores", "priority", "body"}
)

_SECTION_ID_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")

_SECTION_KEYS: frozenset[str] = frozenset(
    {
        "id",
        "category",
        "name",
        "description",
        "tier",
        "priority",
        "required",
        "token_cost",
        "scores",
        "condition",
        "capabilities",
        "capabilities_any",
        "body",
        "dynamic",
        "modifiers",
        "tags",
        "depends_on",
        "conflicts_with",
    }
)

# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _parse_string_list(raw: object, context: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        msg = f"{context}: must be a list of strings"
        raise ValueError(msg)
    return tuple(raw)


def _parse_unit_float(raw: object, context: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        msg = f"{context}: must be a number, got {raw!r}"
        raise ValueError(msg)
    value = float(raw)
    if not 0.0 <= value <= 1.0:
        msg = f"{context}: {value} is outside [0, 1]"
        raise ValueError(msg)
    return value


def _parse_scores(raw: object, context: str, *, fill_defaults: bool = True) -> dict[str, float]:
    """Parse a ``scores`` mapping; missing dimensions default to 0.0 (``base`` to 0.5)."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        msg = f"{context}: 'scores' must be a mapping of dimension -> [0, 1]"
        raise ValueError(msg)
    unknown = set(raw) - set(DIMENSIONS)
    if unknown:
        msg = f"{context}: unknown score dimension(s) {sorted(unknown)}, must be one of {list(DIMENSIONS)}"
        raise ValueError(msg)

    scores: dict[str, float] = {}
    for dim in DIMENSIONS:
        if dim in raw:
            scores[dim] = _parse_unit_float(raw[dim], f"{context}: scores.{dim}")
        elif fill_defaults:
            scores[dim] = 0.5 if dim == "base" else 0.0
    return scores


def _parse_token_cost(raw: object, context: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        msg = f"{context}: 'token_cost' must be a non-negative integer, got {raw!r}"
        raise ValueError(msg)
    return raw


def _parse_priority(raw: object, context: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        msg = f"{context}: 'priority' must be an integer, got {raw!r}"
        raise ValueError(msg)
    return raw


def _parse_bool(raw: object, key: str, context: str) -> bool:
    if not isinstance(raw, bool):
        msg = f"{context}: '{key}' must be true or false, got {raw!r}"
        raise ValueError(msg)
    return raw


def _parse_body(raw: object, context: str) -> SectionBody:
    if isinstance(raw, str):
        return SectionBody(markdown=raw.strip())
    if isinstance(raw, dict):
        markdown = raw.get("markdown")
        if not isinstance(markdown, str):
            msg = f"{context}: body mapping needs a 'markdown' string"
            raise ValueError(msg)
        variants: dict[str, str | None] = {}
        for key in ("compact", "text"):
            value = raw.get(key)
            if value is not None and not isinstance(value, str):
                msg = f"{context}: body.{key} must be a string"
                raise ValueError(msg)
            variants[key] = value.strip() if value is not None else None
        return SectionBody(markdown=markdown.strip(), **variants)
    msg = f"{context}: 'body' must be a string or a mapping with 'markdown'"
    raise ValueError(msg)


def _parse_dynamic(raw: object, context: str) -> DynamicSource:
    if isinstance(raw, str):
        raw = {"source": raw}
    if not isinstance(raw, dict):
        msg = f"{context}: 'dynamic' must be a source name or a mapping"
        raise ValueError(msg)

    source = raw.get("source")
    if source not in SOURCES:
        msg = f"{context}: unknown dynamic source {source!r}, must be one of {sorted(SOURCES)}"
        raise ValueError(msg)

    max_items = raw.get("max_items", DEFAULT_MAX_ITEMS)
    if isinstance(max_items, bool) or not isinstance(max_items, int) or max_items < 1:
        msg = f"{context}: dynamic.max_items must be a positive integer, got {max_items!r}"
        raise ValueError(msg)

    empty = str(raw.get("empty", "exclude"))
    if empty not in VALID_EMPTY_BEHAVIORS:
        msg = f"{context}: dynamic.empty must be one of {sorted(VALID_EMPTY_BEHAVIORS)}"
        raise ValueError(msg)
    placeholder = str(raw.get("placeholder", "")).strip()
    if empty == "placeholder" and not placeholder:
        msg = f"{context}: dynamic.empty is 'placeholder' but no placeholder text is given"
        raise ValueError(msg)

    return DynamicSource(
        source=str(source),
        max_items=max_items,
        empty=empty,
        placeholder=placeholder,
        levels=_parse_string_list(raw.get("levels"), f"{context}: dynamic.levels"),
    )


def _parse_modifier(raw: object, context: str) -> ValueModifier:
    if not isinstance(raw, dict):
        msg = f"{context}: modifier must be a mapping"
        raise ValueError(msg)
    if "when" not in raw:
        msg = f"{context}: modifier needs a 'when' condition"
        raise ValueError(msg)

    dimension = raw.get("dimension")
    if dimension is not None and dimension not in DIMENSIONS:
        msg = f"{context}: modifier dimension {dimension!r} must be one of {list(DIMENSIONS)}"
        raise ValueError(msg)

    amounts: dict[str, float | None] = {}
    for key in ("add", "multiply", "set"):
        value = raw.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            msg = f"{context}: modifier '{key}' must be a number, got {value!r}"
            raise ValueError(msg)
        amounts[key] = float(value) if value is not None else None
    if all(v is None for v in amounts.values()):
        msg = f"{context}: modifier needs at least one of 'add', 'multiply' or 'set'"
        raise ValueError(msg)
    if amounts["set"] is not None:
        _parse_unit_float(amounts["set"], f"{context}: modifier set")

    return ValueModifier(
        condition=parse_condition(raw["when"], f"{context}: modifier.when"),
        dimension=dimension,
        add=amounts["add"],
        multiply=amounts["multiply"],
        set=amounts["set"],
        reason=str(raw.get("reason", "")),
    )


def _parse_relations(data: dict[str, Any], key: str, section_id: str, context: str) -> tuple[str, ...]:
    ids = _parse_string_list(data.get(key), f"{context}: {key}")
    if section_id in ids:
        msg = f"{context}: '{key}' cannot reference the section itself"
        raise ValueError(msg)
    return tuple(dict.fromkeys(ids))


def parse_section(data: object, context: str) -> Section:
    """Parse and validate one section mapping.

    Category and capability references are checked later against the merged
    catalog, since override files may declare new ones.
    """
    if not isinstance(data, dict):
        msg = f"{context}: section must be a mapping"
        raise ValueError(msg)

    section_id = data.get("id")
    if not isinstance(section_id, str) or not _SECTION_ID_RE.match(section_id):
        msg = f"{context}: missing or invalid 'id' {section_id!r} (lowercase letters, digits, '-', '_')"
        raise ValueError(msg)
    context = f"Section '{section_id}'"

    unknown = set(data) - _SECTION_KEYS
    if unknown:
        msg = f"{context}: unknown key(s) {sorted(unknown)}"
        raise ValueError(msg)

    category = data.get("category")
    if not isinstance(category, str) or not category:
        msg = f"{context}: missing required 'category'"
        raise ValueError(msg)

    tier = str(data.get("tier", "essential"))
    if tier not in TIER_LABELS:
        msg = f"{context}: invalid tier '{tier}', must be one of {list(TIER_LABELS)}"
        raise ValueError(msg)

    dynamic = _parse_dynamic(data["dynamic"], context) if "dynamic" in data else None

    body_raw = data.get("body")
    if body_raw is None:
        if dynamic is None:
            msg = f"{context}: static section needs a 'body'"
            raise ValueError(msg)
        body = SectionBody(markdown="")
    else:
        body = _parse_body(body_raw, context)

    if dynamic is not None:
        if "token_cost" in data:
            msg = f"{context}: dynamic sections compute their token_cost; remove 'token_cost'"
            raise ValueError(msg)
        token_cost = 0
    elif "token_cost" in data:
        token_cost = _parse_token_cost(data["token_cost"], context)
    else:
        token_cost = estimate_tokens(body.markdown)

    modifiers_raw = data.get("modifiers") or []
    if not isinstance(modifiers_raw, list):
        msg = f"{context}: 'modifiers' must be a list"
        raise ValueError(msg)

    condition_raw = data.get("condition")
    return Section(
        id=section_id,
        category=category,
        token_cost=token_cost,
        dimension_scores=_parse_scores(data.get("scores"), context),
        body=body,
        name=str(data.get("name", "")),
        description=str(data.get("description", "")),
        tier_label=tier,
        priority=_parse_priority(data.get("priority", DEFAULT_PRIORITY), context),
        required=_parse_bool(data.get("required", False), "required", context),
        condition=(
            parse_condition(condition_raw, f"{context}: condition")
            if condition_raw is not None
            else None
        ),
        capabilities=frozenset(_parse_string_list(data.get("capabilities"), f"{context}: capabilities")),
        capabilities_any=frozenset(
            _parse_string_list(data.get("capabilities_any"), f"{context}: capabilities_any")
        ),
        dynamic=dynamic,
        modifiers=tuple(
            _parse_modifier(m, f"{context}: modifiers[{i}]") for i, m in enumerate(modifiers_raw)
        ),
        tags=_parse_string_list(data.get("tags"), f"{context}: tags"),
        depends_on=_parse_relations(data, "depends_on", section_id, context),
        conflicts_with=_parse_relations(data, "conflicts_with", section_id, context),
    )


def _parse_sections(raw: object, source: str) -> list[Section]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        msg = f"{source}: 'sections' must be a list"
        raise ValueError(msg)
    sections: list[Section] = []
    seen: set[str] = set()
    for idx, item in enumerate(raw):
        section = parse_section(item, f"{source}: section at index {idx}")
        if section.id in seen:
            msg = f"{source}: duplicate section id '{section.id}'"
            raise ValueError(msg)
        seen.add(section.id)
        sections.append(section)
    return sections


def _parse_named_table(raw: object, key: str, source: str) -> dict[str, tuple[str, str]]:
    """Parse ``{id: {name, description}}`` tables (categories, capabilities)."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        msg = f"{source}: '{key}' must be a mapping"
        raise ValueError(msg)
    table: dict[str, tuple[str, str]] = {}
    for ident, entry in raw.items():
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            msg = f"{source}: {key}.{ident} must be a mapping"
            raise ValueError(msg)
        table[str(ident)] = (
            str(entry.get("name", str(ident).replace("-", " ").title())),
            str(entry.get("description", "")),
        )
    return table


def _parse_presets(raw: object, source: str) -> dict[str, WeightPreset]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        msg = f"{source}: 'presets' must be a mapping"
        raise ValueError(msg)
    presets: dict[str, WeightPreset] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            msg = f"{source}: preset '{name}' must be a mapping"
            raise ValueError(msg)
        presets[str(name)] = WeightPreset(
            name=str(name),
            weights=parse_weights(entry.get("weights"), f"{source}: preset '{name}'"),
            description=str(entry.get("description", "")),
        )
    return presets


def _check_version(data: dict[str, Any], source: str) -> int:
    version = data.get("version")
    if version is None:
        msg = f"{source}: missing required 'version' field"
        raise ValueError(msg)
    if version not in SUPPORTED_CATALOG_VERSIONS:
        expected = sorted(SUPPORTED_CATALOG_VERSIONS)
        msg = f"{source}: unsupported version {version}, expected one of {expected}"
        raise ValueError(msg)
    return int(version)


def _validate_references(catalog: Catalog, source: str) -> None:
    """Every category, capability tag and related section id must be declared."""
    known_ids = {s.id for s in catalog.sections}
    for section in catalog.sections:
        for key, related in (("depends_on", section.depends_on), ("conflicts_with", section.conflicts_with)):
            missing = [r for r in related if r not in known_ids]
            if missing:
                msg = f"{source}: section '{section.id}' {key} references unknown section(s) {missing}"
                raise ValueError(msg)
        if section.category not in catalog.categories:
            msg = (
                f"{source}: section '{section.id}' has unknown category "
                f"'{section.category}', must be one of {sorted(catalog.categories)}"
            )
            raise ValueError(msg)
        tags = section.capabilities | section.capabilities_any
        unknown = tags - set(catalog.capabilities)
        if unknown:
            msg = f"{source}: section '{section.id}' uses undeclared capabilities {sorted(unknown)}"
            raise ValueError(msg)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_catalog(data: object, source: str = "sections.yml") -> Catalog:
    """Build a validated :class:`Catalog` from a parsed YAML document.

    When the document declares no ``categories`` table, the built-in category
    set is used.

    Raises
    ------
    ValueError
        On any schema violation; malformed entries are never dropped.
    """
    if not isinstance(data, dict):
        msg = f"{source} must be a YAML mapping"
        raise ValueError(msg)
    version = _check_version(data, source)

    category_table = _parse_named_table(data.get("categories"), "categories", source)
    if not category_table:
        category_table = {c: (c.title(), "") for c in sorted(VALID_CATEGORIES)}
    capability_table = _parse_named_table(data.get("capabilities"), "capabilities", source)

    catalog = Catalog(
        version=version,
        sections=tuple(_parse_sections(data.get("sections"), source)),
        categories={k: Category(k, *v) for k, v in category_table.items()},
        capabilities={k: Capability(k, *v) for k, v in capability_table.items()},
        presets=_parse_presets(data.get("presets"), source),
        disabled=frozenset(_parse_string_list(data.get("disabled_sections"), f"{source}: disabled_sections")),
    )
    _validate_references(catalog, source)
    return catalog


def _read_yaml(path: Path) -> object:
    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            msg = f"{path}: invalid YAML: {exc}"
            raise ValueError(msg) from exc


def load_catalog(path: Path) -> Catalog:
    """Load a complete catalog file from disk."""
    return parse_catalog(_read_yaml(path), path.name)


def load_default_catalog() -> Catalog:
    """Load the catalog packaged with primerloom."""
    resource = importlib.resources.files("primerloom.data").joinpath("sections.yml")
    return parse_catalog(yaml.safe_load(resource.read_text(encoding="utf-8")), "sections.yml")


def _patch_section(section: Section, patch: object, source: str) -> Section:
    context = f"{source}: section_overrides.{section.id}"
    if not isinstance(patch, dict):
        msg = f"{context} must be a mapping"
        raise ValueError(msg)
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        msg = f"{context}: cannot override {sorted(unknown)}, patchable fields are {sorted(PATCHABLE_FIELDS)}"
        raise ValueError(msg)

    changes: dict[str, Any] = {}
    if "token_cost" in patch:
        if section.is_dynamic:
            msg = f"{context}: dynamic sections compute their token_cost"
            raise ValueError(msg)
        changes["token_cost"] = _parse_token_cost(patch["token_cost"], context)
    if "required" in patch:
        changes["required"] = _parse_bool(patch["required"], "required", context)
    if "priority" in patch:
        changes["priority"] = _parse_priority(patch["priority"], context)
    if "condition" in patch:
        raw = patch["condition"]
        changes["condition"] = parse_condition(raw, f"{context}.condition") if raw is not None else None
    if "scores" in patch:
        partial = _parse_scores(patch["scores"], context, fill_defaults=False)
        changes["dimension_scores"] = {**section.dimension_scores, **partial}
    if "body" in patch:
        body = _parse_body(patch["body"], context)
        changes["body"] = body
        if not section.is_dynamic and "token_cost" not in patch:
            changes["token_cost"] = estimate_tokens(body.markdown)
    return dataclasses.replace(section, **changes)


def merge_overrides(base: Catalog, data: object, source: str = "primer.yml") -> Catalog:
    """Merge a project override document into *base* and return a new catalog.

    - ``sections``: an existing id is replaced, a new id is appended.
      Replacing a static section with a dynamic one (or the reverse) is a
      conflict.
    - ``section_overrides``: partial patches of existing sections.
    - ``disabled_sections``: ids removed before filtering.
    - ``categories`` / ``capabilities`` / ``presets``: merged by key.

    Raises
    ------
    ValueError
        On schema errors or unresolvable conflicts.
    """
    if data is None:
        return base
    if not isinstance(data, dict):
        msg = f"{source} must be a YAML mapping"
        raise ValueError(msg)
    _check_version(data, source)

    sections = list(base.sections)
    index = {s.id: i for i, s in enumerate(sections)}

    for replacement in _parse_sections(data.get("sections"), source):
        pos = index.get(replacement.id)
        if pos is None:
            index[replacement.id] = len(sections)
            sections.append(replacement)
            continue
        original = sections[pos]
        if original.is_dynamic != replacement.is_dynamic:
            kinds = ("dynamic", "static") if original.is_dynamic else ("static", "dynamic")
            msg = (
                f"{source}: section '{replacement.id}' conflicts with the base catalog: "
                f"cannot replace a {kinds[0]} section with a {kinds[1]} one"
            )
            raise ValueError(msg)
        logger.debug("Override replaces section '%s'", replacement.id)
        sections[pos] = replacement

    patches = data.get("section_overrides") or {}
    if not isinstance(patches, dict):
        msg = f"{source}: 'section_overrides' must be a mapping of section id -> fields"
        raise ValueError(msg)
    for section_id, patch in patches.items():
        pos = index.get(str(section_id))
        if pos is None:
            msg = f"{source}: section_overrides references unknown section '{section_id}'"
            raise ValueError(msg)
        sections[pos] = _patch_section(sections[pos], patch, source)

    disabled = set(base.disabled)
    for section_id in _parse_string_list(data.get("disabled_sections"), f"{source}: disabled_sections"):
        if section_id not in index:
            msg = f"{source}: disabled_sections references unknown section '{section_id}'"
            raise ValueError(msg)
        disabled.add(section_id)

    categories = dict(base.categories)
    for k, v in _parse_named_table(data.get("categories"), "categories", source).items():
        categories[k] = Category(k, *v)
    capabilities = dict(base.capabilities)
    for k, v in _parse_named_table(data.get("capabilities"), "capabilities", source).items():
        capabilities[k] = Capability(k, *v)

    merged = Catalog(
        version=base.version,
        sections=tuple(sections),
        categories=categories,
        capabilities=capabilities,
        presets={**base.presets, **_parse_presets(data.get("presets"), source)},
        disabled=frozenset(disabled),
    )
    _validate_references(merged, source)
    return merged


def load_project_catalog(override_path: Path | None, *, explicit: bool = False) -> Catalog:
    """Load the packaged catalog and merge the project override file, if any.

    A missing override file is fine unless the path was given explicitly
    (``--catalog``), in which case it is an error.
    """
    catalog = load_default_catalog()
    if override_path is None:
        return catalog
    if not override_path.is_file():
        if explicit:
            msg = f"catalog file not found: {override_path}"
            raise ValueError(msg)
        logger.debug("No project catalog override at %s", override_path)
        return catalog
    return merge_overrides(catalog, _read_yaml(override_path), override_path.name)
