"""Filter Stage: drop sections by category, include/exclude patterns and capabilities."""

from __future__ import annotations

import dataclasses
import fnmatch
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from primerloom.primer.models import Catalog, Section


class UnknownFilterError(ValueError):
    """A filter argument references an identifier the catalog does not know."""

    def __init__(self, message: str, token: str) -> None:
        super().__init__(message)
        self.token = token


@dataclass(frozen=True)
class FilterOptions:
    """Caller-supplied filter arguments.

    ``categories`` and ``capabilities`` are ``None`` when not restricted.
    """

    categories: frozenset[str] | None = None
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    capabilities: frozenset[str] | None = None
    dynamic_enabled: bool = True


def matches_pattern(pattern: str, section: Section) -> bool:
    """Glob *pattern* against the section id or its category."""
    return fnmatch.fnmatchcase(section.id, pattern) or fnmatch.fnmatchcase(
        section.category, pattern
    )


def matches_capabilities(section: Section, capabilities: frozenset[str] | None) -> bool:
    """True when the environment satisfies the section's capability tags.

    ``capabilities`` (all-of) must all be present; at least one of
    ``capabilities_any`` must be present when that set is non-empty.
    """
    if capabilities is None:
        return True
    if not section.capabilities <= capabilities:
        return False
    return not section.capabilities_any or bool(section.capabilities_any & capabilities)


def validate_filters(catalog: Catalog, options: FilterOptions) -> None:
    """Reject filter arguments that reference unknown identifiers.

    Raises
    ------
    UnknownFilterError
        For an unknown category or capability tag, or an include/exclude
        pattern that matches no section id or category.
    """
    if options.categories is not None:
        unknown = options.categories - set(catalog.categories)
        if unknown:
            token = sorted(unknown)[0]
            msg = f"unknown category {sorted(unknown)}, must be one of {sorted(catalog.categories)}"
            raise UnknownFilterError(msg, token)

    if options.capabilities is not None:
        unknown = options.capabilities - set(catalog.capabilities)
        if unknown:
            token = sorted(unknown)[0]
            msg = f"unknown capability {sorted(unknown)}, must be one of {sorted(catalog.capabilities)}"
            raise UnknownFilterError(msg, token)

    for flag, patterns in (("--include", options.include), ("--exclude", options.exclude)):
        for pattern in patterns:
            if not any(matches_pattern(pattern, s) for s in catalog.sections):
                msg = f"{flag} pattern '{pattern}' matches no section id or category"
                raise UnknownFilterError(msg, pattern)


def filter_sections(catalog: Catalog, options: FilterOptions) -> tuple[Section, ...]:
    """Return the catalog sections that survive every filter, in catalog order.

    Sections matched by an ``include`` pattern are returned with
    ``required=True``.  Exclude wins over include.
    """
    kept: list[Section] = []
    for section in catalog.sections:
        if section.id in catalog.disabled:
            continue
        if any(matches_pattern(p, section) for p in options.exclude):
            continue
        included = any(matches_pattern(p, section) for p in options.include)
        if (
            options.categories is not None
            and section.category not in options.categories
            and not included
        ):
            continue
        if not matches_capabilities(section, options.capabilities):
            continue
        if section.is_dynamic and not options.dynamic_enabled:
            continue
        if included and not section.required:
            section = dataclasses.replace(section, required=True)
        kept.append(section)
    return tuple(kept)
