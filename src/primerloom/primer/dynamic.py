"""Dynamic Content Generator: section bodies built from live snapshot facts."""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import TYPE_CHECKING, Callable

from primerloom.index.snapshot import PROTECTED_LEVELS
from primerloom.primer.models import SectionBody

if TYPE_CHECKING:
    from primerloom.index.snapshot import ProjectSnapshot
    from primerloom.primer.models import DynamicSource, Section

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Deterministic size estimate: one token per four characters, at least one."""
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def _plural(count: int, singular: str, plural: str | None = None) -> str:
    word = singular if count == 1 else (plural or f"{singular}s")
    return f"{count} {word}"


# ---------------------------------------------------------------------------
# Generators: snapshot -> (summary line, items)
# ---------------------------------------------------------------------------

Generated = tuple[str, list[str]]


def _protected_files(snapshot: ProjectSnapshot, source: DynamicSource) -> Generated:
    levels = source.levels or PROTECTED_LEVELS
    files = [f for f in snapshot.protected_files if f.level in levels]
    items = []
    for f in files:
        detail = f"{f.level}: {f.reason}" if f.reason else f.level
        items.append(f"`{f.path}` ({detail})")
    verb = "is" if len(files) == 1 else "are"
    summary = f"{_plural(len(files), 'file')} {verb} locked ({', '.join(levels)}); do not modify without approval:"
    return summary, items


def _domains(snapshot: ProjectSnapshot, source: DynamicSource) -> Generated:
    items = []
    for d in snapshot.domains:
        line = f"**{d.name}** ({_plural(d.file_count, 'file')})"
        if d.description:
            line += f": {d.description}"
        items.append(line)
    return f"{_plural(len(items), 'active domain')}:", items


def _temporary_markers(snapshot: ProjectSnapshot, source: DynamicSource) -> Generated:
    items = []
    for m in snapshot.markers:
        details = []
        if m.age_days is not None:
            details.append(f"{_plural(m.age_days, 'day')} old")
        if m.expires is not None:
            details.append(f"expires {m.expires}")
        if m.expired:
            details.append("EXPIRED")
        line = f"`{m.file}`: {m.reason}" if m.reason else f"`{m.file}`"
        if details:
            line += f" ({', '.join(details)})"
        items.append(line)
    summary = f"{_plural(len(items), 'open temporary-code marker')}; clean up before building on top:"
    return summary, items


def _failed_attempts(snapshot: ProjectSnapshot, source: DynamicSource) -> Generated:
    items = [
        f"`{a.id}`: {a.problem} ({_plural(a.attempt_count, 'failed attempt')})"
        for a in snapshot.failed_attempts
    ]
    summary = f"{_plural(len(items), 'active debugging session')}; do not repeat approaches that already failed:"
    return summary, items


def _naming_conventions(snapshot: ProjectSnapshot, source: DynamicSource) -> Generated:
    items = []
    for c in snapshot.conventions:
        line = f"`{c.directory or '.'}/`: `{c.pattern}` (confidence {round(c.confidence * 100)}%"
        if c.examples:
            line += f", e.g. {', '.join(c.examples[:3])}"
        items.append(line + ")")
    return f"{_plural(len(items), 'detected naming convention')}:", items


_GENERATORS: dict[str, Callable[[ProjectSnapshot, DynamicSource], Generated]] = {
    "protected-files": _protected_files,
    "domains": _domains,
    "temporary-markers": _temporary_markers,
    "failed-attempts": _failed_attempts,
    "naming-conventions": _naming_conventions,
}

SOURCES: frozenset[str] = frozenset(_GENERATORS)

# ---------------------------------------------------------------------------
# Body assembly
# ---------------------------------------------------------------------------


def _join(*parts: str | None, sep: str) -> str:
    return sep.join(p for p in parts if p)


def _build_body(
    section: Section, source: DynamicSource, summary: str, items: list[str]
) -> SectionBody:
    """Render intro, summary and items into the three body variants."""
    limit = source.max_items
    shown = items[:limit]
    hidden = len(items) - len(shown)
    if hidden:
        shown.append(f"… and {hidden} more")

    intro = section.body
    bullets = "\n".join(f"- {item}" for item in shown)
    markdown = _join(intro.markdown, _join(summary, bullets, sep="\n\n"), sep="\n\n")
    compact = _join(
        intro.compact if intro.compact is not None else intro.markdown,
        _join(summary, "; ".join(shown), sep=" "),
        sep=" ",
    )
    text_lines = "\n".join(f"  {item}" for item in shown)
    text = _join(
        intro.text if intro.text is not None else intro.markdown,
        _join(summary, text_lines, sep="\n"),
        sep="\n\n",
    )
    return SectionBody(markdown=markdown, compact=compact, text=text)


def generate_section(section: Section, snapshot: ProjectSnapshot) -> Section | None:
    """Materialize one dynamic section, or ``None`` when it has no data and excludes.

    Exceptions raised by the generator propagate to the caller.
    """
    source = section.dynamic
    if source is None:
        return section

    summary, items = _GENERATORS[source.source](snapshot, source)
    if items:
        body = _build_body(section, source, summary, items)
    elif source.empty == "placeholder":
        intro = section.body
        body = SectionBody(
            markdown=_join(intro.markdown, source.placeholder, sep="\n\n"),
            compact=_join(intro.compact or intro.markdown, source.placeholder, sep=" "),
            text=_join(intro.text or intro.markdown, source.placeholder, sep="\n\n"),
        )
    else:
        logger.debug("Dynamic section '%s' has no data, excluded", section.id)
        return None

    return dataclasses.replace(section, body=body, token_cost=estimate_tokens(body.markdown))


def materialize_dynamic(
    sections: tuple[Section, ...], snapshot: ProjectSnapshot
) -> tuple[tuple[Section, ...], tuple[str, ...]]:
    """Replace every dynamic section with its generated counterpart.

    Static sections pass through unchanged.  A generator failure drops only
    its own section and yields a warning.
    """
    result: list[Section] = []
    warnings: list[str] = []
    for section in sections:
        if not section.is_dynamic:
            result.append(section)
            continue
        try:
            generated = generate_section(section, snapshot)
        except Exception as exc:
            logger.warning("Dynamic section '%s' failed: %s", section.id, exc)
            warnings.append(f"dynamic section '{section.id}' dropped: {exc}")
            continue
        if generated is not None:
            result.append(generated)
    return tuple(result), tuple(warnings)
