"""Primerloom CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from primerloom import __version__
from primerloom.primer.models import OUTPUT_FORMATS

if TYPE_CHECKING:
    from primerloom.primer.engine import PrimerError
    from primerloom.primer.models import Catalog


class _EchoHandler(logging.Handler):
    """Route log records to stderr through click so stdout stays machine-readable."""

    def emit(self, record: logging.LogRecord) -> None:
        click.echo(self.format(record), err=True)


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    package_logger = logging.getLogger("primerloom")
    package_logger.setLevel(level)
    if not any(isinstance(h, _EchoHandler) for h in package_logger.handlers):
        handler = _EchoHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        package_logger.addHandler(handler)


@click.group()
@click.version_option(version=__version__, prog_name="primerloom")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Primerloom - token-bounded context primers for AI coding agents."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


def _split_csv(value: str | None) -> frozenset[str] | None:
    if value is None:
        return None
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def _fail(exc: PrimerError, fmt: str) -> None:
    """Report a rejected invocation and exit with the configuration-error code."""
    if fmt == "json":
        click.echo(json.dumps(exc.to_dict(), indent=2, sort_keys=True))
    else:
        click.echo(f"Error: {exc.message}", err=True)
    sys.exit(2)


def _print_listings(catalog: Catalog, fmt: str, *, sections: bool, presets: bool) -> None:
    """Print catalog listings; under json both listings share one document."""
    from primerloom.primer.renderer import preset_listing, section_listing
    from primerloom.primer.scoring import available_presets

    section_rows = section_listing(catalog) if sections else []
    preset_rows = preset_listing(available_presets(catalog.presets)) if presets else []
    if fmt == "json":
        doc: object
        if sections and presets:
            doc = {"sections": section_rows, "presets": preset_rows}
        else:
            doc = section_rows if sections else preset_rows
        click.echo(json.dumps(doc, indent=2, sort_keys=True))
        return
    if sections:
        _print_sections(section_rows)
    if presets:
        _print_presets(preset_rows)


def _print_sections(rows: list[dict[str, Any]]) -> None:
    from rich.console import Console
    from rich.table import Table

    table = Table(title=f"Sections ({len(rows)})")
    table.add_column("id", style="cyan")
    table.add_column("category")
    table.add_column("tier")
    table.add_column("tokens", justify="right")
    table.add_column("flags")
    table.add_column("condition")
    for row in rows:
        flags = []
        if row["required"]:
            flags.append("required")
        if row["dynamic"]:
            flags.append(f"dynamic:{row['dynamic']}")
        if row["capabilities"]:
            flags.append("needs " + "+".join(row["capabilities"]))
        if row["capabilities_any"]:
            flags.append("any " + "|".join(row["capabilities_any"]))
        if row["depends_on"]:
            flags.append("after " + "+".join(row["depends_on"]))
        if row["conflicts_with"]:
            flags.append("not with " + "|".join(row["conflicts_with"]))
        if row["disabled"]:
            flags.append("disabled")
        flags.extend(f"#{tag}" for tag in row["tags"])
        table.add_row(
            row["id"],
            row["category"],
            row["tier"],
            "dyn" if row["token_cost"] is None else str(row["token_cost"]),
            ", ".join(flags),
            row["condition"] or "",
        )
    Console().print(table)


def _print_presets(rows: list[dict[str, Any]]) -> None:
    from rich.console import Console
    from rich.table import Table

    from primerloom.primer.models import DIMENSIONS

    table = Table(title="Weight presets (normalized)")
    table.add_column("preset", style="cyan")
    for dim in DIMENSIONS:
        table.add_column(dim, justify="right")
    table.add_column("description")
    for row in rows:
        weights = row["weights"]
        table.add_row(
            row["name"],
            *(f"{weights[dim]:.2f}" for dim in DIMENSIONS),
            row["description"],
        )
    Console().print(table)


@main.command()
@click.option("--budget", type=int, default=None, help="Token budget (default: 2000 or config.yml).")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(list(OUTPUT_FORMATS)),
    default=None,
    help="Output format (default: markdown or config.yml).",
)
@click.option("--preset", default=None, help="Weight preset: safe, efficient, accurate, balanced.")
@click.option("--weights", default=None, help="Custom weights, e.g. 'safety=2,base=1'.")
@click.option("--include", multiple=True, help="Force-include sections by id/category glob.")
@click.option("--exclude", multiple=True, help="Exclude sections by id/category glob.")
@click.option("--categories", default=None, help="Comma-separated categories to keep.")
@click.option("--capabilities", default=None, help="Comma-separated environment capabilities.")
@click.option("--no-dynamic", is_flag=True, default=False, help="Skip sections built from the index.")
@click.option("--explain", is_flag=True, default=False, help="Show phase, score and breakdown.")
@click.option("--preview", is_flag=True, default=False, help="Show the manifest without bodies.")
@click.option("--list-sections", is_flag=True, default=False, help="List catalog sections and exit.")
@click.option(
    "--list-presets",
    is_flag=True,
    default=False,
    help="List weight presets and exit (with --list-sections, one JSON object under --format json).",
)
@click.option(
    "--catalog",
    "catalog_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Catalog override file (default: .primerloom/primer.yml).",
)
@click.option(
    "--cache",
    "cache_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Index cache (default: .primerloom/cache.json).",
)
@click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: current directory).",
)
def primer(
    *,
    budget: int | None,
    fmt: str | None,
    preset: str | None,
    weights: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    categories: str | None,
    capabilities: str | None,
    no_dynamic: bool,
    explain: bool,
    preview: bool,
    list_sections: bool,
    list_presets: bool,
    catalog_path: Path | None,
    cache_path: Path | None,
    project: Path | None,
) -> None:
    """Select a token-bounded primer for the current project.

    Exit codes: 0 = primer written (possibly over budget, see warnings),
    2 = rejected invocation (bad catalog, budget, preset, filter or format).
    """
    from primerloom.infrastructure.config import load_primer_defaults
    from primerloom.primer.engine import (
        PrimerError,
        PrimerRequest,
        load_catalog_for,
        render_primer,
        run_primer,
    )
    from primerloom.primer.filters import FilterOptions
    from primerloom.primer.scoring import parse_weight_string

    project_root = project or Path.cwd()
    defaults = load_primer_defaults(project_root)
    output_fmt = fmt or defaults.format

    if list_sections or list_presets:
        try:
            catalog = load_catalog_for(project_root, catalog_path)
        except PrimerError as exc:
            _fail(exc, output_fmt)
            return
        _print_listings(catalog, output_fmt, sections=list_sections, presets=list_presets)
        return

    try:
        custom_weights = parse_weight_string(weights) if weights is not None else None
    except ValueError as exc:
        _fail(PrimerError(str(exc), kind="preset", value=weights), output_fmt)
        return

    request = PrimerRequest(
        budget=budget if budget is not None else defaults.budget,
        preset=preset or defaults.preset,
        weights=custom_weights,
        filters=FilterOptions(
            categories=_split_csv(categories),
            include=include,
            exclude=exclude,
            capabilities=(
                _split_csv(capabilities) if capabilities is not None else defaults.capabilities
            ),
        ),
        no_dynamic=no_dynamic,
    )

    try:
        result = run_primer(project_root, request, catalog_path=catalog_path, cache_path=cache_path)
        output = render_primer(result, output_fmt, explain=explain, preview=preview)
    except PrimerError as exc:
        _fail(exc, output_fmt)
        return

    click.echo(output)
