"""Project defaults for the primer command, read from ``.primerloom/config.yml``.

Example::

    primer:
      budget: 4000
      preset: safe
      format: compact
      capabilities: [shell, mcp]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import yaml

from primerloom.primer.models import OUTPUT_FORMATS

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yml"
DEFAULT_BUDGET = 2000


@dataclass(frozen=True)
class PrimerDefaults:
    """Fallback values for options not given on the command line."""

    budget: int = DEFAULT_BUDGET
    preset: str = "balanced"
    format: str = "markdown"
    capabilities: frozenset[str] | None = None


def load_primer_defaults(project_root: Path) -> PrimerDefaults:
    """Load defaults from the ``primer`` section of ``config.yml``.

    Falls back to built-in defaults for a missing file, a missing section,
    or any key with an invalid value.  Never raises.
    """
    config_path = project_root / ".primerloom" / CONFIG_FILE
    if not config_path.is_file():
        return PrimerDefaults()

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s, using default primer settings", config_path)
        return PrimerDefaults()

    if not isinstance(data, dict):
        return PrimerDefaults()
    section = data.get("primer")
    if not isinstance(section, dict):
        return PrimerDefaults()

    kwargs: dict[str, object] = {}

    budget = section.get("budget")
    if budget is not None:
        if isinstance(budget, int) and not isinstance(budget, bool) and budget > 0:
            kwargs["budget"] = budget
        else:
            logger.warning("Ignoring invalid primer.budget %r in %s", budget, CONFIG_FILE)

    preset = section.get("preset")
    if preset is not None:
        if isinstance(preset, str) and preset:
            kwargs["preset"] = preset
        else:
            logger.warning("Ignoring invalid primer.preset %r in %s", preset, CONFIG_FILE)

    fmt = section.get("format")
    if fmt is not None:
        if fmt in OUTPUT_FORMATS:
            kwargs["format"] = fmt
        else:
            logger.warning("Ignoring invalid primer.format %r in %s", fmt, CONFIG_FILE)

    capabilities = section.get("capabilities")
    if capabilities is not None:
        if isinstance(capabilities, list) and all(isinstance(c, str) for c in capabilities):
            kwargs["capabilities"] = frozenset(capabilities)
        else:
            logger.warning("Ignoring invalid primer.capabilities %r in %s", capabilities, CONFIG_FILE)

    return PrimerDefaults(**kwargs)  # type: ignore[arg-type]
