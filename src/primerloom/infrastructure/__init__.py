"""Infrastructure domain: project configuration."""

from primerloom.infrastructure.config import PrimerDefaults, load_primer_defaults

__all__ = [
    "PrimerDefaults",
    "load_primer_defaults",
]
