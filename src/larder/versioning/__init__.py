"""Version and constraint model."""

from .models import Constraint, Operator, Requirement, normalize_groups, satisfies_all
from .parser import parse_constraint, parse_version

__all__ = [
    "Constraint",
    "Operator",
    "Requirement",
    "normalize_groups",
    "satisfies_all",
    "parse_constraint",
    "parse_version",
]
