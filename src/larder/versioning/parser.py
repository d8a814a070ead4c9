"""Parsing utilities for version and constraint expressions."""

import re
from typing import Optional, Union

import semantic_version

from larder.errors import InvalidVersionConstraint
from .models import Constraint, Operator

_CONSTRAINT_RE = re.compile(r"^\s*(~>|>=|<=|=|>|<)?\s*(\S+)\s*$")
_ANY_TOKENS = ("", "*", "any", "latest")


def parse_version(raw: Union[str, semantic_version.Version]) -> semantic_version.Version:
    """Parse a possibly partial version string ("1", "1.2", "1.2.3-rc.1").

    Raises:
        InvalidVersionConstraint: If the string is not a version.
    """
    if isinstance(raw, semantic_version.Version):
        return raw
    text = str(raw).strip()
    if text.startswith("v"):
        text = text[1:]
    try:
        return semantic_version.Version.coerce(text)
    except ValueError as exc:
        raise InvalidVersionConstraint(f"Invalid version '{raw}'") from exc


def _precision(version_text: str) -> int:
    numeric = re.split(r"[-+]", version_text, maxsplit=1)[0]
    return min(3, len([p for p in numeric.split(".") if p]))


def parse_constraint(raw: Optional[Union[str, Constraint]]) -> Constraint:
    """Parse a constraint expression such as ``~> 1.2.0`` or ``>= 1.0``.

    ``None``, empty strings, ``*`` and ``>= 0.0.0`` all mean "any version". A
    bare version is treated as an equality constraint.

    Raises:
        InvalidVersionConstraint: If the expression cannot be parsed.
    """
    if isinstance(raw, Constraint):
        return raw
    if raw is None or str(raw).strip().lower() in _ANY_TOKENS:
        return Constraint.any()
    m = _CONSTRAINT_RE.match(str(raw))
    if not m:
        raise InvalidVersionConstraint(f"Invalid version constraint '{raw}'")
    op_text, version_text = m.group(1) or "=", m.group(2)
    version = parse_version(version_text)
    operator = Operator(op_text)
    if operator is Operator.GE and version == semantic_version.Version("0.0.0"):
        return Constraint.any()
    return Constraint(operator, version, _precision(version_text.lstrip("v")))
