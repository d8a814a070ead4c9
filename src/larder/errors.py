"""Typed error model with stable status codes.

Every failure surfaced by the resolution, caching and lockfile machinery is a
``LarderError`` subclass. Errors carry a numeric ``status_code`` (suitable for a
process exit status), an optional ``hint`` telling the user how to recover, and
a ``context`` mapping with the structured details needed to render a precise
message. None of them are retried or swallowed internally.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence


class LarderError(Exception):
    """Base error class that carries a status code, hint and context."""

    status_code = 99

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly representation of the error."""
        payload: Dict[str, Any] = {
            "error": type(self).__name__,
            "status_code": self.status_code,
            "message": self.message,
            "context": {k: _plain(v) for k, v in self.context.items()},
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


def _plain(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class ConfigurationError(LarderError):
    """Invalid configuration values or conflicting options."""

    status_code = 117


class NotFound(LarderError):
    """A package, version or ref does not exist anywhere reachable."""

    status_code = 103

    def __init__(
        self,
        message: str,
        *,
        name: Optional[str] = None,
        attempts: Sequence[str] = (),
        hint: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        ctx = dict(context or {})
        if name is not None:
            ctx.setdefault("name", name)
        if attempts:
            ctx["attempts"] = list(attempts)
        super().__init__(message, hint=hint, context=ctx)
        self.name = name
        self.attempts: List[str] = list(attempts)

    def __str__(self) -> str:
        parts = [self.message]
        for attempt in self.attempts:
            parts.append(f"  - {attempt}")
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        return "\n".join(parts)


class TransportError(LarderError):
    """Network or process failure reaching a source. Retryable by the caller."""

    status_code = 104


class GitNotFound(TransportError):
    """The git executable is not available."""

    def __init__(self) -> None:
        super().__init__(
            "Could not find a Git executable in your path.",
            hint="Install git and add it to your PATH, then try again.",
        )


class ValidationFailure(LarderError):
    """Fetched content failed an integrity or format check."""

    status_code = 121


class InvalidPackageFiles(ValidationFailure):
    """A package contains filenames that break downstream tooling."""

    status_code = 132

    def __init__(self, name: str, files: Iterable[str]) -> None:
        self.files = sorted(files)
        super().__init__(
            f"The package '{name}' has invalid filenames:\n\n  "
            + "\n  ".join(self.files),
            hint="Spaces are not a valid character in filenames.",
            context={"name": name, "files": self.files},
        )


class InvalidDescriptor(ValidationFailure):
    """A package descriptor is missing fields or is not valid JSON."""


class InvalidGitUri(ValidationFailure):
    """A git location was declared with an unusable URI."""

    status_code = 110

    def __init__(self, uri: str) -> None:
        super().__init__(f"'{uri}' is not a valid Git URI.", context={"uri": uri})
        self.uri = uri


class InvalidVersionConstraint(LarderError):
    """A version or constraint expression could not be parsed."""

    status_code = 122


class DuplicateRequirement(LarderError):
    """The manifest declares the same name twice in overlapping groups."""

    status_code = 105


class DuplicateLocation(LarderError):
    """The same default location was registered twice."""

    status_code = 102


class AmbiguousLocation(LarderError):
    """Two requirements declare different sources for one name."""

    status_code = 114


class NoSolution(LarderError):
    """The accumulated constraints for a package cannot all be satisfied."""

    status_code = 106

    def __init__(self, name: str, chain: Sequence[Any], *, reason: Optional[str] = None) -> None:
        self.name = name
        self.chain = list(chain)
        lines = [f"Unable to find a version of '{name}' satisfying every constraint:"]
        lines.extend(f"  {demand}" for demand in self.chain)
        if reason:
            lines.append(reason)
        super().__init__(
            "\n".join(lines),
            hint=f"Relax one of the constraints on '{name}' listed above.",
            context={"name": name, "chain": [str(d) for d in self.chain]},
        )


class OutdatedSourceConflict(LarderError):
    """A locked version no longer satisfies the manifest constraint."""

    status_code = 128

    def __init__(self, name: str, locked_version: Any, constraint: Any) -> None:
        self.name = name
        self.locked_version = locked_version
        self.constraint = constraint
        message = "\n".join(
            [
                f"Could not find compatible versions for package '{name}':",
                "  In manifest:",
                f"    {name} ({constraint})",
                "",
                "  In lockfile:",
                f"    {name} ({locked_version})",
            ]
        )
        super().__init__(
            message,
            hint=(
                f"Try updating '{name}', which will look for a version "
                f"matching '{constraint}' and rewrite its lock entry."
            ),
            context={
                "name": name,
                "locked_version": str(locked_version),
                "constraint": str(constraint),
            },
        )


class LockfileError(LarderError):
    """The lockfile on disk cannot be parsed or is inconsistent."""

    status_code = 113
