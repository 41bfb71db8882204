"""Exception hierarchy for stackforge.

Structural problems (bad descriptors, unknown modules, requirement cycles)
are raised.  Conflicts and per-path composition failures are normally carried
as data on the result objects; the exceptions below exist for callers that
want to turn them into hard failures.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any


class StackforgeError(Exception):
    """Base class for every error raised by stackforge."""


class ModuleValidationError(StackforgeError):
    """A module descriptor failed validation.

    ``missing`` lists every required field that was absent; ``problems``
    holds the remaining human-readable messages (bad types, bad enum values,
    invalid config schema).
    """

    def __init__(
        self,
        name: str | None,
        missing: Iterable[str] = (),
        problems: Iterable[str] = (),
        origin: str | None = None,
    ) -> None:
        self.name = name
        self.missing = list(missing)
        self.problems = list(problems)
        self.origin = origin

        label = name or "<unnamed>"
        parts: list[str] = []
        if self.missing:
            parts.append("missing required field(s): " + ", ".join(self.missing))
        parts.extend(self.problems)
        message = f"Invalid module descriptor '{label}'"
        if origin:
            message += f" ({origin})"
        if parts:
            message += ": " + "; ".join(parts)
        super().__init__(message)


class UnknownModuleError(StackforgeError, LookupError):
    """An explicitly requested module name is not in the registry."""

    def __init__(self, name: str, suggestions: Sequence[str] = ()) -> None:
        self.name = name
        self.suggestions = list(suggestions)
        message = f"Module '{name}' not found in registry"
        if self.suggestions:
            message += f" (did you mean: {', '.join(self.suggestions)}?)"
        super().__init__(message)


class CircularDependencyError(StackforgeError):
    """The requires-graph contains a cycle.

    ``cycle`` is the closed path, e.g. ``["a", "b", "c", "a"]``.
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency detected: {' -> '.join(self.cycle)}")

    @property
    def members(self) -> set[str]:
        """The distinct modules that take part in the cycle."""
        return set(self.cycle)


class ConflictError(StackforgeError):
    """Raised on demand for a resolution that carries conflicts."""

    def __init__(self, conflicts: Sequence[Any], suggestions: Sequence[Any] = ()) -> None:
        self.conflicts = list(conflicts)
        self.suggestions = list(suggestions)
        lines = [getattr(c, "describe", lambda: str(c))() for c in self.conflicts]
        super().__init__(
            f"{len(self.conflicts)} conflict(s) in module selection: " + "; ".join(lines)
        )


class CompositionError(StackforgeError):
    """Base class for template composition failures."""


class MergeConflictError(CompositionError):
    """Contributions to one path declare incompatible merge strategies."""

    def __init__(self, path: str, strategies: dict[str, str]) -> None:
        self.path = path
        self.strategies = dict(strategies)
        detail = ", ".join(f"{module}={strategy}" for module, strategy in self.strategies.items())
        super().__init__(f"Incompatible merge strategies for '{path}': {detail}")


class ProjectDirectoryError(CompositionError):
    """The target project directory cannot be created or written to."""


class CacheError(StackforgeError):
    """Disk-backed cache I/O failed."""
