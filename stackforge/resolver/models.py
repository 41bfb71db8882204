"""Pydantic v2 models returned by the dependency resolver."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stackforge.errors import ConflictError
from stackforge.modules.models import Module


class ConflictType(str, Enum):
    """Kinds of conflict the resolver reports."""
    CATEGORY = "category"
    DIRECT = "direct"
    VERSION = "version"
    MISSING = "missing"


class RequirementKind(str, Enum):
    MODULE = "module"
    CAPABILITY = "capability"


class ConflictResolution(str, Enum):
    """What to do with rivals in an exclusive category."""
    FAIL = "fail"
    PRIORITY = "priority"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class MissingRequirement(_Frozen):
    """A requirement with no provider anywhere in the registry."""
    module: str = Field(..., description="Module that declared the requirement")
    requires: str = Field(..., description="Module name or capability tag")
    kind: RequirementKind


class Conflict(_Frozen):
    """A structured conflict record."""
    type: ConflictType
    module: str = Field(..., description="Module the conflict is reported against")
    conflicts_with: tuple[str, ...] = ()
    requires: Optional[str] = Field(default=None, description="Unmet requirement (missing)")
    versions: dict[str, str] = Field(
        default_factory=dict, description="Requirer -> requested range (version)"
    )
    package: Optional[str] = Field(default=None, description="Package name (version)")
    category: Optional[str] = Field(default=None, description="Shared category (category)")
    reason: str = Field(default="")

    def describe(self) -> str:
        """One-line, user-facing rendering."""
        if self.type is ConflictType.CATEGORY:
            rivals = ", ".join([self.module, *self.conflicts_with])
            return f"Only one {self.category} module can be selected: {rivals}"
        if self.type is ConflictType.DIRECT:
            return f"{self.module} is incompatible with {', '.join(self.conflicts_with)}"
        if self.type is ConflictType.VERSION:
            wanted = ", ".join(f"{who} wants {rng}" for who, rng in self.versions.items())
            return f"No version of {self.package} satisfies every requirer ({wanted})"
        return f"{self.module} requires '{self.requires}', which no module provides"


class Suggestion(_Frozen):
    """An actionable way out of a conflict."""
    type: str = Field(..., description="'drop', 'replace' or 'add'")
    remove: Optional[str] = Field(default=None)
    add: Optional[str] = Field(default=None)
    reason: str = Field(default="")


class ResolutionResult(_Frozen):
    """Outcome of one resolver invocation.  Immutable once returned."""
    order: tuple[Module, ...] = ()
    conflicts: tuple[Conflict, ...] = ()
    missing: tuple[MissingRequirement, ...] = ()
    warnings: tuple[str, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()
    resolved_versions: dict[str, str] = Field(default_factory=dict)
    selection: tuple[str, ...] = Field(default=(), description="Normalised input selection")
    cache_key: str = ""
    success: bool = True

    @property
    def names(self) -> list[str]:
        """Module names in installation order."""
        return [module.name for module in self.order]

    def conflicts_of(self, kind: ConflictType | str) -> list[Conflict]:
        return [c for c in self.conflicts if c.type == ConflictType(kind)]

    def raise_for_conflicts(self) -> "ResolutionResult":
        """Raise :class:`ConflictError` if any conflict was recorded."""
        if self.conflicts:
            raise ConflictError(self.conflicts, self.suggestions)
        return self


# ---------------------------------------------------------------------------
# Stack suggestions
# ---------------------------------------------------------------------------

class StackPreset(_Frozen):
    """A well-known module combination."""
    id: str
    name: str
    description: str = ""
    modules: tuple[str, ...]
    popularity: int = Field(default=50, ge=0, le=100)
    tags: tuple[str, ...] = ()


class PresetMatch(_Frozen):
    """A preset sharing at least one module with the selection."""
    preset: StackPreset
    match_count: int
    missing_modules: tuple[str, ...] = Field(
        default=(), description="Preset modules not yet selected"
    )


class Recommendation(_Frozen):
    """A module that would round off the selection."""
    module: str
    reason: str
    score: int
    type: str = Field(..., description="'missing-category' or 'requirement'")


class StackSuggestions(_Frozen):
    """Everything :meth:`StackAdvisor.suggest_stack` found for one selection."""
    selection: tuple[str, ...] = ()
    recommended: tuple[Recommendation, ...] = ()
    popular: tuple[PresetMatch, ...] = ()
    compatible: dict[str, tuple[str, ...]] = Field(
        default_factory=dict, description="Category -> modules that resolve cleanly when added"
    )
    alternatives: tuple[Suggestion, ...] = ()
