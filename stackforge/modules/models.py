"""Pydantic v2 models describing a stackforge module.

A module is one tagged record: its ``category`` selects behaviour from the
category table in :mod:`stackforge.modules.categories` instead of a class
hierarchy.  Descriptors may use ``snake_case`` or ``camelCase`` keys; unknown
keys are ignored so newer descriptors still load.
"""

from __future__ import annotations

import re
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Optional, Union

import semantic_version
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Category(str, Enum):
    """Fixed module classification."""
    FRONTEND_FRAMEWORK = "frontend-framework"
    UI_LIBRARY = "ui-library"
    BACKEND_SERVICE = "backend-service"
    BACKEND_FRAMEWORK = "backend-framework"
    AUTH_PROVIDER = "auth-provider"
    STATE_MANAGER = "state-manager"
    DATABASE = "database"
    DEPLOYMENT = "deployment"
    TESTING = "testing"
    OTHER = "other"


class MergeStrategy(str, Enum):
    """How several contributions to one file are combined."""
    REPLACE = "replace"
    MERGE_STRUCTURED = "merge-structured"
    APPEND_UNIQUE = "append-unique"

    @classmethod
    def _missing_(cls, value: object) -> Optional["MergeStrategy"]:
        # Older descriptors spell these differently.
        aliases = {
            "merge": cls.MERGE_STRUCTURED,
            "merge-json": cls.MERGE_STRUCTURED,
            "merge-yaml": cls.MERGE_STRUCTURED,
            "deep-merge": cls.MERGE_STRUCTURED,
            "append": cls.APPEND_UNIQUE,
            "overwrite": cls.REPLACE,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


WILDCARD = "*"

_NAME_RE = re.compile(r"^[A-Za-z0-9@][A-Za-z0-9@/._-]*$")


class _DescriptorModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TemplateSpec(_DescriptorModel):
    """One file contribution declared by a module."""

    content: Union[str, dict[str, Any], list[Any], None] = Field(
        default=None, description="Inline content: text or structured data"
    )
    source: Optional[str] = Field(
        default=None, description="File path relative to the module directory"
    )
    merge: Optional[MergeStrategy] = Field(
        default=None, description="Strategy override for this path"
    )
    priority: Optional[int] = Field(
        default=None, description="Contribution priority; defaults to the module priority"
    )
    template: bool = Field(default=True, description="Render with Jinja2 before merging")
    when: Optional[str] = Field(
        default=None,
        description="Only contribute if this module/capability is resolved ('!x' negates)",
    )

    @model_validator(mode="after")
    def _one_content_source(self) -> "TemplateSpec":
        if self.content is None and self.source is None:
            raise ValueError("template needs either 'content' or 'source'")
        if self.content is not None and self.source is not None:
            raise ValueError("template cannot declare both 'content' and 'source'")
        return self


# ---------------------------------------------------------------------------
# Module
# ---------------------------------------------------------------------------

class Module(_DescriptorModel):
    """A named, versioned unit contributing dependencies and templates."""

    name: str = Field(..., min_length=1, description="Unique module name")
    version: str = Field(..., description="Semantic version")
    category: Category = Field(..., description="Module category")
    description: str = Field(..., description="One-line summary")

    display_name: str = Field(default="", description="Human-readable name")
    tags: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    author: str = Field(default="")

    provides: list[str] = Field(
        default_factory=list, description="Capability tags; always includes the module name"
    )
    requires: list[str] = Field(
        default_factory=list, description="Module names or capability tags"
    )
    dev_requires: list[str] = Field(
        default_factory=list, description="Requirements expanded only with include_dev"
    )
    compatible_with: list[str] = Field(default_factory=list)
    incompatible_with: list[str] = Field(default_factory=list)
    priority: int = Field(default=0, description="Higher wins ties")

    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)
    templates: dict[str, TemplateSpec] = Field(default_factory=dict)
    merge_strategies: dict[str, MergeStrategy] = Field(
        default_factory=dict, description="Per-path strategy overrides for the whole module"
    )
    config_schema: Optional[dict[str, Any]] = Field(default=None)
    default_config: dict[str, Any] = Field(default_factory=dict)
    environment: dict[str, str] = Field(
        default_factory=dict, description="Environment variables the module expects"
    )
    hooks: dict[str, str] = Field(
        default_factory=dict, description="Lifecycle hooks; recorded, never executed"
    )

    # Assigned by the registry, not by descriptor authors.
    source: str = Field(default="", description="Name of the source that supplied the module")
    base_dir: Optional[Path] = Field(default=None, description="Directory holding template files")

    @model_validator(mode="before")
    @classmethod
    def _provide_own_name(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        name = data.get("name")
        if not isinstance(name, str) or not name:
            return data
        provides = data.get("provides") or []
        if isinstance(provides, (list, tuple)) and name not in provides:
            data = {**data, "provides": [name, *provides]}
        return data

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(
                f"module name '{value}' may only contain letters, digits, '@', '/', '.', '_' and '-'"
            )
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        try:
            return str(semantic_version.Version(value))
        except ValueError:
            pass
        try:
            return str(semantic_version.Version.coerce(value))
        except ValueError as exc:
            raise ValueError(f"'{value}' is not a semantic version") from exc

    @field_validator("templates", mode="before")
    @classmethod
    def _expand_template_shorthand(cls, value: Any) -> Any:
        # "path": "text" is shorthand for "path": {"content": "text"}
        if isinstance(value, dict):
            return {
                path: {"content": spec} if isinstance(spec, str) else spec
                for path, spec in value.items()
            }
        return value

    # -- Convenience --------------------------------------------------------

    @property
    def label(self) -> str:
        return self.display_name or self.name

    def provides_capability(self, capability: str) -> bool:
        return capability in self.provides

    def declares_incompatible(self, other: str) -> bool:
        """``True`` if this module lists *other* (or the wildcard) as incompatible.

        An explicit ``compatible_with`` entry overrides a wildcard
        ``incompatible_with``.
        """
        if other == self.name:
            return False
        if other in self.incompatible_with:
            return True
        return WILDCARD in self.incompatible_with and other not in self.compatible_with

    def declares_compatible(self, other: str) -> bool:
        if other == self.name or other in self.compatible_with:
            return True
        return WILDCARD in self.compatible_with and other not in self.incompatible_with

    def strategy_override(self, path: str) -> Optional[MergeStrategy]:
        """Declared strategy for *path*.

        Template-level ``merge`` wins, then an exact module-level entry, then
        the first module-level glob pattern (``src/**/*``) matching the path.
        """
        spec = self.templates.get(path)
        if spec is not None and spec.merge is not None:
            return spec.merge
        if path in self.merge_strategies:
            return self.merge_strategies[path]
        for pattern, strategy in self.merge_strategies.items():
            if fnmatchcase(path, pattern):
                return strategy
        return None

    def with_origin(self, source: str, base_dir: Optional[Path]) -> "Module":
        return self.model_copy(update={"source": source, "base_dir": base_dir})
