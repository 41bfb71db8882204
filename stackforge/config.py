"""stackforge configuration.

Centralised, typed configuration for the engine.  All settings use Pydantic v2
models so they can be validated at construction time and serialised to/from
JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from stackforge.cache import DEFAULT_MAX_BYTES
from stackforge.modules.models import Category
from stackforge.registry.registry import DEFAULT_EXCLUSIVE_CATEGORIES
from stackforge.resolver.models import ConflictResolution


class CacheConfig(BaseModel):
    """Bounds and disk location for the shared cache."""

    enabled: bool = Field(default=True)
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, ge=1024, description="In-memory budget in bytes")
    max_entries: Optional[int] = Field(default=None, ge=1)
    ttl: Optional[float] = Field(default=None, gt=0, description="Default entry lifetime in seconds; None never expires")
    disk_dir: Optional[Path] = Field(
        default=None, description="Directory for persistent entries; None keeps the cache in memory"
    )


class RegistryConfig(BaseModel):
    """Where modules come from and which categories are exclusive."""

    include_builtin: bool = Field(default=True)
    include_user_dirs: bool = Field(
        default=True, description="Read the project and user module directories below"
    )
    project_dir: Path = Field(default=Path("stackforge-modules"))
    user_dir: Path = Field(default=Path("~/.stackforge/modules"))
    plugin_dirs: list[Path] = Field(
        default_factory=list, description="Extra module directories, highest priority first"
    )
    env_var: str = Field(
        default="STACKFORGE_MODULES_PATH",
        description="Environment variable listing override module directories",
    )
    exclusive_categories: list[Category] = Field(
        default_factory=lambda: sorted(DEFAULT_EXCLUSIVE_CATEGORIES, key=lambda c: c.value)
    )
    package_catalog: dict[str, list[str]] = Field(
        default_factory=dict, description="Known available versions per package"
    )


class ResolverConfig(BaseModel):
    """Default options for every resolution."""

    max_depth: Optional[int] = Field(default=None, ge=0)
    conflict_resolution: ConflictResolution = Field(default=ConflictResolution.FAIL)
    allow_conflicts: bool = Field(default=False)
    include_dev: bool = Field(default=False)

    def options(self) -> dict[str, Any]:
        """Keyword arguments for :meth:`DependencyResolver.resolve`."""
        return {
            "max_depth": self.max_depth,
            "conflict_resolution": self.conflict_resolution,
            "allow_conflicts": self.allow_conflicts,
            "include_dev": self.include_dev,
        }


class Config(BaseModel):
    """Global stackforge configuration.

    Instances are typically created once by the CLI or by
    :class:`stackforge.engine.Stackforge` and passed down from there.
    """

    cache: CacheConfig = Field(default_factory=CacheConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            STACKFORGE_PLUGIN_DIRS (``os.pathsep`` separated),
            STACKFORGE_NO_BUILTIN, STACKFORGE_CACHE_DIR,
            STACKFORGE_CACHE_MAX_BYTES, STACKFORGE_CACHE_TTL,
            STACKFORGE_CONFLICT_RESOLUTION,
            STACKFORGE_MAX_DEPTH, STACKFORGE_INCLUDE_DEV,
            STACKFORGE_ALLOW_CONFLICTS.
        """
        cache_kwargs: dict[str, Any] = {}
        if os.environ.get("STACKFORGE_CACHE_DIR"):
            cache_kwargs["disk_dir"] = Path(os.environ["STACKFORGE_CACHE_DIR"])
        if os.environ.get("STACKFORGE_CACHE_MAX_BYTES"):
            cache_kwargs["max_bytes"] = int(os.environ["STACKFORGE_CACHE_MAX_BYTES"])
        if os.environ.get("STACKFORGE_CACHE_TTL"):
            cache_kwargs["ttl"] = float(os.environ["STACKFORGE_CACHE_TTL"])

        registry_kwargs: dict[str, Any] = {}
        if os.environ.get("STACKFORGE_PLUGIN_DIRS"):
            registry_kwargs["plugin_dirs"] = [
                Path(p) for p in os.environ["STACKFORGE_PLUGIN_DIRS"].split(os.pathsep) if p.strip()
            ]
        if _env_flag("STACKFORGE_NO_BUILTIN"):
            registry_kwargs["include_builtin"] = False

        resolver_kwargs: dict[str, Any] = {}
        if os.environ.get("STACKFORGE_CONFLICT_RESOLUTION"):
            resolver_kwargs["conflict_resolution"] = os.environ["STACKFORGE_CONFLICT_RESOLUTION"]
        if os.environ.get("STACKFORGE_MAX_DEPTH"):
            resolver_kwargs["max_depth"] = int(os.environ["STACKFORGE_MAX_DEPTH"])
        if os.environ.get("STACKFORGE_INCLUDE_DEV"):
            resolver_kwargs["include_dev"] = _env_flag("STACKFORGE_INCLUDE_DEV")
        if os.environ.get("STACKFORGE_ALLOW_CONFLICTS"):
            resolver_kwargs["allow_conflicts"] = _env_flag("STACKFORGE_ALLOW_CONFLICTS")

        return cls(
            cache=CacheConfig(**cache_kwargs),
            registry=RegistryConfig(**registry_kwargs),
            resolver=ResolverConfig(**resolver_kwargs),
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")
