"""High-level entry point wiring config, cache, registry, resolver and composer."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from stackforge.cache import CacheManager
from stackforge.composer.composer import TemplateComposer
from stackforge.composer.models import CompositionResult
from stackforge.config import Config
from stackforge.errors import ConflictError
from stackforge.registry.registry import ModuleRegistry, RegistrySnapshot
from stackforge.registry.sources import (
    BuiltinSource,
    DirectorySource,
    EnvironmentSource,
    ModuleSource,
)
from stackforge.resolver.models import ResolutionResult, StackSuggestions
from stackforge.resolver.resolver import DependencyResolver, Selection
from stackforge.resolver.suggestions import StackAdvisor
from stackforge.versioning.manager import VersionManager

logger = logging.getLogger(__name__)

PROJECT_DIR_PRIORITY = 10
PLUGIN_DIR_PRIORITY = 20
USER_DIR_PRIORITY = 30


class ProjectReport(BaseModel):
    """Resolution and composition outcome of :meth:`Stackforge.create_project`."""

    resolution: ResolutionResult
    composition: CompositionResult


class Stackforge:
    """Owns one registry and the components that work against it.

    Args:
        config: Engine configuration; defaults to :class:`Config` defaults.
        sources: Additional module sources (e.g. an ``InMemorySource``).
    """

    def __init__(self, config: Optional[Config] = None, sources: Iterable[ModuleSource] = ()) -> None:
        self.config = config or Config()
        cache_cfg = self.config.cache
        self.cache: Optional[CacheManager] = (
            CacheManager(cache_cfg.max_bytes, cache_cfg.max_entries, cache_cfg.disk_dir, cache_cfg.ttl)
            if cache_cfg.enabled
            else None
        )
        self.registry = ModuleRegistry(
            [*self.default_sources(), *sources],
            cache=self.cache,
            exclusive_categories=self.config.registry.exclusive_categories,
        )
        self.versions = VersionManager(self.config.registry.package_catalog)
        self.resolver = DependencyResolver(self.registry, self.versions, self.cache)
        self.advisor = StackAdvisor(self.resolver)
        self.composer = TemplateComposer()
        self._loaded = False

    def default_sources(self) -> list[ModuleSource]:
        """Sources implied by the configuration, highest priority first."""
        reg = self.config.registry
        sources: list[ModuleSource] = [EnvironmentSource(reg.env_var, cache=self.cache)]
        if reg.include_user_dirs:
            sources.append(
                DirectorySource(reg.project_dir, name="project", priority=PROJECT_DIR_PRIORITY, cache=self.cache)
            )
        for index, directory in enumerate(reg.plugin_dirs):
            sources.append(
                DirectorySource(
                    directory,
                    name=f"plugin:{directory}",
                    priority=PLUGIN_DIR_PRIORITY + index,
                    cache=self.cache,
                )
            )
        if reg.include_user_dirs:
            sources.append(
                DirectorySource(reg.user_dir, name="user", priority=USER_DIR_PRIORITY, cache=self.cache)
            )
        if reg.include_builtin:
            sources.append(BuiltinSource(cache=self.cache))
        return sources

    async def load(self, force: bool = False) -> RegistrySnapshot:
        """Discover modules once (or again with ``force``)."""
        if force or not self._loaded:
            await self.registry.discover()
            self._loaded = True
        return self.registry.snapshot()

    def resolve(self, selection: Selection, **options: Any) -> ResolutionResult:
        """Resolve with configured defaults; explicit non-``None`` options win."""
        merged = self.config.resolver.options()
        merged.update({key: value for key, value in options.items() if value is not None})
        return self.resolver.resolve(selection, **merged)

    def suggest(self, selection: Selection, limit: Optional[int] = None, **options: Any) -> StackSuggestions:
        """Modules and presets that would complete *selection*."""
        merged = self.config.resolver.options()
        merged.update({key: value for key, value in options.items() if value is not None})
        return self.advisor.suggest_stack(selection, limit, **merged)

    async def create_project(
        self,
        selection: Selection,
        project_path: str | Path,
        variables: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> ProjectReport:
        """Resolve *selection* and compose the project under *project_path*.

        Raises:
            ConflictError: Resolution produced conflicts and conflicts are not
                allowed.
        """
        await self.load()
        resolution = self.resolve(selection, **options)
        if not resolution.order and resolution.conflicts:
            raise ConflictError(resolution.conflicts, resolution.suggestions)
        composition = await self.composer.compose_async(
            resolution.order, project_path, variables, resolution.resolved_versions
        )
        return ProjectReport(resolution=resolution, composition=composition)
