"""The module registry.

Single source of truth for which modules exist.  Sources are read
concurrently and merged by fixed source priority.  Indices live in an
immutable :class:`RegistrySnapshot` that is swapped wholesale on every change,
so a resolution working from a snapshot never sees a concurrent reload.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Optional

import yaml

from stackforge.cache import CacheManager
from stackforge.errors import ModuleValidationError, UnknownModuleError
from stackforge.modules.models import Category, Module
from stackforge.modules.validation import security_warnings, validate_descriptor
from stackforge.registry.search import SearchEngine, SearchHit
from stackforge.registry.sources import ModuleSource, RawDescriptor

logger = logging.getLogger(__name__)

DEFAULT_EXCLUSIVE_CATEGORIES: frozenset[Category] = frozenset(
    {
        Category.FRONTEND_FRAMEWORK,
        Category.BACKEND_FRAMEWORK,
        Category.BACKEND_SERVICE,
        Category.STATE_MANAGER,
    }
)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompatibilityEntry:
    """Resolved compatibility of one module against every known module."""

    name: str
    compatible: frozenset[str]
    incompatible: frozenset[str]


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the registry at one generation."""

    generation: int = 0
    modules: Mapping[str, Module] = field(default_factory=lambda: MappingProxyType({}))
    ranks: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    categories: Mapping[Category, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    providers: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    exclusive_categories: frozenset[Category] = DEFAULT_EXCLUSIVE_CATEGORIES

    def get(self, name: str) -> Optional[Module]:
        return self.modules.get(name)

    def rank(self, name: str) -> int:
        """Discovery rank; unknown names sort last."""
        return self.ranks.get(name, len(self.ranks))

    def names(self) -> list[str]:
        return sorted(self.modules, key=self.rank)

    def by_category(self, category: Category | str) -> list[Module]:
        return [self.modules[name] for name in self.categories.get(Category(category), ())]

    def providers_of(self, capability: str) -> list[Module]:
        """Modules providing *capability*, in discovery order."""
        return [self.modules[name] for name in self.providers.get(capability, ())]

    def is_exclusive(self, category: Category | str) -> bool:
        return Category(category) in self.exclusive_categories

    def incompatible(self, first: str, second: str) -> bool:
        """Symmetric: ``True`` if either module declares the other incompatible."""
        a, b = self.modules.get(first), self.modules.get(second)
        if a is None or b is None or first == second:
            return False
        return a.declares_incompatible(second) or b.declares_incompatible(first)

    def compatibility(self, name: str) -> CompatibilityEntry:
        """Expand wildcards against the modules known right now."""
        module = self.modules[name]
        incompatible = frozenset(other for other in self.modules if self.incompatible(name, other))
        compatible = frozenset(
            other for other in self.modules
            if other != name and other not in incompatible and module.declares_compatible(other)
        )
        return CompatibilityEntry(name, compatible, incompatible)

    def __contains__(self, name: object) -> bool:
        return name in self.modules

    def __iter__(self) -> Iterator[Module]:
        return (self.modules[name] for name in self.names())

    def __len__(self) -> int:
        return len(self.modules)


# ---------------------------------------------------------------------------
# ModuleRegistry
# ---------------------------------------------------------------------------

class ModuleRegistry:
    """Discovers, validates and indexes modules from ranked sources.

    Args:
        sources: Module sources; lower ``priority`` wins on name clashes.
        cache: Shared cache, also handed to the search engine.
        exclusive_categories: Categories where at most one module may be
            selected.  Categories not listed are non-exclusive.
    """

    def __init__(
        self,
        sources: Iterable[ModuleSource] = (),
        cache: Optional[CacheManager] = None,
        exclusive_categories: Iterable[Category | str] = DEFAULT_EXCLUSIVE_CATEGORIES,
    ) -> None:
        self._sources: list[ModuleSource] = list(sources)
        self.cache = cache
        self.exclusive_categories = frozenset(Category(c) for c in exclusive_categories)
        self.search_engine = SearchEngine(cache=cache)
        self.warnings: list[str] = []
        self.errors: list[ModuleValidationError] = []
        self._origins: dict[str, tuple[ModuleSource, str]] = {}
        self._lock = threading.RLock()
        self._state = RegistrySnapshot(exclusive_categories=self.exclusive_categories)

    # -- Sources ---------------------------------------------------------------

    @property
    def sources(self) -> list[ModuleSource]:
        """Sources in merge order (priority, then registration order)."""
        indexed = sorted(enumerate(self._sources), key=lambda pair: (pair[1].priority, pair[0]))
        return [source for _, source in indexed]

    def add_source(self, source: ModuleSource) -> None:
        self._sources.append(source)

    # -- Discovery -------------------------------------------------------------

    async def discover(self) -> RegistrySnapshot:
        """Read every source concurrently, then merge in source-priority order."""
        sources = self.sources
        results = await asyncio.gather(
            *(asyncio.to_thread(self._read_source, source) for source in sources)
        )

        modules: list[Module] = []
        seen: dict[str, Module] = {}
        origins: dict[str, tuple[ModuleSource, str]] = {}
        warnings: list[str] = []
        errors: list[ModuleValidationError] = []

        for source, raws in zip(sources, results):
            for raw in raws:
                module = self._accept(source, raw, errors)
                if module is None:
                    continue
                existing = seen.get(module.name)
                if existing is not None:
                    message = (
                        f"Module '{module.name}' from {source.name} ({raw.origin}) is shadowed "
                        f"by the definition from {existing.source}"
                    )
                    logger.info(message)
                    warnings.append(message)
                    continue
                seen[module.name] = module
                origins[module.name] = (source, raw.origin)
                modules.append(module)
                warnings.extend(security_warnings(module))

        with self._lock:
            self.warnings = warnings
            self.errors = errors
            self._origins = origins
            self._state = self._build_snapshot(modules, self._state.generation + 1)
            self.search_engine.build(modules, generation=self._state.generation)

        logger.info(
            "Discovered %d module(s) from %d source(s); %d rejected",
            len(modules), len(sources), len(errors),
        )
        return self._state

    def _read_source(self, source: ModuleSource) -> list[RawDescriptor]:
        try:
            return source.load()
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.warning("Module source %s failed to load: %s", source.name, exc)
            return [RawDescriptor(None, source.name, error=f"source failed to load: {exc}")]

    def _accept(
        self,
        source: ModuleSource,
        raw: RawDescriptor,
        errors: list[ModuleValidationError],
    ) -> Optional[Module]:
        if raw.error is not None:
            error = ModuleValidationError(raw.name, problems=[raw.error], origin=raw.origin)
            logger.warning(str(error))
            errors.append(error)
            return None
        try:
            module = self.validate(raw.data, origin=raw.origin)
        except ModuleValidationError as exc:
            logger.warning(str(exc))
            errors.append(exc)
            return None
        return module.with_origin(source.name, raw.base_dir)

    def validate(self, descriptor: Any, origin: Optional[str] = None) -> Module:
        """Validate a descriptor; raises :class:`ModuleValidationError`."""
        return validate_descriptor(descriptor, origin=origin)

    async def reload_module(self, name: str) -> Optional[Module]:
        """Re-read one module's descriptor and update only its index entries.

        Sources are consulted in priority order, starting with the one that
        supplied the current definition's origin path.  Returns the new
        module, or ``None`` if it no longer exists or is now invalid.
        """
        origin = self._origins.get(name)
        found: Optional[tuple[ModuleSource, RawDescriptor]] = None
        for source in self.sources:
            hint = origin[1] if origin and origin[0] is source else None
            raw = await asyncio.to_thread(source.load_one, name, hint)
            if raw is not None:
                found = (source, raw)
                break

        errors: list[ModuleValidationError] = []
        module = self._accept(found[0], found[1], errors) if found else None

        with self._lock:
            self.errors = [e for e in self.errors if e.name != name] + errors
            old = self._state.modules.get(name)
            if module is None:
                if old is None:
                    return None
                self._origins.pop(name, None)
            else:
                self._origins[name] = (found[0], found[1].origin)
            self._state = self._replace_module(old, module)
            if module is None:
                self.search_engine.remove(name, generation=self._state.generation)
            else:
                self.search_engine.update(module, generation=self._state.generation)

        logger.info("Reloaded module %s (generation %d)", name, self._state.generation)
        return module

    # -- Index building (copy-on-write) -----------------------------------------

    def _build_snapshot(self, modules: list[Module], generation: int) -> RegistrySnapshot:
        by_name = {module.name: module for module in modules}
        ranks = {module.name: index for index, module in enumerate(modules)}
        categories: dict[Category, list[str]] = {}
        providers: dict[str, list[str]] = {}
        for module in modules:
            categories.setdefault(module.category, []).append(module.name)
            for capability in module.provides:
                providers.setdefault(capability, []).append(module.name)
        return RegistrySnapshot(
            generation=generation,
            modules=MappingProxyType(by_name),
            ranks=MappingProxyType(ranks),
            categories=MappingProxyType({k: tuple(v) for k, v in categories.items()}),
            providers=MappingProxyType({k: tuple(v) for k, v in providers.items()}),
            exclusive_categories=self.exclusive_categories,
        )

    def _replace_module(self, old: Optional[Module], new: Optional[Module]) -> RegistrySnapshot:
        state = self._state
        modules = dict(state.modules)
        ranks = dict(state.ranks)
        categories = dict(state.categories)
        providers = dict(state.providers)
        name = (new or old).name  # type: ignore[union-attr]

        if old is not None:
            del modules[name]
            categories[old.category] = tuple(n for n in categories.get(old.category, ()) if n != name)
            for capability in old.provides:
                providers[capability] = tuple(n for n in providers.get(capability, ()) if n != name)
        if new is None:
            ranks.pop(name, None)
        else:
            modules[name] = new
            ranks.setdefault(name, max(ranks.values(), default=-1) + 1)

            def _insert(names: tuple[str, ...]) -> tuple[str, ...]:
                return tuple(sorted((*names, name), key=lambda n: ranks[n]))

            categories[new.category] = _insert(categories.get(new.category, ()))
            for capability in new.provides:
                providers[capability] = _insert(providers.get(capability, ()))

        return RegistrySnapshot(
            generation=state.generation + 1,
            modules=MappingProxyType(modules),
            ranks=MappingProxyType(ranks),
            categories=MappingProxyType({k: v for k, v in categories.items() if v}),
            providers=MappingProxyType({k: v for k, v in providers.items() if v}),
            exclusive_categories=state.exclusive_categories,
        )

    # -- Queries ---------------------------------------------------------------

    def snapshot(self) -> RegistrySnapshot:
        """The current immutable view; safe to hold across reloads."""
        return self._state

    @property
    def generation(self) -> int:
        return self._state.generation

    def get(self, name: str) -> Optional[Module]:
        return self._state.get(name)

    def require(self, name: str) -> Module:
        """Like :meth:`get` but raises :class:`UnknownModuleError`."""
        module = self._state.get(name)
        if module is None:
            raise UnknownModuleError(name, self.close_matches(name))
        return module

    def close_matches(self, name: str, limit: int = 3) -> list[str]:
        return difflib.get_close_matches(name, list(self._state.modules), n=limit, cutoff=0.6)

    def by_category(self, category: Category | str) -> list[Module]:
        return self._state.by_category(category)

    def search(
        self,
        query: str,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        return self.search_engine.search(query, filters, limit)

    def suggest(self, prefix: str, limit: int = 5) -> list[str]:
        return self.search_engine.suggest(prefix, limit)

    def find_similar(self, name: str, limit: int = 5) -> list[str]:
        return self.search_engine.find_similar(name, limit)

    def compatibility(self, name: str) -> CompatibilityEntry:
        self.require(name)
        return self._state.compatibility(name)

    def incompatibilities(self, name: str, context: Iterable[str]) -> list[str]:
        """Members of *context* that conflict with *name* in either direction."""
        state = self._state
        self.require(name)
        return [other for other in context if state.incompatible(name, other)]

    def compatible_with(self, name: str, context: Iterable[str]) -> bool:
        """``True`` if *name* can sit alongside every module in *context*."""
        return not self.incompatibilities(name, context)

    def is_exclusive(self, category: Category | str) -> bool:
        return Category(category) in self.exclusive_categories

    def names(self) -> list[str]:
        return self._state.names()

    def stats(self) -> dict[str, Any]:
        state = self._state
        by_source: dict[str, int] = {}
        for module in state.modules.values():
            by_source[module.source] = by_source.get(module.source, 0) + 1
        return {
            "modules": len(state),
            "generation": state.generation,
            "by_category": {c.value: len(names) for c, names in sorted(state.categories.items(), key=lambda kv: kv[0].value)},
            "by_source": by_source,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
        }

    def __contains__(self, name: object) -> bool:
        return name in self._state

    def __iter__(self) -> Iterator[Module]:
        return iter(self._state)

    def __len__(self) -> int:
        return len(self._state)
