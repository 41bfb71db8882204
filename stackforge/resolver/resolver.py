"""Dependency resolution.

Turns a user selection into a dependency-complete, conflict-checked and
topologically ordered module list.  Resolution works from one registry
snapshot taken at the start of the call and is fully deterministic: the
selection is canonicalised to discovery order before anything else happens,
so shuffling the input never changes the result.
"""

from __future__ import annotations

import difflib
import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from stackforge.cache import CacheManager
from stackforge.errors import ConflictError, UnknownModuleError
from stackforge.modules.categories import behavior_for, compatibility_warnings
from stackforge.modules.models import Category, Module
from stackforge.registry.registry import ModuleRegistry, RegistrySnapshot
from stackforge.resolver.graph import DependencyGraph
from stackforge.resolver.models import (
    Conflict,
    ConflictResolution,
    ConflictType,
    MissingRequirement,
    RequirementKind,
    ResolutionResult,
    Suggestion,
)
from stackforge.versioning.manager import VersionManager, VersionRequirement

logger = logging.getLogger(__name__)

Selection = Union[Iterable[str], Mapping[str, Union[str, Iterable[str], None]]]

_KIND_PREFIXES = {"module:": RequirementKind.MODULE, "capability:": RequirementKind.CAPABILITY}


@dataclass
class _Expansion:
    """Working state of one transitive expansion pass."""
    included: dict[str, int] = field(default_factory=dict)
    edges: list[tuple[str, str, str]] = field(default_factory=list)
    missing: list[MissingRequirement] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class DependencyResolver:
    """Resolves module selections against a :class:`ModuleRegistry`.

    Args:
        registry: Registry to resolve against; a snapshot is taken per call.
        version_manager: Used to intersect package version ranges.
        cache: Optional cache for results, keyed by the normalised selection
            signature and the registry generation.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        version_manager: Optional[VersionManager] = None,
        cache: Optional[CacheManager] = None,
    ) -> None:
        self.registry = registry
        self.version_manager = version_manager or VersionManager()
        self.cache = cache
        self._cache_generation: Optional[int] = None

    # -- Public API -------------------------------------------------------------

    def resolve(
        self,
        selection: Selection,
        max_depth: Optional[int] = None,
        conflict_resolution: ConflictResolution | str = ConflictResolution.FAIL,
        allow_conflicts: bool = False,
        include_dev: bool = False,
    ) -> ResolutionResult:
        """Resolve *selection* into an installation order.

        Args:
            selection: Module names, or a ``{category: name}`` mapping.
            max_depth: Limit on breadth-first expansion depth (selected
                modules are depth 0); ``None`` means unbounded.
            conflict_resolution: ``"fail"`` reports exclusive-category rivals
                as conflicts; ``"priority"`` keeps the highest-priority rival.
            allow_conflicts: Return the order even when conflicts exist.
            include_dev: Also expand ``dev_requires`` and check dev
                dependency versions.

        Raises:
            UnknownModuleError: A selected name is not in the registry.
            CircularDependencyError: The requires-graph has a cycle.
        """
        strategy = ConflictResolution(conflict_resolution)
        if max_depth is not None and max_depth < 0:
            raise ValueError("max_depth must be >= 0")

        snapshot = self.registry.snapshot()
        names = self.normalize_selection(selection, snapshot)
        cache_key = self._cache_key(snapshot, names, max_depth, strategy, allow_conflicts, include_dev)

        if self.cache is not None:
            if self._cache_generation != snapshot.generation:
                self.cache.invalidate(prefix="resolve:")
                self._cache_generation = snapshot.generation
            cached = self.cache.get(cache_key)
            if isinstance(cached, ResolutionResult):
                logger.debug("Resolution cache hit for %s", cache_key)
                return cached.model_copy(deep=True)

        result = self._resolve(
            snapshot, names, max_depth, strategy, allow_conflicts, include_dev, cache_key
        )
        if self.cache is not None:
            # Callers get their own copy; the cached one is never handed out.
            self.cache.set(cache_key, result.model_copy(deep=True))
        return result

    def installation_order(self, selection: Selection, **options: Any) -> list[str]:
        """Module names in installation order; raises :class:`ConflictError` on conflicts."""
        result = self.resolve(selection, **options)
        if result.conflicts and not options.get("allow_conflicts"):
            raise ConflictError(result.conflicts, result.suggestions)
        return result.names

    def normalize_selection(
        self, selection: Selection, snapshot: Optional[RegistrySnapshot] = None
    ) -> tuple[str, ...]:
        """Flatten, de-duplicate and canonically order a selection.

        Mapping values may be a name, a list of names or empty.  The result is
        sorted by registry discovery order.
        """
        snapshot = snapshot or self.registry.snapshot()
        if isinstance(selection, str):
            raw: list[str] = [selection]
        elif isinstance(selection, Mapping):
            raw = []
            for value in selection.values():
                if not value:
                    continue
                raw.extend([value] if isinstance(value, str) else list(value))
        else:
            raw = list(selection)

        names: list[str] = []
        for name in raw:
            name = name.strip()
            if name and name not in names:
                names.append(name)
        for name in names:
            if name not in snapshot:
                raise UnknownModuleError(
                    name, difflib.get_close_matches(name, list(snapshot.modules), n=3, cutoff=0.6)
                )
        return tuple(sorted(names, key=snapshot.rank))

    # -- Core -------------------------------------------------------------------

    def _resolve(
        self,
        snapshot: RegistrySnapshot,
        names: tuple[str, ...],
        max_depth: Optional[int],
        strategy: ConflictResolution,
        allow_conflicts: bool,
        include_dev: bool,
        cache_key: str,
    ) -> ResolutionResult:
        suggestions: list[Suggestion] = []
        dropped: dict[str, str] = {}

        # Expand; under the priority strategy drop exclusive-category losers
        # and expand again until the set is stable.
        while True:
            seeds = [name for name in names if name not in dropped]
            expansion = self._expand(snapshot, seeds, dropped, max_depth, include_dev)
            if strategy is not ConflictResolution.PRIORITY:
                break
            rivals = self._exclusive_rivals(snapshot, expansion.included)
            if not rivals:
                break
            for category, winner, losers in rivals:
                for loser in losers:
                    dropped[loser] = winner
                    suggestions.append(
                        Suggestion(
                            type="drop",
                            remove=loser,
                            add=winner,
                            reason=(
                                f"{loser} was dropped: {winner} has higher priority in the "
                                f"exclusive category {category.value}"
                            ),
                        )
                    )
                    logger.info("Dropped %s in favour of %s (%s)", loser, winner, category.value)

        included = sorted(expansion.included, key=snapshot.rank)
        modules = [snapshot.modules[name] for name in included]

        conflicts: list[Conflict] = []
        conflicts.extend(self._category_conflicts(snapshot, expansion.included, suggestions))
        conflicts.extend(self._direct_conflicts(snapshot, included, dropped, suggestions))
        version_conflicts, resolved_versions = self._version_conflicts(modules, include_dev)
        conflicts.extend(version_conflicts)
        for missing in expansion.missing:
            conflicts.append(
                Conflict(
                    type=ConflictType.MISSING,
                    module=missing.module,
                    requires=missing.requires,
                    reason=f"no {missing.kind.value} named '{missing.requires}' is available",
                )
            )
            suggestions.extend(self._missing_suggestions(snapshot, missing, dropped))

        graph = DependencyGraph()
        for name in included:
            graph.add_module(name, snapshot.rank(name))
        for dependent, provider, requirement in expansion.edges:
            if dependent in graph and provider in graph:
                graph.add_dependency(dependent, provider, requirement)
            _, target = parse_requirement(requirement)
            if provider == target:
                continue
            # Every included provider of a capability installs before its requirer.
            for other in snapshot.providers_of(target):
                if other.name != dependent and other.name in graph:
                    graph.add_dependency(dependent, other.name, requirement)
        order_names = graph.topological_order()
        ordered = tuple(snapshot.modules[name] for name in order_names)

        warnings = list(expansion.warnings)
        warnings.extend(compatibility_warnings(list(ordered)))

        success = not conflicts
        if conflicts and not allow_conflicts:
            ordered = ()

        logger.debug(
            "Resolved %s -> %s (%d conflict(s))", list(names), order_names, len(conflicts)
        )
        return ResolutionResult(
            order=ordered,
            conflicts=tuple(conflicts),
            missing=tuple(expansion.missing),
            warnings=tuple(_unique(warnings)),
            suggestions=tuple(_unique(suggestions)),
            resolved_versions=resolved_versions,
            selection=names,
            cache_key=cache_key,
            success=success,
        )

    def _expand(
        self,
        snapshot: RegistrySnapshot,
        seeds: list[str],
        dropped: Mapping[str, str],
        max_depth: Optional[int],
        include_dev: bool,
    ) -> _Expansion:
        state = _Expansion(included={name: 0 for name in seeds})
        queue = deque((name, 0) for name in seeds)

        while queue:
            name, depth = queue.popleft()
            module = snapshot.modules[name]
            requirements = list(module.requires)
            if include_dev:
                requirements.extend(r for r in module.dev_requires if r not in requirements)

            for requirement in requirements:
                kind, target = parse_requirement(requirement)
                provider = self._find_provider(snapshot, name, kind, target, state.included, dropped)
                if provider is None:
                    if kind is None:
                        kind = RequirementKind.MODULE if target in snapshot else RequirementKind.CAPABILITY
                    state.missing.append(MissingRequirement(module=name, requires=target, kind=kind))
                    logger.debug("%s requires %s '%s': no provider", name, kind.value, target)
                    continue
                if provider == name:
                    continue
                if provider not in state.included:
                    if max_depth is not None and depth + 1 > max_depth:
                        state.warnings.append(
                            f"{name} requires '{target}' (provided by {provider}) but expansion "
                            f"stopped at max_depth={max_depth}"
                        )
                        continue
                    state.included[provider] = depth + 1
                    queue.append((provider, depth + 1))
                    logger.debug("Pulled in %s for '%s' required by %s", provider, target, name)
                state.edges.append((name, provider, requirement))
        return state

    def _find_provider(
        self,
        snapshot: RegistrySnapshot,
        requirer: str,
        kind: Optional[RequirementKind],
        target: str,
        included: Mapping[str, int],
        dropped: Mapping[str, str],
    ) -> Optional[str]:
        if kind is not RequirementKind.CAPABILITY and target in snapshot:
            return None if target in dropped else target
        if kind is RequirementKind.MODULE:
            return None

        candidates = [m for m in snapshot.providers_of(target) if m.name not in dropped]
        if not candidates:
            return None
        inside = [m for m in candidates if m.name in included]
        pool = inside or candidates
        best = max(pool, key=lambda m: (m.priority, -snapshot.rank(m.name)))
        return best.name

    # -- Conflict detection -----------------------------------------------------

    @staticmethod
    def _exclusive_rivals(
        snapshot: RegistrySnapshot, included: Iterable[str]
    ) -> list[tuple[Category, str, list[str]]]:
        """``(category, winner, losers)`` for each over-subscribed exclusive category."""
        by_category: dict[Category, list[Module]] = {}
        for name in sorted(included, key=snapshot.rank):
            module = snapshot.modules[name]
            if snapshot.is_exclusive(module.category):
                by_category.setdefault(module.category, []).append(module)

        rivals = []
        for category in sorted(by_category, key=lambda c: c.value):
            members = by_category[category]
            if len(members) < 2:
                continue
            winner = max(members, key=lambda m: (m.priority, -snapshot.rank(m.name)))
            losers = [m.name for m in members if m.name != winner.name]
            rivals.append((category, winner.name, losers))
        return rivals

    def _category_conflicts(
        self,
        snapshot: RegistrySnapshot,
        included: Iterable[str],
        suggestions: list[Suggestion],
    ) -> list[Conflict]:
        conflicts = []
        for category, winner, losers in self._exclusive_rivals(snapshot, included):
            members = sorted([winner, *losers], key=snapshot.rank)
            conflicts.append(
                Conflict(
                    type=ConflictType.CATEGORY,
                    module=members[0],
                    conflicts_with=members[1:],
                    category=category.value,
                    reason=f"{category.value} is exclusive; pick one of {', '.join(members)}",
                )
            )
            for loser in losers:
                suggestions.append(
                    Suggestion(
                        type="drop",
                        remove=loser,
                        add=winner,
                        reason=f"keep {winner} (highest priority) and drop {loser}",
                    )
                )
        return conflicts

    def _direct_conflicts(
        self,
        snapshot: RegistrySnapshot,
        included: list[str],
        dropped: Mapping[str, str],
        suggestions: list[Suggestion],
    ) -> list[Conflict]:
        conflicts = []
        for index, first in enumerate(included):
            for second in included[index + 1:]:
                if not snapshot.incompatible(first, second):
                    continue
                a, b = snapshot.modules[first], snapshot.modules[second]
                declared_by = [m.name for m in (a, b) if m.declares_incompatible((b if m is a else a).name)]
                conflicts.append(
                    Conflict(
                        type=ConflictType.DIRECT,
                        module=first,
                        conflicts_with=[second],
                        reason=f"incompatibility declared by {' and '.join(declared_by)}",
                    )
                )
                replacement = self._replacement(snapshot, second, included, dropped)
                if replacement is not None:
                    suggestions.append(
                        Suggestion(
                            type="replace",
                            remove=second,
                            add=replacement,
                            reason=f"{replacement} fills the same {b.category.value} role and works with {first}",
                        )
                    )
                    continue
                replacement = self._replacement(snapshot, first, included, dropped)
                if replacement is not None:
                    suggestions.append(
                        Suggestion(
                            type="replace",
                            remove=first,
                            add=replacement,
                            reason=f"{replacement} fills the same {a.category.value} role and works with {second}",
                        )
                    )
        return conflicts

    @staticmethod
    def _replacement(
        snapshot: RegistrySnapshot,
        name: str,
        included: list[str],
        dropped: Mapping[str, str],
    ) -> Optional[str]:
        """Best same-category module compatible with everything else in the set."""
        module = snapshot.modules[name]
        others = [other for other in included if other != name]
        candidates = sorted(
            snapshot.by_category(module.category),
            key=lambda m: (-m.priority, snapshot.rank(m.name)),
        )
        for candidate in candidates:
            if candidate.name == name or candidate.name in included or candidate.name in dropped:
                continue
            if not any(snapshot.incompatible(candidate.name, other) for other in others):
                return candidate.name
        return None

    def _version_conflicts(
        self, modules: list[Module], include_dev: bool
    ) -> tuple[list[Conflict], dict[str, str]]:
        requirements = [
            VersionRequirement(module.name, package, range_)
            for module in modules
            for package, range_ in behavior_for(module.category).dependencies(module, include_dev).items()
        ]
        resolution = self.version_manager.resolve_conflicts(requirements)
        conflicts = []
        for conflict in resolution.conflicts:
            requirers = list(conflict.requirements)
            conflicts.append(
                Conflict(
                    type=ConflictType.VERSION,
                    module=requirers[0],
                    conflicts_with=requirers[1:],
                    package=conflict.package,
                    versions=dict(conflict.requirements),
                    reason=conflict.reason,
                )
            )
        return conflicts, dict(sorted(resolution.resolved.items()))

    @staticmethod
    def _missing_suggestions(
        snapshot: RegistrySnapshot,
        missing: MissingRequirement,
        dropped: Mapping[str, str],
    ) -> list[Suggestion]:
        if missing.requires in dropped:
            return [
                Suggestion(
                    type="add",
                    add=missing.requires,
                    remove=dropped[missing.requires],
                    reason=f"{missing.module} needs {missing.requires}, which was dropped for {dropped[missing.requires]}",
                )
            ]
        dropped_providers = [
            m.name for m in snapshot.providers_of(missing.requires) if m.name in dropped
        ]
        if dropped_providers:
            return [
                Suggestion(
                    type="add",
                    add=dropped_providers[0],
                    reason=f"{dropped_providers[0]} provides '{missing.requires}' needed by {missing.module}",
                )
            ]
        known = list(snapshot.providers) if missing.kind is RequirementKind.CAPABILITY else list(snapshot.modules)
        close = difflib.get_close_matches(missing.requires, known, n=1, cutoff=0.75)
        if close:
            return [
                Suggestion(
                    type="add",
                    add=close[0],
                    reason=f"'{missing.requires}' is unknown; did {missing.module} mean '{close[0]}'?",
                )
            ]
        return []

    @staticmethod
    def _cache_key(
        snapshot: RegistrySnapshot,
        names: Iterable[str],
        max_depth: Optional[int],
        strategy: ConflictResolution,
        allow_conflicts: bool,
        include_dev: bool,
    ) -> str:
        signature = ",".join(sorted(set(names)))
        options = f"depth={max_depth};cr={strategy.value};allow={int(allow_conflicts)};dev={int(include_dev)}"
        return f"resolve:{snapshot.generation}:{signature}|{options}"


def parse_requirement(requirement: str) -> tuple[Optional[RequirementKind], str]:
    """Split an optional ``module:``/``capability:`` prefix off a requirement."""
    for prefix, kind in _KIND_PREFIXES.items():
        if requirement.startswith(prefix):
            return kind, requirement[len(prefix):]
    return None, requirement


def _unique(items):
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
