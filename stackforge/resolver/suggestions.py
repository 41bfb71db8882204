"""Stack suggestions.

Recommends modules that round off a selection: one per core category the
selection leaves empty, well-known combinations it is part of, and every
module that can be added without introducing a conflict.  Advisory only; it
never changes what the resolver returns.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from stackforge.errors import CircularDependencyError
from stackforge.modules.models import Category, Module
from stackforge.registry.registry import RegistrySnapshot
from stackforge.resolver.models import (
    PresetMatch,
    Recommendation,
    StackPreset,
    StackSuggestions,
)
from stackforge.resolver.resolver import DependencyResolver, Selection

logger = logging.getLogger(__name__)

# Categories a complete stack is expected to fill.
CORE_CATEGORIES: tuple[Category, ...] = (
    Category.FRONTEND_FRAMEWORK,
    Category.UI_LIBRARY,
    Category.BACKEND_SERVICE,
)

POPULAR_STACKS: tuple[StackPreset, ...] = (
    StackPreset(
        id="vue-material",
        name="Classic Vue Stack",
        description="Vue 3 with Material Design components",
        modules=("vue3", "vuetify", "supabase"),
        popularity=95,
        tags=("beginner-friendly", "full-stack", "material-design"),
    ),
    StackPreset(
        id="react-modern",
        name="Modern React Stack",
        description="React with utility-first CSS",
        modules=("react", "tailwind", "supabase"),
        popularity=90,
        tags=("modern", "flexible", "performant"),
    ),
    StackPreset(
        id="sveltekit-full",
        name="SvelteKit Full Stack",
        description="SvelteKit with modern auth",
        modules=("sveltekit", "tailwind", "better-auth"),
        popularity=85,
        tags=("cutting-edge", "performant", "ssr"),
    ),
    StackPreset(
        id="vue-minimal",
        name="Minimalist Vue",
        description="Vue 3 with just Tailwind CSS",
        modules=("vue3", "tailwind"),
        popularity=80,
        tags=("minimal", "lightweight", "flexible"),
    ),
)

BASE_SCORE = 50
PRESET_BONUS = 20
COMPATIBLE_BONUS = 10
PROVIDES_BONUS = 15
REQUIREMENT_SCORE = 90


class StackAdvisor:
    """Suggests modules to complete a selection.

    Args:
        resolver: Used to check that each candidate resolves cleanly.
        presets: Known-good combinations; defaults to :data:`POPULAR_STACKS`.
        core_categories: Categories to recommend a module for when empty.
    """

    def __init__(
        self,
        resolver: DependencyResolver,
        presets: Iterable[StackPreset] = POPULAR_STACKS,
        core_categories: Iterable[Category | str] = CORE_CATEGORIES,
    ) -> None:
        self.resolver = resolver
        self.presets = tuple(presets)
        self.core_categories = tuple(Category(c) for c in core_categories)

    def suggest_stack(self, selection: Selection, limit: Optional[int] = None, **options: Any) -> StackSuggestions:
        """Suggestions for *selection*; *options* are passed to :meth:`DependencyResolver.resolve`.

        Raises:
            UnknownModuleError: A selected name is not in the registry.
        """
        snapshot = self.resolver.registry.snapshot()
        names = self.resolver.normalize_selection(selection, snapshot)
        options.pop("allow_conflicts", None)
        base = self.resolver.resolve(names, allow_conflicts=True, **options)
        present = {module.name for module in base.order} | set(names)
        selected = [snapshot.modules[name] for name in names]

        compatible: dict[Category, list[str]] = {}
        for module in snapshot.modules.values():
            if module.name in present:
                continue
            if self._resolves_cleanly([*names, module.name], options):
                compatible.setdefault(module.category, []).append(module.name)
        for members in compatible.values():
            members.sort(key=snapshot.rank)

        recommended = self._category_recommendations(snapshot, selected, present, compatible)
        recommended.extend(
            Recommendation(module=s.add, reason=s.reason, score=REQUIREMENT_SCORE, type="requirement")
            for s in base.suggestions
            if s.type == "add" and s.add is not None
        )
        recommended.sort(key=lambda r: (-r.score, snapshot.rank(r.module)))

        logger.debug("Suggested %d module(s) for %s", len(recommended), list(names))
        return StackSuggestions(
            selection=names,
            recommended=tuple(recommended[:limit] if limit is not None else recommended),
            popular=tuple(self.popular_combinations(names, snapshot)),
            compatible={
                category.value: tuple(members)
                for category, members in sorted(compatible.items(), key=lambda kv: kv[0].value)
            },
            alternatives=tuple(s for s in base.suggestions if s.type != "add"),
        )

    def popular_combinations(
        self, selection: Sequence[str], snapshot: Optional[RegistrySnapshot] = None
    ) -> list[PresetMatch]:
        """Presets sharing a module with *selection*; most overlap, then most popular, first.

        Presets naming a module the registry does not know are skipped.
        """
        snapshot = snapshot or self.resolver.registry.snapshot()
        chosen = set(selection)
        matches = []
        for preset in self.presets:
            if any(name not in snapshot for name in preset.modules):
                continue
            count = sum(1 for name in preset.modules if name in chosen)
            if count:
                matches.append(
                    PresetMatch(
                        preset=preset,
                        match_count=count,
                        missing_modules=tuple(n for n in preset.modules if n not in chosen),
                    )
                )
        matches.sort(key=lambda m: (-m.match_count, -m.preset.popularity, m.preset.id))
        return matches

    def score(self, candidate: Module, selected: Sequence[Module]) -> int:
        """How well *candidate* fits alongside *selected*."""
        names = {module.name for module in selected}
        score = BASE_SCORE
        for preset in self.presets:
            if candidate.name in preset.modules and names.intersection(preset.modules):
                score += PRESET_BONUS
        for module in selected:
            if candidate.name in module.compatible_with:
                score += COMPATIBLE_BONUS
            score += PROVIDES_BONUS * sum(
                1 for requirement in module.requires if candidate.provides_capability(requirement)
            )
        return score

    def _resolves_cleanly(self, names: list[str], options: dict[str, Any]) -> bool:
        try:
            return self.resolver.resolve(names, **options).success
        except CircularDependencyError as exc:
            logger.debug("Skipping %s: %s", names[-1], exc)
            return False

    def _category_recommendations(
        self,
        snapshot: RegistrySnapshot,
        selected: list[Module],
        present: set[str],
        compatible: dict[Category, list[str]],
    ) -> list[Recommendation]:
        filled = {snapshot.modules[name].category for name in present}
        recommendations = []
        for category in self.core_categories:
            if category in filled or not compatible.get(category):
                continue
            candidates = [snapshot.modules[name] for name in compatible[category]]
            best = max(
                candidates,
                key=lambda m: (self.score(m, selected), m.priority, -snapshot.rank(m.name)),
            )
            recommendations.append(
                Recommendation(
                    module=best.name,
                    reason=f"Complete your stack with a {category.value}",
                    score=self.score(best, selected),
                    type="missing-category",
                )
            )
        return recommendations
