"""Tests for stack suggestions (stackforge.resolver.suggestions)."""

from __future__ import annotations

import pytest

from stackforge.errors import UnknownModuleError
from stackforge.resolver.models import StackPreset
from stackforge.resolver.resolver import DependencyResolver
from stackforge.resolver.suggestions import BASE_SCORE, PRESET_BONUS, REQUIREMENT_SCORE, StackAdvisor


pytestmark = pytest.mark.unit


@pytest.fixture
def advisor(resolver: DependencyResolver) -> StackAdvisor:
    return StackAdvisor(resolver)


class TestRecommendations:
    def test_fills_empty_core_categories(self, advisor: StackAdvisor):
        suggestions = advisor.suggest_stack(["react"])
        assert suggestions.selection == ("react",)
        assert [(r.module, r.type) for r in suggestions.recommended] == [
            ("tailwind", "missing-category"),
            ("supabase", "missing-category"),
        ]
        assert {r.score for r in suggestions.recommended} == {BASE_SCORE + PRESET_BONUS}

    def test_empty_selection_prefers_higher_priority(self, advisor: StackAdvisor):
        suggestions = advisor.suggest_stack([])
        assert [r.module for r in suggestions.recommended] == ["vue3", "tailwind", "supabase"]

    def test_pulled_in_modules_fill_their_category(self, advisor: StackAdvisor):
        # tailwind pulls in vue3, so no frontend framework is recommended.
        modules = [r.module for r in advisor.suggest_stack(["tailwind"]).recommended]
        assert "vue3" not in modules
        assert "react" not in modules

    def test_limit(self, advisor: StackAdvisor):
        assert len(advisor.suggest_stack(["react"], limit=1).recommended) == 1

    def test_unknown_module_raises(self, advisor: StackAdvisor):
        with pytest.raises(UnknownModuleError):
            advisor.suggest_stack(["reactt"])

    def test_dropped_requirement_is_recommended(self, make_registry, descriptor):
        registry = make_registry(
            [
                descriptor("x", "frontend-framework", priority=10),
                descriptor("y", "frontend-framework", priority=5),
                descriptor("y-plugin", requires=["y"]),
            ]
        )
        suggestions = StackAdvisor(DependencyResolver(registry)).suggest_stack(
            ["x", "y", "y-plugin"], conflict_resolution="priority"
        )
        assert [(r.module, r.type, r.score) for r in suggestions.recommended] == [
            ("y", "requirement", REQUIREMENT_SCORE)
        ]
        assert [s.type for s in suggestions.alternatives] == ["drop"]


class TestCompatible:
    def test_groups_clean_additions_by_category(self, advisor: StackAdvisor):
        compatible = advisor.suggest_stack(["react"]).compatible
        assert compatible == {"backend-service": ("supabase",), "ui-library": ("tailwind",)}

    def test_conflicting_selection_has_alternatives_only(self, advisor: StackAdvisor):
        suggestions = advisor.suggest_stack(["react", "vue3"])
        assert suggestions.compatible == {}
        assert suggestions.recommended == ()
        assert any(s.type == "drop" and s.remove == "react" for s in suggestions.alternatives)

    def test_cycle_candidate_is_skipped(self, make_registry, descriptor):
        registry = make_registry(
            [descriptor("a"), descriptor("b", requires=["c"]), descriptor("c", requires=["b"])]
        )
        compatible = StackAdvisor(DependencyResolver(registry)).suggest_stack(["a"]).compatible
        assert compatible == {}


class TestPresets:
    def test_popular_combinations_rank_by_overlap(self, advisor: StackAdvisor):
        matches = advisor.suggest_stack(["react", "tailwind"]).popular
        assert [m.preset.id for m in matches] == ["react-modern", "vue-minimal"]
        assert matches[0].match_count == 2
        assert matches[0].missing_modules == ("supabase",)

    def test_presets_with_unknown_modules_are_skipped(self, advisor: StackAdvisor):
        # vuetify is not registered, so the Vue material preset never appears.
        assert "vue-material" not in [m.preset.id for m in advisor.popular_combinations(["vue3"])]

    def test_custom_presets_drive_scoring(self, resolver: DependencyResolver, registry):
        preset = StackPreset(id="pair", name="Pair", modules=("react", "supabase"), popularity=70)
        advisor = StackAdvisor(resolver, presets=[preset])
        assert advisor.score(registry.get("supabase"), [registry.get("react")]) == BASE_SCORE + PRESET_BONUS
        assert advisor.score(registry.get("tailwind"), [registry.get("react")]) == BASE_SCORE

    def test_capability_and_compatibility_bonuses(self, make_registry, descriptor):
        registry = make_registry(
            [
                descriptor("app", requires=["store"], compatible_with=["redux"]),
                descriptor("redux", "state-manager", provides=["store"]),
            ]
        )
        advisor = StackAdvisor(DependencyResolver(registry), presets=[])
        assert advisor.score(registry.get("redux"), [registry.get("app")]) == BASE_SCORE + 10 + 15
