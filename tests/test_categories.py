"""Tests for the per-category behaviour table (stackforge.modules.categories)."""

from __future__ import annotations

import pytest

from stackforge.modules.categories import (
    CATEGORY_BEHAVIORS,
    behavior_for,
    compatibility_warnings,
)
from stackforge.modules.models import Category, MergeStrategy, Module


pytestmark = pytest.mark.unit


def _module(descriptor, name, category="other", **fields) -> Module:
    return Module.model_validate(descriptor(name, category, **fields))


class TestTable:
    def test_every_category_has_behaviour(self):
        assert set(CATEGORY_BEHAVIORS) == set(Category)
        for category in Category:
            assert behavior_for(category).category is category


class TestDependencies:
    def test_dev_dependencies_only_on_request(self, descriptor):
        module = _module(
            descriptor, "react", "frontend-framework",
            dependencies={"react": "^18.2.0"},
            dev_dependencies={"vite": "^5.0.0"},
        )
        behavior = behavior_for(module.category)
        assert behavior.dependencies(module) == {"react": "^18.2.0"}
        assert behavior.dependencies(module, include_dev=True) == {"react": "^18.2.0", "vite": "^5.0.0"}


class TestConfigFiles:
    def test_package_manifest_fragment(self, descriptor):
        module = _module(
            descriptor, "react", "frontend-framework",
            dependencies={"react-dom": "^18.2.0", "react": "^18.2.0"},
            dev_dependencies={"vite": "^5.0.0"},
        )
        files = {f.path: f for f in behavior_for(module.category).config_files(module, {"react": "18.3.1"})}
        manifest = files["package.json"]
        assert manifest.strategy is MergeStrategy.MERGE_STRUCTURED
        assert manifest.content == {
            "dependencies": {"react": "18.3.1", "react-dom": "^18.2.0"},
            "devDependencies": {"vite": "^5.0.0"},
        }
        assert list(manifest.content["dependencies"]) == ["react", "react-dom"]

    def test_frontend_framework_adds_ignore_lines(self, descriptor):
        module = _module(descriptor, "react", "frontend-framework")
        files = {f.path: f for f in behavior_for(module.category).config_files(module)}
        assert "package.json" not in files
        assert "node_modules/" in files[".gitignore"].content
        assert files[".gitignore"].strategy is MergeStrategy.APPEND_UNIQUE

    def test_backend_service_env_template(self, descriptor):
        module = _module(
            descriptor, "supabase", "backend-service",
            environment={"SUPABASE_URL": "https://x.supabase.co", "SUPABASE_ANON_KEY": ""},
        )
        files = {f.path: f for f in behavior_for(module.category).config_files(module)}
        assert files[".env.example"].content == "SUPABASE_URL=https://x.supabase.co\nSUPABASE_ANON_KEY=\n"

    def test_ui_library_ignores_environment(self, descriptor):
        module = _module(descriptor, "tailwind", "ui-library", environment={"X": "1"})
        assert behavior_for(module.category).config_files(module) == []


class TestCompatibility:
    def test_ui_library_without_frontend_warns(self, descriptor):
        tailwind = _module(descriptor, "tailwind", "ui-library")
        warnings = compatibility_warnings([tailwind])
        assert len(warnings) == 1
        assert "frontend-framework" in warnings[0]

    def test_ui_library_with_frontend_is_quiet(self, descriptor):
        react = _module(descriptor, "react", "frontend-framework")
        tailwind = _module(descriptor, "tailwind", "ui-library")
        assert compatibility_warnings([react, tailwind]) == []

    def test_undeclared_framework_warns(self, descriptor):
        react = _module(descriptor, "react", "frontend-framework")
        pinia = _module(descriptor, "pinia", "state-manager", compatible_with=["vue3"])
        warnings = compatibility_warnings([react, pinia])
        assert any("does not declare compatibility with react" in w for w in warnings)

    def test_wildcard_compatibility_is_quiet(self, descriptor):
        react = _module(descriptor, "react", "frontend-framework")
        store = _module(descriptor, "store", "state-manager", compatible_with=["*"])
        assert compatibility_warnings([react, store]) == []

    def test_second_database_warns(self, descriptor):
        first = _module(descriptor, "postgres", "database")
        second = _module(descriptor, "mongo", "database")
        warnings = compatibility_warnings([first, second])
        assert len(warnings) == 2
