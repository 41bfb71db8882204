"""Shared pytest fixtures for the stackforge test suite.

Provides reusable fixtures for:
- Temporary project directories
- Module descriptor factories
- Registries built from in-memory descriptors
- Resolvers and composers wired to those registries
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest

from stackforge.cache import CacheManager
from stackforge.composer.composer import TemplateComposer
from stackforge.registry.registry import ModuleRegistry
from stackforge.registry.sources import InMemorySource
from stackforge.resolver.resolver import DependencyResolver


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Empty directory for composed projects (auto-cleanup)."""
    project_dir = tmp_path / "my-app"
    project_dir.mkdir()
    yield project_dir


@pytest.fixture(autouse=True)
def _isolated_module_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own module path and stackforge settings out of tests."""
    for name in (
        "STACKFORGE_MODULES_PATH",
        "STACKFORGE_PLUGIN_DIRS",
        "STACKFORGE_NO_BUILTIN",
        "STACKFORGE_CACHE_DIR",
        "STACKFORGE_CACHE_MAX_BYTES",
        "STACKFORGE_CACHE_TTL",
        "STACKFORGE_CONFLICT_RESOLUTION",
        "STACKFORGE_MAX_DEPTH",
        "STACKFORGE_INCLUDE_DEV",
        "STACKFORGE_ALLOW_CONFLICTS",
    ):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------

def make_descriptor(name: str, category: str = "other", **fields: Any) -> dict[str, Any]:
    """Minimal valid descriptor; keyword arguments add or override fields."""
    descriptor: dict[str, Any] = {
        "name": name,
        "version": "1.0.0",
        "category": category,
        "description": f"The {name} module",
    }
    descriptor.update(fields)
    return descriptor


@pytest.fixture
def descriptor() -> Callable[..., dict[str, Any]]:
    """Factory fixture: ``descriptor("react", "frontend-framework", priority=80)``."""
    return make_descriptor


@pytest.fixture
def sample_descriptors() -> list[dict[str, Any]]:
    """A small, consistent module world used by several test modules."""
    return [
        make_descriptor("config", provides=["config"], priority=10),
        make_descriptor(
            "react",
            "frontend-framework",
            provides=["frontend"],
            requires=["config"],
            incompatible_with=["vue3"],
            priority=80,
            tags=["spa", "jsx"],
            dependencies={"react": "^18.2.0"},
        ),
        make_descriptor(
            "vue3",
            "frontend-framework",
            display_name="Vue 3",
            provides=["frontend"],
            requires=["config"],
            priority=90,
            tags=["spa"],
            dependencies={"vue": "^3.4.0"},
        ),
        make_descriptor(
            "tailwind",
            "ui-library",
            display_name="Tailwind CSS",
            description="Utility-first CSS framework",
            provides=["styling"],
            requires=["frontend"],
            priority=70,
            tags=["css", "styling"],
        ),
        make_descriptor(
            "supabase",
            "backend-service",
            description="Postgres database with auth and storage",
            provides=["backend", "database", "auth"],
            requires=["frontend"],
            priority=75,
            tags=["postgres", "auth"],
            environment={"SUPABASE_URL": "", "SUPABASE_ANON_KEY": ""},
        ),
    ]


# ---------------------------------------------------------------------------
# Registry / resolver / composer
# ---------------------------------------------------------------------------

def build_registry(
    descriptors: list[dict[str, Any]],
    cache: CacheManager | None = None,
    **kwargs: Any,
) -> ModuleRegistry:
    """Registry over one in-memory source, discovered synchronously."""
    registry = ModuleRegistry([InMemorySource(descriptors)], cache=cache, **kwargs)
    asyncio.run(registry.discover())
    return registry


@pytest.fixture
def make_registry() -> Callable[..., ModuleRegistry]:
    """Factory fixture wrapping :func:`build_registry` for synchronous tests."""
    return build_registry


@pytest.fixture
def registry(sample_descriptors: list[dict[str, Any]]) -> ModuleRegistry:
    return build_registry(sample_descriptors)


@pytest.fixture
def resolver(registry: ModuleRegistry) -> DependencyResolver:
    return DependencyResolver(registry)


@pytest.fixture
def composer() -> TemplateComposer:
    return TemplateComposer()
