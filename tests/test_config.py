"""Unit tests for Config and related Pydantic models (stackforge.config).

Tests cover:
- CacheConfig, RegistryConfig and ResolverConfig defaults and validation
- ResolverConfig.options
- Config save/load round trip
- Config.from_env
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from stackforge.cache import DEFAULT_MAX_BYTES
from stackforge.config import CacheConfig, Config, RegistryConfig, ResolverConfig
from stackforge.modules.models import Category
from stackforge.resolver.models import ConflictResolution


# ---------------------------------------------------------------------------
# CacheConfig
# ---------------------------------------------------------------------------


class TestCacheConfig:
    @pytest.mark.unit
    def test_defaults(self):
        cfg = CacheConfig()
        assert cfg.enabled is True
        assert cfg.max_bytes == DEFAULT_MAX_BYTES
        assert cfg.max_entries is None
        assert cfg.disk_dir is None
        assert cfg.ttl is None

    @pytest.mark.unit
    def test_tiny_budget_rejected(self):
        with pytest.raises(ValidationError):
            CacheConfig(max_bytes=10)

    @pytest.mark.unit
    def test_zero_entries_rejected(self):
        with pytest.raises(ValidationError):
            CacheConfig(max_entries=0)

    @pytest.mark.unit
    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValidationError):
            CacheConfig(ttl=0)


# ---------------------------------------------------------------------------
# RegistryConfig
# ---------------------------------------------------------------------------


class TestRegistryConfig:
    @pytest.mark.unit
    def test_default_exclusive_categories(self):
        cfg = RegistryConfig()
        assert set(cfg.exclusive_categories) == {
            Category.FRONTEND_FRAMEWORK,
            Category.BACKEND_FRAMEWORK,
            Category.BACKEND_SERVICE,
            Category.STATE_MANAGER,
        }

    @pytest.mark.unit
    def test_builtin_included_by_default(self):
        assert RegistryConfig().include_builtin is True

    @pytest.mark.unit
    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            RegistryConfig(exclusive_categories=["not-a-category"])


# ---------------------------------------------------------------------------
# ResolverConfig
# ---------------------------------------------------------------------------


class TestResolverConfig:
    @pytest.mark.unit
    def test_options(self):
        options = ResolverConfig(max_depth=2, conflict_resolution="priority").options()
        assert options == {
            "max_depth": 2,
            "conflict_resolution": ConflictResolution.PRIORITY,
            "allow_conflicts": False,
            "include_dev": False,
        }

    @pytest.mark.unit
    def test_negative_depth_rejected(self):
        with pytest.raises(ValidationError):
            ResolverConfig(max_depth=-1)

    @pytest.mark.unit
    def test_bad_strategy_rejected(self):
        with pytest.raises(ValidationError):
            ResolverConfig(conflict_resolution="newest")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfig:
    @pytest.mark.unit
    def test_save_and_load(self, tmp_path: Path):
        cfg = Config(
            cache=CacheConfig(max_entries=50, disk_dir=tmp_path / "cache"),
            registry=RegistryConfig(plugin_dirs=[tmp_path / "plugins"], package_catalog={"react": ["18.2.0"]}),
            resolver=ResolverConfig(include_dev=True),
        )
        target = cfg.save(tmp_path / "nested" / "stackforge.json")
        assert target.exists()

        loaded = Config.load(target)
        assert loaded == cfg
        assert loaded.registry.plugin_dirs == [tmp_path / "plugins"]
        assert loaded.resolver.include_dev is True

    @pytest.mark.unit
    def test_from_env_defaults(self):
        cfg = Config.from_env()
        assert cfg == Config()

    @pytest.mark.unit
    def test_from_env_reads_variables(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        import os

        monkeypatch.setenv("STACKFORGE_CACHE_DIR", str(tmp_path / "cache"))
        monkeypatch.setenv("STACKFORGE_CACHE_MAX_BYTES", "4096")
        monkeypatch.setenv("STACKFORGE_CACHE_TTL", "90")
        monkeypatch.setenv(
            "STACKFORGE_PLUGIN_DIRS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")])
        )
        monkeypatch.setenv("STACKFORGE_NO_BUILTIN", "yes")
        monkeypatch.setenv("STACKFORGE_CONFLICT_RESOLUTION", "priority")
        monkeypatch.setenv("STACKFORGE_MAX_DEPTH", "3")
        monkeypatch.setenv("STACKFORGE_INCLUDE_DEV", "1")
        monkeypatch.setenv("STACKFORGE_ALLOW_CONFLICTS", "false")

        cfg = Config.from_env()

        assert cfg.cache.disk_dir == tmp_path / "cache"
        assert cfg.cache.max_bytes == 4096
        assert cfg.cache.ttl == 90.0
        assert cfg.registry.plugin_dirs == [tmp_path / "a", tmp_path / "b"]
        assert cfg.registry.include_builtin is False
        assert cfg.resolver.conflict_resolution is ConflictResolution.PRIORITY
        assert cfg.resolver.max_depth == 3
        assert cfg.resolver.include_dev is True
        assert cfg.resolver.allow_conflicts is False
