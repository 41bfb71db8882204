"""Tests for module sources (stackforge.registry.sources)."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
import yaml

from stackforge.cache import CacheManager
from stackforge.registry.sources import (
    BUILTIN_MODULES_DIR,
    BuiltinSource,
    DirectorySource,
    EnvironmentSource,
    InMemorySource,
    load_descriptor_file,
)


pytestmark = pytest.mark.unit


def _write_module(root: Path, name: str, fmt: str = "json", **fields) -> Path:
    module_dir = root / name
    module_dir.mkdir(parents=True, exist_ok=True)
    data = {"name": name, "version": "1.0.0", "category": "other", "description": name, **fields}
    if fmt == "json":
        path = module_dir / "module.json"
        path.write_text(json.dumps(data), encoding="utf-8")
    else:
        path = module_dir / "module.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestInMemorySource:
    def test_load_preserves_order(self, descriptor):
        source = InMemorySource([descriptor("b"), descriptor("a")])
        raws = source.load()
        assert [raw.name for raw in raws] == ["b", "a"]
        assert raws[0].origin == "memory[0]"

    def test_add_replaces_by_name(self, descriptor):
        source = InMemorySource([descriptor("a")])
        source.add(descriptor("a", priority=5))
        source.add(descriptor("b"))
        raws = source.load()
        assert [raw.name for raw in raws] == ["a", "b"]
        assert raws[0].data["priority"] == 5

    def test_remove_and_load_one(self, descriptor):
        source = InMemorySource([descriptor("a"), descriptor("b")])
        source.remove("a")
        assert source.load_one("a") is None
        assert source.load_one("b").name == "b"


class TestDirectorySource:
    def test_reads_subdirectories_and_loose_files(self, tmp_path: Path):
        _write_module(tmp_path, "beta", fmt="yaml")
        _write_module(tmp_path, "alpha")
        (tmp_path / "gamma.json").write_text(
            json.dumps({"name": "gamma", "version": "1.0.0", "category": "other", "description": "g"}),
            encoding="utf-8",
        )
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
        (tmp_path / "empty-dir").mkdir()

        raws = DirectorySource(tmp_path).load()

        assert [raw.name for raw in raws] == ["alpha", "beta", "gamma"]
        assert raws[0].base_dir == tmp_path / "alpha"
        assert raws[2].base_dir == tmp_path

    def test_missing_directory_is_empty(self, tmp_path: Path):
        assert DirectorySource(tmp_path / "nowhere").load() == []

    def test_parse_error_is_reported_not_raised(self, tmp_path: Path):
        bad = tmp_path / "broken"
        bad.mkdir()
        (bad / "module.json").write_text("{nope", encoding="utf-8")
        (raw,) = DirectorySource(tmp_path).load()
        assert raw.data is None
        assert raw.error.startswith("cannot parse")

    def test_reads_are_memoised(self, tmp_path: Path):
        path = _write_module(tmp_path, "alpha")
        cache = CacheManager()
        source = DirectorySource(tmp_path, cache=cache)
        source.load()
        assert any(key.startswith("descriptor:") for key in cache.keys())

        # A changed file gets a new key (mtime/size differ).
        path.write_text(
            json.dumps({"name": "alpha", "version": "2.0.0", "category": "other", "description": "changed"}),
            encoding="utf-8",
        )
        (raw,) = source.load()
        assert raw.data["version"] == "2.0.0"

    def test_load_one_uses_origin_hint(self, tmp_path: Path):
        path = _write_module(tmp_path, "alpha")
        _write_module(tmp_path, "beta")
        raw = DirectorySource(tmp_path).load_one("alpha", origin=str(path))
        assert raw.name == "alpha"
        assert DirectorySource(tmp_path).load_one("missing") is None


class TestEnvironmentSource:
    def test_reads_every_listed_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        _write_module(tmp_path / "one", "alpha")
        _write_module(tmp_path / "two", "beta")
        monkeypatch.setenv(
            "STACKFORGE_MODULES_PATH", os.pathsep.join([str(tmp_path / "one"), str(tmp_path / "two")])
        )
        source = EnvironmentSource()
        assert [raw.name for raw in source.load()] == ["alpha", "beta"]
        assert source.load_one("beta").name == "beta"

    def test_unset_variable(self):
        assert EnvironmentSource().load() == []


class TestBuiltinSource:
    def test_ships_descriptors(self):
        names = [raw.name for raw in BuiltinSource().load()]
        assert {"react", "vue3", "sveltekit", "tailwind", "supabase", "base-config"} <= set(names)
        assert BUILTIN_MODULES_DIR.is_dir()

    def test_builtin_descriptors_parse_cleanly(self):
        assert all(raw.error is None for raw in BuiltinSource().load())


def test_load_descriptor_file_yaml(tmp_path: Path):
    path = tmp_path / "m.yml"
    path.write_text("name: x\nversion: 1.0.0\n", encoding="utf-8")
    assert load_descriptor_file(path) == {"name": "x", "version": "1.0.0"}
