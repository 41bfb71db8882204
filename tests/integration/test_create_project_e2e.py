"""Integration tests for resolve-then-compose against the built-in modules.

These tests run the real registry, resolver and composer end-to-end and
verify that the generated project directory contains well-formed, merged
configuration files.

No network access or package installation is required.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stackforge.config import Config, RegistryConfig
from stackforge.engine import Stackforge
from stackforge.errors import ConflictError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _engine() -> Stackforge:
    return Stackforge(Config(registry=RegistryConfig(include_user_dirs=False)))


def _tree(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


FULL_STACK = ["vercel", "better-auth", "tailwind", "supabase", "react"]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@pytest.mark.integration
class TestReactFullStack:
    """React + Tailwind + Supabase + Better Auth deployed on Vercel."""

    async def test_resolution(self):
        engine = _engine()
        await engine.load()
        result = engine.resolve(FULL_STACK)

        assert result.success
        assert result.names == ["base-config", "better-auth", "react", "supabase", "tailwind", "vercel"]
        assert result.resolved_versions["react"] == "^18.2.0"

    async def test_generated_tree(self, tmp_path: Path):
        project = tmp_path / "acme-portal"
        report = await _engine().create_project(FULL_STACK, project, {"project_name": "Acme Portal"})
        composition = report.composition

        assert composition.success
        assert {
            "package.json", ".gitignore", ".env.example", "README.md", "index.html",
            "src/main.jsx", "src/App.jsx", "tailwind.config.js", "src/styles/tailwind.css",
            "src/lib/supabase.js", "src/lib/auth/index.js", "vercel.json", ".vercelignore",
        } <= set(composition.created)

        manifest = json.loads((project / "package.json").read_text(encoding="utf-8"))
        assert manifest["name"] == "acme-portal"
        assert manifest["scripts"] == {
            "format": "prettier --write .",
            "dev": "vite",
            "build": "vite build",
            "preview": "vite preview",
        }
        assert set(manifest["dependencies"]) == {
            "react", "react-dom", "react-router-dom", "@supabase/supabase-js", "better-auth",
        }
        assert {"prettier", "vite", "tailwindcss"} <= set(manifest["devDependencies"])

        gitignore = (project / ".gitignore").read_text(encoding="utf-8").splitlines()
        assert gitignore == ["node_modules/", ".DS_Store", "*.log", "dist/", ".env", ".env.local"]

        env = (project / ".env.example").read_text(encoding="utf-8")
        for key in ("SUPABASE_URL=", "BETTER_AUTH_SECRET=", "VERCEL_PROJECT_ID="):
            assert key in env

        vercel = json.loads((project / "vercel.json").read_text(encoding="utf-8"))
        assert vercel["outputDirectory"] == "dist"

        main = (project / "src" / "main.jsx").read_text(encoding="utf-8")
        assert "import './styles/tailwind.css'" in main
        assert "BrowserRouter" in main

        readme = (project / "README.md").read_text(encoding="utf-8")
        assert readme.startswith("# Acme Portal\n")
        assert ".env.example" in readme

        assert "{{" not in (project / "tailwind.config.js").read_text(encoding="utf-8")
        assert any("after-install hook" in warning for warning in composition.warnings)

    async def test_output_is_reproducible(self, tmp_path: Path):
        engine = _engine()
        await engine.create_project(FULL_STACK, tmp_path / "one" / "app")
        await engine.create_project(list(reversed(FULL_STACK)), tmp_path / "two" / "app")
        assert _tree(tmp_path / "one" / "app") == _tree(tmp_path / "two" / "app")

    async def test_module_config_overrides(self, tmp_path: Path):
        project = tmp_path / "no-router"
        report = await _engine().create_project(
            ["react"], project, {"config": {"react": {"router": False}, "supabase": {"schema": ""}}}
        )
        assert report.composition.warnings == []
        assert "BrowserRouter" not in (project / "src" / "main.jsx").read_text(encoding="utf-8")


@pytest.mark.integration
class TestOtherStacks:
    async def test_vue_stack(self, tmp_path: Path):
        report = await _engine().create_project(["vuetify", "pinia", "vue3"], tmp_path / "vue-app")
        assert report.resolution.names == ["base-config", "vue3", "pinia", "vuetify"]
        app_vue = (tmp_path / "vue-app" / "src" / "App.vue").read_text(encoding="utf-8")
        assert "{{" in app_vue

    async def test_sveltekit_stack(self, tmp_path: Path):
        project = tmp_path / "svelte-app"
        await _engine().create_project(["sveltekit", "tailwind", "vercel"], project)
        vercel = json.loads((project / "vercel.json").read_text(encoding="utf-8"))
        assert vercel["outputDirectory"] == ".svelte-kit"
        assert "svelte" in (project / "tailwind.config.js").read_text(encoding="utf-8")
        assert "%sveltekit.body%" in (project / "src" / "app.html").read_text(encoding="utf-8")

    async def test_rival_frameworks(self, tmp_path: Path):
        engine = _engine()
        with pytest.raises(ConflictError):
            await engine.create_project(["react", "vue3"], tmp_path / "nope")

        report = await engine.create_project(
            ["react", "vue3"], tmp_path / "picked", conflict_resolution="priority"
        )
        assert "vue3" in report.resolution.names
        assert "react" not in report.resolution.names

    async def test_incompatible_pair_suggests_replacement(self):
        engine = _engine()
        await engine.load()
        result = engine.resolve(["react", "pinia"])
        assert not result.success
        (conflict,) = result.conflicts_of("direct")
        assert {conflict.module, *conflict.conflicts_with} == {"react", "pinia"}
        # pinia ranks before react, so react is the one offered a swap.
        assert [(s.remove, s.add) for s in result.suggestions if s.type == "replace"] == [("react", "vue3")]
