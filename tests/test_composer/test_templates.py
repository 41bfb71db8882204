"""Tests for Jinja2 rendering of module templates (stackforge.composer.templates)."""

from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import TemplateSyntaxError

from stackforge.composer.templates import TemplateRenderer


pytestmark = pytest.mark.unit


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


class TestRenderString:
    def test_variables_and_filters(self, renderer: TemplateRenderer):
        text = renderer.render_string(
            "{{ name | slugify }} {{ name | pascal_case }} {{ name | snake_case }} {{ name | camel_case }}",
            {"name": "My Cool App"},
        )
        assert text == "my-cool-app MyCoolApp my_cool_app myCoolApp"

    def test_no_html_escaping(self, renderer: TemplateRenderer):
        assert renderer.render_string("{{ tag }}", {"tag": "<App />"}) == "<App />"

    def test_trailing_newline_kept_and_blocks_trimmed(self, renderer: TemplateRenderer):
        template = "start\n{% if on %}\n  inner\n{% endif %}\nend\n"
        assert renderer.render_string(template, {"on": True}) == "start\n  inner\nend\n"

    def test_callables_in_context(self, renderer: TemplateRenderer):
        text = renderer.render_string(
            "{% if has_module('tailwind') %}tw{% else %}plain{% endif %}",
            {"has_module": lambda name: name == "tailwind"},
        )
        assert text == "tw"

    def test_syntax_error_propagates(self, renderer: TemplateRenderer):
        with pytest.raises(TemplateSyntaxError):
            renderer.render_string("{% if %}", {})


class TestRenderValue:
    def test_nested_values_and_keys(self, renderer: TemplateRenderer):
        value = {
            "name": "{{ slug }}",
            "scripts": {"{{ cmd }}": "vite {{ cmd }}"},
            "files": ["dist", "{{ slug }}.d.ts"],
            "private": True,
            "port": 3000,
        }
        rendered = renderer.render_value(value, {"slug": "my-app", "cmd": "build"})
        assert rendered == {
            "name": "my-app",
            "scripts": {"build": "vite build"},
            "files": ["dist", "my-app.d.ts"],
            "private": True,
            "port": 3000,
        }

    def test_plain_strings_untouched(self, renderer: TemplateRenderer):
        # Braces that are not Jinja markup stay as they are.
        assert renderer.render_value("{ a: 1 }", {}) == "{ a: 1 }"


def test_render_file(renderer: TemplateRenderer, tmp_path: Path):
    template = tmp_path / "README.md.j2"
    template.write_text("# {{ project_name }}\n", encoding="utf-8")
    assert renderer.render_file(template, {"project_name": "Demo"}) == "# Demo\n"
