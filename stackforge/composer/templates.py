"""Jinja2 rendering for module template contributions.

Provides the TemplateRenderer class which renders inline template strings and
template files shipped inside module directories.  Structured contributions
(mappings and lists) are rendered value by value so placeholders can appear
anywhere inside them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, select_autoescape

from stackforge.utils import camel_case, pascal_case, slugify, snake_case


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for module contributions.

    Templates are rendered with a context dictionary holding the project
    name and its case variants, per-module configuration and a
    ``has_module(name)`` test against the resolved module set.
    """

    def __init__(self) -> None:
        self.env = Environment(
            autoescape=select_autoescape([], default_for_string=False),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        # Register custom filters
        self.env.filters["slugify"] = slugify
        self.env.filters["pascal_case"] = pascal_case
        self.env.filters["snake_case"] = snake_case
        self.env.filters["camel_case"] = camel_case

    # -- String rendering ---------------------------------------------------

    def render_string(self, template_string: str, context: dict[str, Any]) -> str:
        """Render an inline template string with the provided context."""
        template = self.env.from_string(template_string)
        return template.render(**context)

    def render_value(self, value: Any, context: dict[str, Any]) -> Any:
        """Render every string inside nested mappings/lists; keys included."""
        if isinstance(value, str):
            return self.render_string(value, context) if _has_markup(value) else value
        if isinstance(value, dict):
            return {
                self.render_value(key, context): self.render_value(item, context)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self.render_value(item, context) for item in value]
        return value

    # -- File rendering -----------------------------------------------------

    def render_file(self, path: str | Path, context: dict[str, Any]) -> str:
        """Read a template file (UTF-8) and render it."""
        text = Path(path).read_text(encoding="utf-8")
        return self.render_string(text, context)


def _has_markup(text: str) -> bool:
    return "{{" in text or "{%" in text or "{#" in text
