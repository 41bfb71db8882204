"""Template composition: renderer, merge strategies and the composer."""

from stackforge.composer.composer import TemplateComposer, normalize_target
from stackforge.composer.models import CompositionResult, Contribution
from stackforge.composer.strategies import (
    append_unique,
    deep_merge,
    default_strategy,
    merge_structured,
    replace,
)
from stackforge.composer.templates import TemplateRenderer

__all__ = [
    "CompositionResult",
    "Contribution",
    "TemplateComposer",
    "TemplateRenderer",
    "append_unique",
    "deep_merge",
    "default_strategy",
    "merge_structured",
    "normalize_target",
    "replace",
]
