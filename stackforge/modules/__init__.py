"""Module descriptors: data model, validation and per-category behaviour."""

from stackforge.modules.models import Category, MergeStrategy, Module, TemplateSpec

__all__ = ["Category", "MergeStrategy", "Module", "TemplateSpec"]
