"""Dependency resolution: graph, result models, the resolver and stack suggestions."""

from stackforge.resolver.graph import DependencyGraph, DependencyNode
from stackforge.resolver.models import (
    Conflict,
    ConflictResolution,
    ConflictType,
    MissingRequirement,
    PresetMatch,
    Recommendation,
    RequirementKind,
    ResolutionResult,
    StackPreset,
    StackSuggestions,
    Suggestion,
)
from stackforge.resolver.resolver import DependencyResolver, parse_requirement
from stackforge.resolver.suggestions import POPULAR_STACKS, StackAdvisor

__all__ = [
    "Conflict",
    "ConflictResolution",
    "ConflictType",
    "DependencyGraph",
    "DependencyNode",
    "DependencyResolver",
    "MissingRequirement",
    "POPULAR_STACKS",
    "PresetMatch",
    "Recommendation",
    "RequirementKind",
    "ResolutionResult",
    "StackAdvisor",
    "StackPreset",
    "StackSuggestions",
    "Suggestion",
    "parse_requirement",
]
