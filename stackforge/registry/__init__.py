"""Module discovery, indexing and search."""

from stackforge.registry.registry import (
    DEFAULT_EXCLUSIVE_CATEGORIES,
    CompatibilityEntry,
    ModuleRegistry,
    RegistrySnapshot,
)
from stackforge.registry.search import SearchEngine, SearchHit
from stackforge.registry.sources import (
    BuiltinSource,
    DirectorySource,
    EnvironmentSource,
    InMemorySource,
    ModuleSource,
    RawDescriptor,
)

__all__ = [
    "DEFAULT_EXCLUSIVE_CATEGORIES",
    "BuiltinSource",
    "CompatibilityEntry",
    "DirectorySource",
    "EnvironmentSource",
    "InMemorySource",
    "ModuleRegistry",
    "ModuleSource",
    "RawDescriptor",
    "RegistrySnapshot",
    "SearchEngine",
    "SearchHit",
]
