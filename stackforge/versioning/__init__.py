"""Semantic-version helpers used by the resolver."""

from stackforge.versioning.manager import (
    VersionConflict,
    VersionManager,
    VersionRequirement,
    VersionResolution,
)

__all__ = ["VersionConflict", "VersionManager", "VersionRequirement", "VersionResolution"]
