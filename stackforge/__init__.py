"""stackforge -- module dependency resolution and template composition.

Quick usage::

    from stackforge import Stackforge

    engine = Stackforge()
    await engine.load()
    result = engine.resolve(["react", "tailwind"])
    report = await engine.create_project(["react", "tailwind"], "/tmp/my-app")
"""

from stackforge.engine import ProjectReport, Stackforge
from stackforge.errors import (
    CacheError,
    CircularDependencyError,
    CompositionError,
    ConflictError,
    MergeConflictError,
    ModuleValidationError,
    ProjectDirectoryError,
    StackforgeError,
    UnknownModuleError,
)

__version__ = "0.1.0"

__all__ = [
    "CacheError",
    "CircularDependencyError",
    "CompositionError",
    "ConflictError",
    "MergeConflictError",
    "ModuleValidationError",
    "ProjectDirectoryError",
    "ProjectReport",
    "Stackforge",
    "StackforgeError",
    "UnknownModuleError",
    "__version__",
]
