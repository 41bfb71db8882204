"""Per-category behaviour table.

Modules are a single tagged record; anything that differs by category lives
here as a :class:`CategoryBehavior` entry so the resolver and the composer stay
category-agnostic.  Every :class:`Category` member must have an entry.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from stackforge.modules.models import WILDCARD, Category, MergeStrategy, Module


@dataclass(frozen=True)
class GeneratedFile:
    """A file fragment derived from module metadata rather than a template."""

    path: str
    content: Any
    strategy: MergeStrategy


CompatibilityCheck = Callable[[Module, Sequence[Module]], list[str]]


@dataclass(frozen=True)
class CategoryBehavior:
    """What a category contributes beyond the module's own templates."""

    category: Category
    needs: tuple[Category, ...] = ()
    env_template: bool = False
    ignore_lines: tuple[str, ...] = ()
    checks: tuple[CompatibilityCheck, ...] = field(default=())

    # -- Dependencies --------------------------------------------------------

    def dependencies(self, module: Module, include_dev: bool = False) -> dict[str, str]:
        """Package dependencies the module adds (dev ones only on request)."""
        deps = dict(module.dependencies)
        if include_dev:
            for package, spec in module.dev_dependencies.items():
                deps.setdefault(package, spec)
        return deps

    # -- Config files --------------------------------------------------------

    def config_files(
        self,
        module: Module,
        resolved_versions: Optional[Mapping[str, str]] = None,
    ) -> list[GeneratedFile]:
        """Structured fragments for shared config files (package manifest, env, ignore)."""
        resolved = resolved_versions or {}
        files: list[GeneratedFile] = []

        manifest: dict[str, Any] = {}
        if module.dependencies:
            manifest["dependencies"] = {
                package: resolved.get(package, spec)
                for package, spec in sorted(module.dependencies.items())
            }
        if module.dev_dependencies:
            manifest["devDependencies"] = {
                package: resolved.get(package, spec)
                for package, spec in sorted(module.dev_dependencies.items())
            }
        if manifest:
            files.append(GeneratedFile("package.json", manifest, MergeStrategy.MERGE_STRUCTURED))

        if self.env_template and module.environment:
            lines = [f"{key}={value}" for key, value in module.environment.items()]
            files.append(
                GeneratedFile(".env.example", "\n".join(lines) + "\n", MergeStrategy.APPEND_UNIQUE)
            )

        if self.ignore_lines:
            files.append(
                GeneratedFile(
                    ".gitignore", "\n".join(self.ignore_lines) + "\n", MergeStrategy.APPEND_UNIQUE
                )
            )
        return files

    # -- Compatibility -------------------------------------------------------

    def check_compatibility(self, module: Module, others: Sequence[Module]) -> list[str]:
        """Non-fatal warnings about how *module* fits with the rest of the set."""
        warnings: list[str] = []
        present = {other.category for other in others if other.name != module.name}
        for needed in self.needs:
            if needed not in present:
                warnings.append(
                    f"{module.label} ({module.category.value}) is usually paired with a "
                    f"{needed.value} module, but none is selected"
                )
        for check in self.checks:
            warnings.extend(check(module, others))
        return warnings


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def _framework_declared(module: Module, others: Sequence[Module]) -> list[str]:
    """Warn when a framework-bound module is paired with a framework it does not list."""
    explicit = [name for name in module.compatible_with if name != WILDCARD]
    if not explicit or WILDCARD in module.compatible_with:
        return []
    warnings = []
    for other in others:
        if other.category is Category.FRONTEND_FRAMEWORK and other.name not in explicit:
            warnings.append(
                f"{module.label} does not declare compatibility with {other.label} "
                f"(compatible with: {', '.join(explicit)})"
            )
    return warnings


def _single_database(module: Module, others: Sequence[Module]) -> list[str]:
    databases = sorted(
        other.name for other in others
        if other.category is Category.DATABASE and other.name != module.name
    )
    if databases:
        return [
            f"{module.label} is a database but {', '.join(databases)} also provide storage; "
            "make sure they do not overlap"
        ]
    return []


_NODE_IGNORES = ("node_modules/", "dist/", ".env", ".env.local")


CATEGORY_BEHAVIORS: dict[Category, CategoryBehavior] = {
    Category.FRONTEND_FRAMEWORK: CategoryBehavior(
        Category.FRONTEND_FRAMEWORK, ignore_lines=_NODE_IGNORES
    ),
    Category.UI_LIBRARY: CategoryBehavior(
        Category.UI_LIBRARY,
        needs=(Category.FRONTEND_FRAMEWORK,),
        checks=(_framework_declared,),
    ),
    Category.STATE_MANAGER: CategoryBehavior(
        Category.STATE_MANAGER,
        needs=(Category.FRONTEND_FRAMEWORK,),
        checks=(_framework_declared,),
    ),
    Category.BACKEND_SERVICE: CategoryBehavior(Category.BACKEND_SERVICE, env_template=True),
    Category.BACKEND_FRAMEWORK: CategoryBehavior(
        Category.BACKEND_FRAMEWORK, env_template=True, ignore_lines=_NODE_IGNORES
    ),
    Category.AUTH_PROVIDER: CategoryBehavior(Category.AUTH_PROVIDER, env_template=True),
    Category.DATABASE: CategoryBehavior(
        Category.DATABASE, env_template=True, checks=(_single_database,)
    ),
    Category.DEPLOYMENT: CategoryBehavior(Category.DEPLOYMENT, env_template=True),
    Category.TESTING: CategoryBehavior(Category.TESTING),
    Category.OTHER: CategoryBehavior(Category.OTHER),
}

_unmapped = set(Category) - set(CATEGORY_BEHAVIORS)
if _unmapped:
    raise RuntimeError(f"No category behaviour for: {sorted(c.value for c in _unmapped)}")


def behavior_for(category: Category) -> CategoryBehavior:
    return CATEGORY_BEHAVIORS[category]


def compatibility_warnings(modules: Sequence[Module]) -> list[str]:
    """Run every module's category checks against the full set, in order."""
    warnings: list[str] = []
    for module in modules:
        warnings.extend(behavior_for(module.category).check_compatibility(module, modules))
    return warnings
