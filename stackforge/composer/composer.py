"""Template composition.

Collects every resolved module's file contributions, picks a merge strategy
per path, renders and merges the contributions and writes each file
atomically.  A failure on one path is recorded and the remaining paths still
compose; only an unusable project directory aborts the run.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path, PurePosixPath
from typing import Any, Optional

import yaml
from jinja2 import TemplateError

from stackforge.composer.models import EXISTING_OWNER, CompositionResult, Contribution
from stackforge.composer.strategies import apply_strategy, deep_merge, default_strategy
from stackforge.composer.templates import TemplateRenderer
from stackforge.errors import CompositionError, MergeConflictError, ProjectDirectoryError
from stackforge.modules.categories import behavior_for
from stackforge.modules.models import MergeStrategy, Module, TemplateSpec
from stackforge.modules.validation import validate_config
from stackforge.utils import atomic_write, name_variants

logger = logging.getLogger(__name__)


class TemplateComposer:
    """Composes module contributions into a project tree.

    Args:
        renderer: Jinja2 renderer; a default one is created if omitted.
        include_generated: Also emit the category table's generated files
            (package manifest fragments, ``.env.example``, ignore lines).
    """

    def __init__(
        self,
        renderer: Optional[TemplateRenderer] = None,
        include_generated: bool = True,
    ) -> None:
        self.renderer = renderer or TemplateRenderer()
        self.include_generated = include_generated

    # -- Public API -------------------------------------------------------------

    def compose(
        self,
        order: Sequence[Module],
        project_path: str | Path,
        variables: Optional[Mapping[str, Any]] = None,
        resolved_versions: Optional[Mapping[str, str]] = None,
    ) -> CompositionResult:
        """Write the composed project under *project_path*.

        Args:
            order: Modules in installation order (from the resolver).
            project_path: Target directory; created if missing.
            variables: Template context.  ``project_name`` defaults to the
                directory name; ``config`` may map module name to overrides
                of that module's ``default_config``.
            resolved_versions: Package versions chosen by the resolver, used
                in generated package manifests.

        Raises:
            ProjectDirectoryError: The target directory cannot be created or
                written.
        """
        root = self._prepare_root(project_path)
        result = CompositionResult(project_path=root)
        context = self.build_context(order, root, variables, result.warnings)

        for module in order:
            for hook, script in sorted(module.hooks.items()):
                result.warnings.append(
                    f"Skipped {hook} hook '{script}' of {module.name}: lifecycle hooks are not executed"
                )

        contributions = self.collect(order, context, resolved_versions, result.errors)

        for path in sorted(contributions):
            if path in result.errors:
                continue
            try:
                self._compose_path(root, path, contributions[path], result)
            except CompositionError as exc:
                logger.warning("Composition of %s failed: %s", path, exc)
                result.errors[path] = str(exc)

        result.created.sort()
        result.merged.sort()
        logger.info(
            "Composed %d file(s) in %s (%d created, %d merged, %d failed)",
            len(result.created) + len(result.merged), root,
            len(result.created), len(result.merged), len(result.errors),
        )
        return result

    async def compose_async(
        self,
        order: Sequence[Module],
        project_path: str | Path,
        variables: Optional[Mapping[str, Any]] = None,
        resolved_versions: Optional[Mapping[str, str]] = None,
    ) -> CompositionResult:
        """:meth:`compose` in a worker thread."""
        return await asyncio.to_thread(self.compose, order, project_path, variables, resolved_versions)

    # -- Context ----------------------------------------------------------------

    def build_context(
        self,
        order: Sequence[Module],
        root: Path,
        variables: Optional[Mapping[str, Any]],
        warnings: list[str],
    ) -> dict[str, Any]:
        """Template context shared by every contribution."""
        variables = dict(variables or {})
        overrides = variables.pop("config", None) or {}
        project_name = str(variables.pop("project_name", "") or root.name)

        names = [module.name for module in order]
        capabilities = {cap for module in order for cap in module.provides}

        def has_module(name: str) -> bool:
            return name in capabilities

        config: dict[str, Any] = {}
        for module in order:
            merged = deep_merge(module.default_config, overrides.get(module.name) or {})
            warnings.extend(validate_config(module, merged))
            config[module.name] = merged

        context: dict[str, Any] = dict(variables)
        context.update(name_variants(project_name))
        context.update({"modules": names, "config": config, "has_module": has_module})
        return context

    # -- Collection -------------------------------------------------------------

    def collect(
        self,
        order: Sequence[Module],
        context: dict[str, Any],
        resolved_versions: Optional[Mapping[str, str]] = None,
        errors: Optional[dict[str, str]] = None,
    ) -> dict[str, list[Contribution]]:
        """Path-keyed contributions, each list in resolution order then priority."""
        errors = errors if errors is not None else {}
        by_path: dict[str, list[tuple[tuple[int, int, int], Contribution]]] = {}
        sequence = 0

        for position, module in enumerate(order):
            module_context = {
                **context,
                "module": {"name": module.name, "version": module.version, "display_name": module.label},
                "module_config": context.get("config", {}).get(module.name, {}),
            }

            for raw_path, spec in module.templates.items():
                try:
                    path = normalize_target(raw_path)
                except CompositionError as exc:
                    errors[raw_path] = str(exc)
                    continue
                if not _gate_open(spec.when, context["has_module"]):
                    logger.debug("Skipping %s from %s: condition %r not met", path, module.name, spec.when)
                    continue
                try:
                    content = self._render(module, spec, module_context)
                except CompositionError as exc:
                    errors[path] = str(exc)
                    continue
                priority = spec.priority if spec.priority is not None else module.priority
                contribution = Contribution(
                    module=module.name,
                    target_path=path,
                    content=content,
                    priority=priority,
                    merge_strategy=module.strategy_override(raw_path),
                    order_index=position,
                )
                by_path.setdefault(path, []).append(((position, priority, sequence), contribution))
                sequence += 1

            # Generated fragments never declare a strategy of their own.
            if self.include_generated:
                for generated in behavior_for(module.category).config_files(module, resolved_versions):
                    contribution = Contribution(
                        module=module.name,
                        target_path=generated.path,
                        content=generated.content,
                        priority=module.priority,
                        order_index=position,
                        origin="generated",
                    )
                    by_path.setdefault(generated.path, []).append(
                        ((position, module.priority, sequence), contribution)
                    )
                    sequence += 1

        ordered: dict[str, list[Contribution]] = {}
        for path, items in by_path.items():
            items.sort(key=lambda item: item[0])
            ordered[path] = [
                contribution.model_copy(update={"order_index": index})
                for index, (_, contribution) in enumerate(items)
            ]
        return ordered

    def _render(self, module: Module, spec: TemplateSpec, context: dict[str, Any]) -> Any:
        try:
            if spec.source is not None:
                source = self._template_source(module, spec)
                if spec.template:
                    return self.renderer.render_file(source, context)
                return source.read_text(encoding="utf-8")
            if not spec.template:
                return spec.content
            if isinstance(spec.content, str):
                return self.renderer.render_string(spec.content, context)
            return self.renderer.render_value(spec.content, context)
        except OSError as exc:
            raise CompositionError(f"{module.name}: cannot read template '{spec.source}': {exc}") from exc
        except TemplateError as exc:
            raise CompositionError(f"{module.name}: template error: {exc}") from exc

    @staticmethod
    def _template_source(module: Module, spec: TemplateSpec) -> Path:
        if module.base_dir is None:
            raise CompositionError(
                f"{module.name}: template source '{spec.source}' has no module directory"
            )
        source = (module.base_dir / spec.source).resolve()
        if not _within(source, module.base_dir.resolve()):
            raise CompositionError(f"{module.name}: template source '{spec.source}' escapes the module directory")
        return source

    # -- Per-path composition ---------------------------------------------------

    @staticmethod
    def effective_strategy(path: str, contributions: Sequence[Contribution]) -> MergeStrategy:
        """Declared override if all declarations agree, else the file-type default.

        Raises:
            MergeConflictError: Contributions declare different strategies.
        """
        declared = {c.module: c.merge_strategy for c in contributions if c.merge_strategy is not None}
        distinct = set(declared.values())
        if len(distinct) > 1:
            raise MergeConflictError(path, {m: s.value for m, s in declared.items()})
        if distinct:
            return distinct.pop()
        return default_strategy(path)

    def _compose_path(
        self,
        root: Path,
        path: str,
        contributions: list[Contribution],
        result: CompositionResult,
    ) -> None:
        strategy = self.effective_strategy(path, contributions)
        target = root / path
        if not _within(target.resolve(), root):
            raise CompositionError(f"'{path}' resolves outside the project directory")
        existed = target.exists()
        if existed and not target.is_file():
            raise CompositionError(f"'{path}' exists and is not a regular file")

        inputs = list(contributions)
        if existed and strategy is not MergeStrategy.REPLACE:
            try:
                current = target.read_text(encoding="utf-8")
            except OSError as exc:
                raise CompositionError(f"cannot read existing '{path}': {exc}") from exc
            inputs.insert(
                0,
                Contribution(module=EXISTING_OWNER, target_path=path, content=current, origin="existing"),
            )

        try:
            outcome = apply_strategy(strategy, path, inputs)
        except (ValueError, yaml.YAMLError) as exc:
            raise CompositionError(f"cannot merge '{path}' as structured data: {exc}") from exc

        try:
            atomic_write(target, outcome.content)
        except OSError as exc:
            raise CompositionError(f"cannot write '{path}': {exc}") from exc

        result.strategies[path] = strategy
        result.warnings.extend(outcome.warnings)
        if outcome.discarded:
            result.discarded[path] = outcome.discarded
        (result.merged if existed else result.created).append(path)

    @staticmethod
    def _prepare_root(project_path: str | Path) -> Path:
        root = Path(project_path).expanduser()
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProjectDirectoryError(f"Cannot create project directory {root}: {exc}") from exc
        if not root.is_dir():
            raise ProjectDirectoryError(f"Project path {root} is not a directory")
        if not os.access(root, os.W_OK | os.X_OK):
            raise ProjectDirectoryError(f"Project directory {root} is not writable")
        return root.resolve()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_target(path: str) -> str:
    """Canonical project-relative POSIX path; rejects absolute and escaping paths."""
    candidate = PurePosixPath(path.replace("\\", "/"))
    if candidate.is_absolute() or not candidate.parts:
        raise CompositionError(f"'{path}' is not a relative file path")
    parts: list[str] = []
    for part in candidate.parts:
        if part == "..":
            if not parts:
                raise CompositionError(f"'{path}' escapes the project directory")
            parts.pop()
        elif part != ".":
            parts.append(part)
    if not parts:
        raise CompositionError(f"'{path}' is not a relative file path")
    return "/".join(parts)


def _gate_open(condition: Optional[str], has_module) -> bool:
    if not condition:
        return True
    condition = condition.strip()
    if condition.startswith("!"):
        return not has_module(condition[1:].strip())
    return has_module(condition)


def _within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True
