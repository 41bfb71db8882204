"""Command-line entry point: ``stackforge list|search|resolve|suggest|create``."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError
from rich.table import Table

from stackforge.config import Config
from stackforge.engine import Stackforge
from stackforge.errors import ConflictError, StackforgeError
from stackforge.modules.models import Category
from stackforge.resolver.models import ResolutionResult
from stackforge.utils import (
    configure_logging,
    console,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICTS = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackforge",
        description="stackforge -- resolve module selections and compose project trees",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  stackforge list --category frontend-framework\n"
            "  stackforge search auth\n"
            "  stackforge resolve react tailwind zustand\n"
            "  stackforge suggest react\n"
            "  stackforge create react tailwind -o ./my-app --project-name my-app\n"
        ),
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON config file (default: from environment)")
    parser.add_argument(
        "--modules-dir",
        action="append",
        type=Path,
        default=[],
        help="Extra module directory (repeatable, earlier wins)",
    )
    parser.add_argument("--no-builtin", action="store_true", help="Do not load the built-in modules")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List available modules")
    category_choices = [category.value for category in Category]
    list_cmd.add_argument("--category", choices=category_choices, default=None)

    search_cmd = commands.add_parser("search", help="Fuzzy-search modules")
    search_cmd.add_argument("query")
    search_cmd.add_argument("--category", choices=category_choices, default=None)
    search_cmd.add_argument("--limit", type=int, default=10)

    suggest_cmd = commands.add_parser("suggest", help="Recommend modules that complete a selection")
    suggest_cmd.add_argument("modules", nargs="*", help="Module names already chosen")
    suggest_cmd.add_argument("--limit", type=int, default=3)

    for name, help_text in (("resolve", "Resolve a selection"), ("create", "Resolve and compose a project")):
        cmd = commands.add_parser(name, help=help_text)
        cmd.add_argument("modules", nargs="+", help="Module names")
        cmd.add_argument("--priority", action="store_true", help="Auto-pick among exclusive-category rivals")
        cmd.add_argument("--allow-conflicts", action="store_true", default=None)
        cmd.add_argument("--include-dev", action="store_true", default=None)
        cmd.add_argument("--max-depth", type=int, default=None)
        if name == "resolve":
            cmd.add_argument("--json", action="store_true", help="Print the result as JSON")
        else:
            cmd.add_argument("--output", "-o", type=Path, required=True, help="Project directory")
            cmd.add_argument("--project-name", default=None)
            cmd.add_argument(
                "--var",
                action="append",
                default=[],
                metavar="KEY=VALUE",
                help="Extra template variable (repeatable)",
            )
    return parser


def load_config(args: argparse.Namespace) -> Config:
    config = Config.load(args.config) if args.config else Config.from_env()
    if args.modules_dir:
        config.registry.plugin_dirs = [*args.modules_dir, *config.registry.plugin_dirs]
    if args.no_builtin:
        config.registry.include_builtin = False
    return config


def run(argv: Optional[list[str]] = None) -> int:
    """Parse *argv*, run the command and return the exit status."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = load_config(args)
    except (OSError, ValueError, ValidationError) as exc:
        print_error(f"Error: invalid configuration: {exc}")
        return EXIT_ERROR

    try:
        engine = Stackforge(config)
        asyncio.run(engine.load())
        for warning in engine.registry.warnings:
            print_warning(warning)
        for error in engine.registry.errors:
            print_warning(str(error))

        if args.command == "list":
            return _cmd_list(engine, args)
        if args.command == "search":
            return _cmd_search(engine, args)
        if args.command == "resolve":
            return _cmd_resolve(engine, args)
        if args.command == "suggest":
            return _cmd_suggest(engine, args)
        return _cmd_create(engine, args)
    except ConflictError as exc:
        _print_conflicts(exc.conflicts)
        _print_suggestions(exc.suggestions)
        return EXIT_CONFLICTS
    except StackforgeError as exc:
        print_error(f"Error: {exc}")
        return EXIT_ERROR


def main() -> None:
    """CLI entry point for ``stackforge`` and ``python -m stackforge``."""
    sys.exit(run())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_list(engine: Stackforge, args: argparse.Namespace) -> int:
    modules = engine.registry.by_category(args.category) if args.category else list(engine.registry)
    table = Table(title="Modules", header_style="bold cyan")
    for column in ("Name", "Version", "Category", "Source", "Description"):
        table.add_column(column)
    for module in modules:
        table.add_row(module.name, module.version, module.category.value, module.source, module.description)
    console.print(table)
    return EXIT_OK


def _cmd_search(engine: Stackforge, args: argparse.Namespace) -> int:
    filters = {"category": args.category} if args.category else None
    hits = engine.registry.search(args.query, filters, limit=args.limit)
    if not hits:
        print_warning(f"No modules match '{args.query}'")
        suggestions = engine.registry.suggest(args.query)
        if suggestions:
            console.print(f"Did you mean: {', '.join(suggestions)}?")
        return EXIT_OK
    table = Table(title=f"Results for '{args.query}'", header_style="bold cyan")
    for column in ("Name", "Category", "Score", "Matched", "Description"):
        table.add_column(column)
    for hit in hits:
        table.add_row(
            hit.module.name, hit.module.category.value, f"{hit.score:.2f}",
            ", ".join(hit.matched), hit.module.description,
        )
    console.print(table)
    return EXIT_OK


def _resolve_options(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "max_depth": args.max_depth,
        "conflict_resolution": "priority" if args.priority else None,
        "allow_conflicts": args.allow_conflicts,
        "include_dev": args.include_dev,
    }


def _cmd_resolve(engine: Stackforge, args: argparse.Namespace) -> int:
    result = engine.resolve(args.modules, **_resolve_options(args))
    if args.json:
        payload = result.model_dump(mode="json", exclude={"order"})
        payload["order"] = result.names
        console.print_json(json.dumps(payload))
    else:
        _print_resolution(result)
    return EXIT_OK if result.success else EXIT_CONFLICTS


def _cmd_suggest(engine: Stackforge, args: argparse.Namespace) -> int:
    suggestions = engine.suggest(args.modules)
    if suggestions.recommended:
        table = Table(title="Recommended modules", header_style="bold cyan")
        for column in ("Module", "Score", "Reason"):
            table.add_column(column)
        for recommendation in suggestions.recommended[: args.limit]:
            table.add_row(recommendation.module, str(recommendation.score), recommendation.reason)
        console.print(table)
    for match in suggestions.popular[: args.limit]:
        line = f"[cyan]{match.preset.name}[/cyan] - {match.preset.description}"
        if match.missing_modules:
            line += f" (add {', '.join(match.missing_modules)})"
        console.print(line)
    _print_suggestions(suggestions.alternatives)
    if not (suggestions.recommended or suggestions.popular or suggestions.alternatives):
        print_warning("No suggestions for this selection")
    return EXIT_OK


def _cmd_create(engine: Stackforge, args: argparse.Namespace) -> int:
    variables: dict[str, Any] = {}
    for item in args.var:
        key, sep, value = item.partition("=")
        if not sep or not key:
            print_error(f"Error: --var expects KEY=VALUE, got '{item}'")
            return EXIT_ERROR
        variables[key.strip()] = value
    if args.project_name:
        variables["project_name"] = args.project_name

    report = asyncio.run(
        engine.create_project(args.modules, args.output, variables, **_resolve_options(args))
    )
    _print_resolution(report.resolution)
    composition = report.composition
    for warning in composition.warnings:
        print_warning(warning)
    for path, message in composition.errors.items():
        print_error(f"{path}: {message}")

    print_summary_table(
        {
            "Project": str(composition.project_path),
            "Modules": ", ".join(report.resolution.names),
            "Created": str(len(composition.created)),
            "Merged": str(len(composition.merged)),
            "Failed": str(len(composition.errors)),
        },
        title="Project created",
    )
    if composition.errors:
        return EXIT_ERROR
    print_success(f"Project ready at {composition.project_path}")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _print_resolution(result: ResolutionResult) -> None:
    if result.order:
        console.print("[bold]Installation order:[/bold] " + " -> ".join(result.names))
    if result.resolved_versions:
        print_summary_table(result.resolved_versions, title="Package versions")
    for warning in result.warnings:
        print_warning(warning)
    if result.conflicts:
        _print_conflicts(result.conflicts)
    _print_suggestions(result.suggestions)


def _print_suggestions(suggestions) -> None:
    for suggestion in suggestions:
        console.print(f"[cyan]Suggestion ({suggestion.type}):[/cyan] {suggestion.reason}")


def _print_conflicts(conflicts) -> None:
    table = Table(title="Conflicts", header_style="bold red")
    for column in ("Type", "Module", "Details"):
        table.add_column(column)
    for conflict in conflicts:
        table.add_row(conflict.type.value, conflict.module, conflict.describe())
    console.print(table)


if __name__ == "__main__":
    main()
