"""Descriptor validation.

Turns raw descriptor mappings into :class:`Module` instances, reporting every
missing required field at once.  ``config_schema`` is checked against the
JSON Schema meta-schema with :mod:`jsonschema`, and module configuration can be
validated against it.
"""

from __future__ import annotations

import re
from typing import Any, Optional

import jsonschema
from jsonschema.exceptions import SchemaError
from pydantic import ValidationError

from stackforge.errors import ModuleValidationError
from stackforge.modules.models import Module


REQUIRED_FIELDS: tuple[str, ...] = ("name", "version", "category", "description")

# Template content that should never appear in a scaffolding module.
_DANGEROUS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\beval\s*\("), "eval()"),
    (re.compile(r"\bnew\s+Function\s*\("), "Function constructor"),
    (re.compile(r"require\(\s*['\"]child_process['\"]\s*\)"), "child_process import"),
    (re.compile(r"\brm\s+-rf\s+/(?:\s|$)"), "rm -rf /"),
    (re.compile(r"curl[^|\n]*\|\s*(?:ba)?sh\b"), "piping a download into a shell"),
)


def validate_descriptor(data: Any, origin: Optional[str] = None) -> Module:
    """Validate a raw descriptor and return the parsed :class:`Module`.

    Args:
        data: Mapping loaded from JSON/YAML (or built in code).
        origin: Where the descriptor came from, used in error messages.

    Raises:
        ModuleValidationError: Listing every missing required field and any
            other problem found.
    """
    if isinstance(data, Module):
        return data
    if not isinstance(data, dict):
        raise ModuleValidationError(
            None, problems=[f"descriptor must be a mapping, got {type(data).__name__}"], origin=origin
        )

    name = data.get("name") if isinstance(data.get("name"), str) else None
    missing = [field for field in REQUIRED_FIELDS if data.get(field) in (None, "")]
    problems: list[str] = []

    try:
        module = Module.model_validate(data)
    except ValidationError as exc:
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "<root>"
            if error["type"] == "missing":
                if field not in missing:
                    missing.append(field)
                continue
            if field in missing:
                continue
            problems.append(f"{field}: {error['msg']}")
        raise ModuleValidationError(name, missing=missing, problems=problems, origin=origin) from exc

    if missing:
        # Present-but-empty required fields pass pydantic for plain strings.
        raise ModuleValidationError(name, missing=missing, origin=origin)

    if module.config_schema is not None:
        try:
            check_config_schema(module.config_schema)
        except SchemaError as exc:
            raise ModuleValidationError(
                name, problems=[f"configSchema: {exc.message}"], origin=origin
            ) from exc

    return module


def check_config_schema(schema: dict[str, Any]) -> None:
    """Raise :class:`SchemaError` if *schema* is not a valid JSON Schema."""
    validator_cls = jsonschema.validators.validator_for(schema)
    validator_cls.check_schema(schema)


def validate_config(module: Module, config: dict[str, Any]) -> list[str]:
    """Validate *config* against the module's ``config_schema``.

    Returns a list of problems (empty when valid or when no schema is set).
    """
    if not module.config_schema:
        return []
    validator_cls = jsonschema.validators.validator_for(module.config_schema)
    validator = validator_cls(module.config_schema)
    problems = []
    for error in sorted(validator.iter_errors(config), key=lambda e: list(e.path)):
        location = "/".join(str(part) for part in error.path) or "<root>"
        problems.append(f"{module.name} config {location}: {error.message}")
    return problems


def security_warnings(module: Module) -> list[str]:
    """Scan inline template content for obviously dangerous constructs."""
    warnings: list[str] = []
    for path, spec in module.templates.items():
        if not isinstance(spec.content, str):
            continue
        for pattern, label in _DANGEROUS_PATTERNS:
            if pattern.search(spec.content):
                warnings.append(f"Module '{module.name}' template '{path}' contains {label}")
    return warnings
