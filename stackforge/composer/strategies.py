"""Merge strategies for contributions that target the same file.

All functions take contributions already in collection order and return the
final file text plus any non-fatal warnings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

import yaml

from stackforge.composer.models import EXISTING_OWNER, Contribution
from stackforge.modules.models import MergeStrategy

STRUCTURED_SUFFIXES = frozenset({".json", ".yaml", ".yml"})
_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


@dataclass
class MergeOutcome:
    content: str
    warnings: list[str] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# File-type defaults
# ---------------------------------------------------------------------------

def default_strategy(path: str) -> MergeStrategy:
    """Strategy used when no contribution declares one.

    Structured data files merge, ignore files and env templates append,
    everything else is replaced.
    """
    name = PurePosixPath(path).name
    if name.startswith(".env") or (name.startswith(".") and name.endswith("ignore")):
        return MergeStrategy.APPEND_UNIQUE
    if PurePosixPath(path).suffix.lower() in STRUCTURED_SUFFIXES:
        return MergeStrategy.MERGE_STRUCTURED
    return MergeStrategy.REPLACE


def apply_strategy(strategy: MergeStrategy, path: str, contributions: list[Contribution]) -> MergeOutcome:
    if strategy is MergeStrategy.MERGE_STRUCTURED:
        return merge_structured(path, contributions)
    if strategy is MergeStrategy.APPEND_UNIQUE:
        return append_unique(contributions)
    return replace(path, contributions)


# ---------------------------------------------------------------------------
# Structured data
# ---------------------------------------------------------------------------

def parse_structured(path: str, text: str) -> Any:
    """Parse JSON or YAML according to the file suffix."""
    if PurePosixPath(path).suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_load(text) if text.strip() else {}
    return json.loads(text) if text.strip() else {}


def dump_structured(path: str, data: Any) -> str:
    """Serialise deterministically: 2-space JSON, or block-style YAML."""
    if PurePosixPath(path).suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def merge_structured(path: str, contributions: list[Contribution]) -> MergeOutcome:
    """Recursive merge of key-value data.

    Mappings merge key by key, lists concatenate without duplicates and
    scalar collisions go to the higher-ranked contribution with a warning.
    Keys keep first-seen order.
    """
    warnings: list[str] = []
    owners: dict[tuple[str, ...], tuple[tuple[int, int], str]] = {}
    result: Any = None
    for contribution in contributions:
        data = contribution.content
        if isinstance(data, str):
            data = parse_structured(path, data)
        if result is None:
            result = _copy(data)
            _claim(owners, (), data, contribution)
            continue
        result = _merge_value(result, data, (), contribution, owners, warnings, path)
    return MergeOutcome(dump_structured(path, {} if result is None else result), warnings)


def deep_merge(*layers: Any) -> Any:
    """Merge plain values left to right; later layers win scalar collisions."""
    contributions = [
        Contribution(module=f"layer{i}", target_path="", content=layer, order_index=i)
        for i, layer in enumerate(layers)
    ]
    result: Any = None
    owners: dict[tuple[str, ...], tuple[tuple[int, int], str]] = {}
    for contribution in contributions:
        if result is None:
            result = _copy(contribution.content)
            _claim(owners, (), contribution.content, contribution)
        else:
            result = _merge_value(result, contribution.content, (), contribution, owners, [], "")
    return result


def _merge_value(
    current: Any,
    incoming: Any,
    key_path: tuple[str, ...],
    contribution: Contribution,
    owners: dict[tuple[str, ...], tuple[tuple[int, int], str]],
    warnings: list[str],
    path: str,
) -> Any:
    if isinstance(current, dict) and isinstance(incoming, dict):
        merged = dict(current)
        for key, value in incoming.items():
            child = (*key_path, str(key))
            if key in merged:
                merged[key] = _merge_value(merged[key], value, child, contribution, owners, warnings, path)
            else:
                merged[key] = _copy(value)
                _claim(owners, child, value, contribution)
        return merged

    if isinstance(current, list) and isinstance(incoming, list):
        merged_list = list(current)
        for item in incoming:
            if item not in merged_list:
                merged_list.append(_copy(item))
        return merged_list

    if current == incoming:
        owner_rank, _ = owners.get(key_path, (contribution.rank, contribution.module))
        if contribution.rank > owner_rank:
            owners[key_path] = (contribution.rank, contribution.module)
        return current

    owner_rank, owner = owners.get(key_path, ((-(10**9) - 1, -2), EXISTING_OWNER))
    location = ".".join(key_path) or "<root>"
    if contribution.rank > owner_rank:
        warnings.append(
            f"{path}: {location} = {_short(incoming)} from {contribution.module} "
            f"overrides {_short(current)} from {owner}"
        )
        _claim(owners, key_path, incoming, contribution)
        return _copy(incoming)
    warnings.append(
        f"{path}: {location} keeps {_short(current)} from {owner}; "
        f"ignored {_short(incoming)} from {contribution.module}"
    )
    return current


def _claim(
    owners: dict[tuple[str, ...], tuple[tuple[int, int], str]],
    key_path: tuple[str, ...],
    value: Any,
    contribution: Contribution,
) -> None:
    owners[key_path] = (contribution.rank, contribution.module)
    if isinstance(value, dict):
        for key, child in value.items():
            _claim(owners, (*key_path, str(key)), child, contribution)


def _copy(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy(item) for item in value]
    return value


def _short(value: Any) -> str:
    text = json.dumps(value, ensure_ascii=False, default=str)
    return text if len(text) <= 40 else text[:37] + "..."


# ---------------------------------------------------------------------------
# Line-oriented files
# ---------------------------------------------------------------------------

def append_unique(contributions: list[Contribution]) -> MergeOutcome:
    """Concatenate lines, dropping exact duplicates (first occurrence wins).

    Blank lines are kept as separators but never doubled.
    """
    seen: set[str] = set()
    lines: list[str] = []
    for contribution in contributions:
        text = contribution.content
        if not isinstance(text, str):
            text = "\n".join(str(item) for item in text) if isinstance(text, list) else json.dumps(text)
        for line in text.splitlines():
            stripped = line.rstrip()
            if not stripped:
                if lines and lines[-1] != "":
                    lines.append("")
                continue
            if stripped in seen:
                continue
            seen.add(stripped)
            lines.append(stripped)
    while lines and lines[-1] == "":
        lines.pop()
    return MergeOutcome("\n".join(lines) + "\n" if lines else "")


# ---------------------------------------------------------------------------
# Replace
# ---------------------------------------------------------------------------

def replace(path: str, contributions: list[Contribution]) -> MergeOutcome:
    """Keep the highest-ranked contribution outright."""
    winner = max(contributions, key=lambda c: c.rank)
    losers = [c.module for c in contributions if c is not winner]
    warnings: list[str] = []
    competing = [c for c in contributions if c.origin != "existing"]
    if len(competing) > 1:
        warnings.append(
            f"{path}: {len(competing)} modules replace this file; using {winner.module}, "
            f"discarding {', '.join(c.module for c in competing if c is not winner)}"
        )
    content = winner.content
    if not isinstance(content, str):
        content = dump_structured(path, content)
    return MergeOutcome(content, warnings, losers)
