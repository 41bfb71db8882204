"""Weighted fuzzy search over module metadata.

Advisory only: the resolver and composer never consult it.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Optional

from stackforge.cache import CacheManager
from stackforge.modules.models import Category, Module

logger = logging.getLogger(__name__)

FIELD_WEIGHTS: dict[str, float] = {
    "name": 2.0,
    "display_name": 1.8,
    "description": 1.5,
    "tags": 1.3,
    "keywords": 1.2,
    "provides": 0.8,
}
_MAX_WEIGHT = max(FIELD_WEIGHTS.values())

DEFAULT_THRESHOLD = 0.3
EXACT_NAME_BONUS = 0.5
MIN_FUZZY_RATIO = 0.6
MIN_SUGGEST_PREFIX = 2
# Seconds a cached query result stays valid.
SEARCH_RESULT_TTL = 30 * 60

_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass
class SearchHit:
    module: Module
    score: float
    matched: list[str] = field(default_factory=list)


@dataclass
class _IndexEntry:
    module: Module
    fields: dict[str, list[str]]


class SearchEngine:
    """Fuzzy index built from registry modules.

    Each field is scored independently (exact, prefix, substring, word, then
    :class:`difflib.SequenceMatcher` ratio) and weighted; a module's score is
    its best weighted field, normalised so an exact name match is 1.0.
    """

    def __init__(self, cache: Optional[CacheManager] = None, threshold: float = DEFAULT_THRESHOLD) -> None:
        self.cache = cache
        self.threshold = threshold
        self.generation = 0
        self._index: dict[str, _IndexEntry] = {}

    # -- Index maintenance ---------------------------------------------------

    def build(self, modules: Iterable[Module], generation: int = 0) -> None:
        self._index = {module.name: _index_entry(module) for module in modules}
        self._set_generation(generation)
        logger.debug("Search index built with %d module(s)", len(self._index))

    def update(self, module: Module, generation: Optional[int] = None) -> None:
        self._index[module.name] = _index_entry(module)
        self._set_generation(self.generation + 1 if generation is None else generation)

    def remove(self, name: str, generation: Optional[int] = None) -> None:
        self._index.pop(name, None)
        self._set_generation(self.generation + 1 if generation is None else generation)

    def _set_generation(self, generation: int) -> None:
        if self.cache is not None and generation != self.generation:
            self.cache.invalidate(prefix="search:")
        self.generation = generation

    def __len__(self) -> int:
        return len(self._index)

    # -- Queries ---------------------------------------------------------------

    def search(
        self,
        query: str,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        """Rank modules by match quality, then apply *filters*.

        Supported filters: ``category`` (value or list), ``tags`` (all must be
        present) and ``provides`` (capability).
        """
        filters = dict(filters or {})
        cache_key = self._cache_key("search", query, filters, limit)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return [
                    SearchHit(self._index[name].module, score, list(matched))
                    for name, score, matched in cached
                    if name in self._index
                ]

        terms = _WORD_RE.findall(query.lower())
        hits: list[SearchHit] = []
        for entry in self._index.values():
            if not _passes(entry.module, filters):
                continue
            if not terms:
                hits.append(SearchHit(entry.module, 0.0))
                continue
            score, matched = _score(entry, query.strip().lower(), terms)
            if score >= self.threshold:
                hits.append(SearchHit(entry.module, round(score, 4), matched))

        hits.sort(key=lambda hit: (-hit.score, hit.module.name))
        if limit is not None:
            hits = hits[:limit]

        if self.cache is not None:
            self.cache.set(
                cache_key, [(h.module.name, h.score, h.matched) for h in hits], ttl=SEARCH_RESULT_TTL
            )
        return hits

    def suggest(self, prefix: str, limit: int = 5) -> list[str]:
        """Module names completing *prefix*, best first.

        Name matches rank above display-name, tag and capability matches;
        shorter names rank first within a group.
        """
        needle = prefix.strip().lower()
        if len(needle) < MIN_SUGGEST_PREFIX:
            return []
        ranked: list[tuple[int, int, str]] = []
        for name, entry in self._index.items():
            rank = None
            lowered = name.lower()
            if lowered == needle:
                rank = 0
            elif lowered.startswith(needle):
                rank = 1
            elif any(v.startswith(needle) for v in entry.fields["display_name"]):
                rank = 2
            elif any(v.startswith(needle) for v in entry.fields["tags"] + entry.fields["provides"]):
                rank = 3
            if rank is not None:
                ranked.append((rank, len(name), name))
        ranked.sort()
        return [name for _, _, name in ranked[:limit]]

    def find_similar(self, name: str, limit: int = 5) -> list[str]:
        """Other modules sharing category, tags or capabilities with *name*."""
        entry = self._index.get(name)
        if entry is None:
            return []
        module = entry.module
        scored: list[tuple[float, str]] = []
        for other_name, other in self._index.items():
            if other_name == name:
                continue
            overlap = 0.0
            if other.module.category == module.category:
                overlap += 2.0
            overlap += len(set(other.module.tags) & set(module.tags))
            overlap += 0.5 * len((set(other.module.provides) - {other_name}) & (set(module.provides) - {name}))
            if overlap:
                scored.append((overlap, other_name))
        scored.sort(key=lambda pair: (-pair[0], pair[1]))
        return [other_name for _, other_name in scored[:limit]]

    def _cache_key(self, kind: str, query: str, filters: Mapping[str, Any], limit: Optional[int]) -> str:
        payload = json.dumps(filters, sort_keys=True, default=str)
        return f"{kind}:{self.generation}:{query.strip().lower()}:{payload}:{limit}"


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------

def _index_entry(module: Module) -> _IndexEntry:
    return _IndexEntry(
        module=module,
        fields={
            "name": [module.name.lower()],
            "display_name": [module.display_name.lower()] if module.display_name else [],
            "description": [module.description.lower()],
            "tags": [tag.lower() for tag in module.tags],
            "keywords": [keyword.lower() for keyword in module.keywords],
            "provides": [cap.lower() for cap in module.provides if cap != module.name],
        },
    )


def _text_score(term: str, text: str) -> float:
    if not text:
        return 0.0
    if text == term:
        return 1.0
    if text.startswith(term):
        return 0.9
    words = _WORD_RE.findall(text)
    if term in words:
        return 0.85
    if any(word.startswith(term) for word in words):
        return 0.8
    if term in text:
        return 0.75
    candidates = words if len(words) > 1 else [text]
    ratio = max(SequenceMatcher(None, term, word).ratio() for word in candidates)
    return ratio * 0.7 if ratio >= MIN_FUZZY_RATIO else 0.0


def _score(entry: _IndexEntry, query: str, terms: list[str]) -> tuple[float, list[str]]:
    matched: set[str] = set()
    term_scores: list[float] = []
    for term in terms:
        best = 0.0
        for field_name, values in entry.fields.items():
            weight = FIELD_WEIGHTS[field_name]
            field_best = max((_text_score(term, value) for value in values), default=0.0)
            if field_best > 0:
                matched.add(field_name)
            best = max(best, weight * field_best / _MAX_WEIGHT)
        term_scores.append(best)
    score = sum(term_scores) / len(term_scores)
    if entry.module.name.lower() == query:
        score += EXACT_NAME_BONUS
    return score, sorted(matched)


def _passes(module: Module, filters: Mapping[str, Any]) -> bool:
    category = filters.get("category")
    if category:
        wanted = category if isinstance(category, (list, tuple, set)) else [category]
        values = {c.value if isinstance(c, Category) else str(c) for c in wanted}
        if module.category.value not in values:
            return False
    tags = filters.get("tags")
    if tags:
        wanted_tags = [tags] if isinstance(tags, str) else list(tags)
        if not set(wanted_tags) <= set(module.tags):
            return False
    provides = filters.get("provides")
    if provides and provides not in module.provides:
        return False
    return True
