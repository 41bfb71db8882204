"""Semantic-version comparison and npm-style range intersection.

Ranges use npm syntax (``^1.2.0``, ``~1.2``, ``1.x``, ``>=1 <3``,
``1.2.3 - 2.0.0``, ``a || b``) and are evaluated with
:class:`semantic_version.NpmSpec`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional

import semantic_version
from semantic_version import NpmSpec, Version

logger = logging.getLogger(__name__)

# Range strings that mean "anything".
_ANY_RANGES = {"", "*", "x", "X", "latest"}

_VERSION_TOKEN = re.compile(
    r"v?(\d+)(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:-([0-9A-Za-z.-]+))?"
)


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VersionRequirement:
    """``requirer`` needs ``package`` within ``range``."""

    requirer: str
    package: str
    range: str


@dataclass
class VersionConflict:
    """Ranges for one package that no version satisfies together."""

    package: str
    requirements: dict[str, str]
    reason: str


@dataclass
class VersionResolution:
    resolved: dict[str, str] = field(default_factory=dict)
    conflicts: list[VersionConflict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conflicts


# ---------------------------------------------------------------------------
# VersionManager
# ---------------------------------------------------------------------------

class VersionManager:
    """Version ordering, range matching and conflict resolution.

    Args:
        catalog: Optional ``{package: [available versions]}``.  When a package
            is in the catalog, :meth:`resolve_conflicts` picks the highest
            available version inside the intersection; otherwise it reports
            the tightest combined range.
    """

    def __init__(self, catalog: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self.catalog: dict[str, list[str]] = {
            package: list(versions) for package, versions in (catalog or {}).items()
        }

    # -- Parsing / ordering -------------------------------------------------

    @staticmethod
    def parse(version: str | Version) -> Optional[Version]:
        """Parse leniently (``1.2`` becomes ``1.2.0``); ``None`` if not a version."""
        if isinstance(version, Version):
            return version
        text = str(version).strip().lstrip("v=")
        try:
            return Version(text)
        except ValueError:
            pass
        try:
            return Version.coerce(text)
        except ValueError:
            return None

    @staticmethod
    def is_valid(version: str) -> bool:
        """Strict semantic-version check."""
        return semantic_version.validate(str(version))

    def is_stable(self, version: str | Version) -> bool:
        """``True`` for releases, ``False`` for pre-releases and unparsable input."""
        parsed = self.parse(version)
        return parsed is not None and not parsed.prerelease

    def compare(self, left: str, right: str) -> int:
        """Return -1, 0 or 1 comparing two versions."""
        a, b = self._require(left), self._require(right)
        return (a > b) - (a < b)

    def sort_versions(self, versions: Iterable[str], descending: bool = False) -> list[str]:
        """Sort by semantic-version order, dropping anything unparsable."""
        parsed = [(v, self.parse(v)) for v in versions]
        valid = [(v, p) for v, p in parsed if p is not None]
        valid.sort(key=lambda pair: pair[1], reverse=descending)
        return [v for v, _ in valid]

    def latest(self, versions: Iterable[str], include_prerelease: bool = False) -> Optional[str]:
        """Highest version, preferring stable releases.

        Pre-releases are only returned when ``include_prerelease`` is set or
        when nothing stable exists.
        """
        ordered = self.sort_versions(versions, descending=True)
        if not ordered:
            return None
        if include_prerelease:
            return ordered[0]
        for version in ordered:
            if self.is_stable(version):
                return version
        return ordered[0]

    # -- Ranges ---------------------------------------------------------------

    @staticmethod
    def spec(range_: str) -> NpmSpec:
        """Parse an npm range; ``latest``/empty mean any version."""
        text = (range_ or "").strip()
        if text in _ANY_RANGES:
            text = "*"
        return NpmSpec(text)

    def is_range(self, range_: str) -> bool:
        try:
            self.spec(range_)
        except ValueError:
            return False
        return True

    def satisfies(self, version: str, range_: str) -> bool:
        parsed = self.parse(version)
        return parsed is not None and parsed in self.spec(range_)

    def resolve(self, versions: Iterable[str], range_: str) -> Optional[str]:
        """Highest version in *versions* satisfying *range_*, or ``None``."""
        spec = self.spec(range_)
        matching = [v for v in versions if (p := self.parse(v)) is not None and p in spec]
        return self.latest(matching)

    def compatible_range(self, version: str, strategy: str = "minor") -> str:
        """Range accepting updates of the given kind from *version*.

        ``exact`` pins, ``patch`` gives ``~``, ``minor`` gives ``^`` and
        ``major`` accepts anything from *version* upward.
        """
        parsed = self._require(version)
        if strategy == "exact":
            return str(parsed)
        if strategy == "patch":
            return f"~{parsed}"
        if strategy == "minor":
            return f"^{parsed}"
        if strategy == "major":
            return f">={parsed}"
        raise ValueError(f"Unknown compatibility strategy: {strategy!r}")

    def bump(self, version: str, change: str) -> str:
        """Next version for a ``breaking``/``feature``/``fix``/``prerelease`` change."""
        parsed = self._require(version)
        if change == "breaking":
            return str(parsed.next_major())
        if change == "feature":
            return str(parsed.next_minor())
        if change == "fix":
            return str(parsed.next_patch())
        if change == "prerelease":
            if not parsed.prerelease:
                base = parsed.next_patch()
                return str(Version(major=base.major, minor=base.minor, patch=base.patch, prerelease=("0",)))
            parts = list(parsed.prerelease)
            if parts[-1].isdigit():
                parts[-1] = str(int(parts[-1]) + 1)
            else:
                parts.append("0")
            return str(
                Version(major=parsed.major, minor=parsed.minor, patch=parsed.patch, prerelease=tuple(parts))
            )
        raise ValueError(f"Unknown change type: {change!r}")

    # -- Conflict resolution --------------------------------------------------

    def resolve_conflicts(
        self, requirements: Iterable[VersionRequirement | tuple[str, str, str]]
    ) -> VersionResolution:
        """Intersect the ranges requested for each package.

        Requirements are grouped by package in first-seen order.  A package
        whose ranges have an empty intersection produces a
        :class:`VersionConflict` naming every requirer.
        """
        grouped: dict[str, dict[str, str]] = {}
        for requirement in requirements:
            if not isinstance(requirement, VersionRequirement):
                requirement = VersionRequirement(*requirement)
            per_package = grouped.setdefault(requirement.package, {})
            per_package.setdefault(requirement.requirer, requirement.range)

        result = VersionResolution()
        for package, by_requirer in grouped.items():
            outcome = self._resolve_package(package, by_requirer)
            if isinstance(outcome, VersionConflict):
                logger.debug("Version conflict on %s: %s", package, outcome.reason)
                result.conflicts.append(outcome)
            else:
                result.resolved[package] = outcome
        return result

    def _resolve_package(self, package: str, by_requirer: dict[str, str]) -> str | VersionConflict:
        distinct = list(dict.fromkeys(by_requirer.values()))
        specs: list[tuple[str, NpmSpec]] = []
        opaque: list[str] = []
        for range_ in distinct:
            try:
                specs.append((range_, self.spec(range_)))
            except ValueError:
                opaque.append(range_)

        if opaque:
            if len(distinct) == 1:
                return distinct[0]
            return VersionConflict(
                package,
                dict(by_requirer),
                f"cannot intersect non-semver range(s) {', '.join(opaque)} with {', '.join(r for r in distinct if r not in opaque)}",
            )

        if package in self.catalog:
            available = [
                v for v in self.catalog[package]
                if (p := self.parse(v)) is not None and all(p in s for _, s in specs)
            ]
            chosen = self.latest(available)
            if chosen is None:
                return VersionConflict(
                    package,
                    dict(by_requirer),
                    f"no available version of {package} satisfies {' and '.join(distinct)}",
                )
            return chosen

        if len(distinct) == 1:
            return distinct[0]

        candidates = _boundary_candidates(distinct)
        witnesses = [c for c in candidates if all(c in s for _, s in specs)]
        if not witnesses:
            return VersionConflict(
                package,
                dict(by_requirer),
                f"ranges {' and '.join(distinct)} for {package} do not overlap",
            )

        # The tightest declared range, if one is contained in all the others.
        for range_, spec in specs:
            if all(all(c in other for _, other in specs) for c in candidates if c in spec):
                return range_
        if not any("||" in r for r in distinct):
            return " ".join(distinct)
        return str(max(witnesses))

    def _require(self, version: str) -> Version:
        parsed = self.parse(version)
        if parsed is None:
            raise ValueError(f"'{version}' is not a semantic version")
        return parsed


def _boundary_candidates(ranges: Iterable[str]) -> list[Version]:
    """Versions at and just past every bound mentioned in *ranges*.

    If an intersection of npm ranges is non-empty it contains one of these.
    """
    candidates = {Version("0.0.0")}
    for range_ in ranges:
        for match in _VERSION_TOKEN.finditer(range_):
            major = int(match.group(1))
            minor = int(match.group(2)) if match.group(2) and match.group(2).isdigit() else 0
            patch = int(match.group(3)) if match.group(3) and match.group(3).isdigit() else 0
            base = Version(major=major, minor=minor, patch=patch)
            candidates.update({base, base.next_patch(), base.next_minor(), base.next_major()})
            if match.group(4):
                candidates.add(
                    Version(major=major, minor=minor, patch=patch, prerelease=tuple(match.group(4).split(".")))
                )
    return sorted(candidates)
