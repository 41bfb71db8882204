"""Tests for semantic-version handling (stackforge.versioning.manager).

Covers:
- Parsing, validation, comparison and sorting
- latest() preferring stable releases
- npm range matching and resolve()
- compatible_range / bump
- resolve_conflicts with and without a package catalog
"""

from __future__ import annotations

import pytest

from stackforge.versioning.manager import VersionManager, VersionRequirement


pytestmark = pytest.mark.unit


@pytest.fixture
def versions() -> VersionManager:
    return VersionManager()


# ---------------------------------------------------------------------------
# Parsing / ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    def test_parse_is_lenient(self, versions: VersionManager):
        assert str(versions.parse("1.2")) == "1.2.0"
        assert str(versions.parse("v2.0.1")) == "2.0.1"
        assert versions.parse("not-a-version") is None

    def test_is_valid_is_strict(self, versions: VersionManager):
        assert versions.is_valid("1.2.3")
        assert versions.is_valid("1.2.3-beta.1")
        assert not versions.is_valid("1.2")

    def test_is_stable(self, versions: VersionManager):
        assert versions.is_stable("1.0.0")
        assert not versions.is_stable("1.0.0-rc.1")
        assert not versions.is_stable("garbage")

    def test_compare(self, versions: VersionManager):
        assert versions.compare("1.0.0", "2.0.0") == -1
        assert versions.compare("2.0.0", "2.0.0") == 0
        assert versions.compare("2.0.0", "2.0.0-rc.1") == 1
        with pytest.raises(ValueError):
            versions.compare("x", "1.0.0")

    def test_sort_versions_drops_garbage(self, versions: VersionManager):
        assert versions.sort_versions(["1.10.0", "1.2.0", "junk", "1.9.0"]) == ["1.2.0", "1.9.0", "1.10.0"]
        assert versions.sort_versions(["1.0.0", "2.0.0"], descending=True) == ["2.0.0", "1.0.0"]

    def test_latest_prefers_stable(self, versions: VersionManager):
        assert versions.latest(["1.0.0", "1.1.0", "2.0.0-beta.1"]) == "1.1.0"

    def test_latest_prerelease_when_requested(self, versions: VersionManager):
        assert versions.latest(["1.0.0", "2.0.0-beta.1"], include_prerelease=True) == "2.0.0-beta.1"

    def test_latest_prerelease_when_nothing_stable(self, versions: VersionManager):
        assert versions.latest(["2.0.0-alpha.1", "2.0.0-beta.1"]) == "2.0.0-beta.1"

    def test_latest_empty(self, versions: VersionManager):
        assert versions.latest([]) is None


# ---------------------------------------------------------------------------
# Ranges
# ---------------------------------------------------------------------------


class TestRanges:
    @pytest.mark.parametrize(
        "version, range_, expected",
        [
            ("1.4.2", "^1.2.0", True),
            ("2.0.0", "^1.2.0", False),
            ("1.2.9", "~1.2.0", True),
            ("1.3.0", "~1.2.0", False),
            ("1.7.0", "1.x", True),
            ("3.1.0", ">=2.0.0 <4.0.0", True),
            ("5.0.0", "^4.0.0 || ^5.0.0", True),
            ("9.9.9", "latest", True),
            ("0.1.0", "*", True),
        ],
    )
    def test_satisfies(self, versions: VersionManager, version, range_, expected):
        assert versions.satisfies(version, range_) is expected

    def test_is_range(self, versions: VersionManager):
        assert versions.is_range("^1.0.0")
        assert not versions.is_range("github:user/repo")

    def test_resolve_picks_highest_match(self, versions: VersionManager):
        available = ["18.1.0", "18.2.0", "18.3.1", "19.0.0"]
        assert versions.resolve(available, "^18.0.0") == "18.3.1"
        assert versions.resolve(available, "^20.0.0") is None

    @pytest.mark.parametrize(
        "strategy, expected",
        [("exact", "1.2.3"), ("patch", "~1.2.3"), ("minor", "^1.2.3"), ("major", ">=1.2.3")],
    )
    def test_compatible_range(self, versions: VersionManager, strategy, expected):
        assert versions.compatible_range("1.2.3", strategy) == expected

    def test_compatible_range_unknown_strategy(self, versions: VersionManager):
        with pytest.raises(ValueError):
            versions.compatible_range("1.2.3", "sideways")

    @pytest.mark.parametrize(
        "version, change, expected",
        [
            ("1.2.3", "breaking", "2.0.0"),
            ("1.2.3", "feature", "1.3.0"),
            ("1.2.3", "fix", "1.2.4"),
            ("1.2.3", "prerelease", "1.2.4-0"),
            ("1.2.4-0", "prerelease", "1.2.4-1"),
            ("1.2.4-beta", "prerelease", "1.2.4-beta.0"),
        ],
    )
    def test_bump(self, versions: VersionManager, version, change, expected):
        assert versions.bump(version, change) == expected

    def test_bump_unknown_change(self, versions: VersionManager):
        with pytest.raises(ValueError):
            versions.bump("1.0.0", "cosmetic")


# ---------------------------------------------------------------------------
# Conflict resolution
# ---------------------------------------------------------------------------


class TestResolveConflicts:
    def test_single_range_passes_through(self, versions: VersionManager):
        result = versions.resolve_conflicts([VersionRequirement("react", "react", "^18.2.0")])
        assert result.ok
        assert result.resolved == {"react": "^18.2.0"}

    def test_tuples_are_accepted(self, versions: VersionManager):
        result = versions.resolve_conflicts([("a", "lodash", "^4.0.0"), ("b", "lodash", "^4.0.0")])
        assert result.resolved == {"lodash": "^4.0.0"}

    def test_overlap_returns_tightest_range(self, versions: VersionManager):
        result = versions.resolve_conflicts(
            [("a", "vite", "^5.0.0"), ("b", "vite", "^5.2.0")]
        )
        assert result.ok
        assert result.resolved == {"vite": "^5.2.0"}

    def test_partial_overlap_combines_ranges(self, versions: VersionManager):
        result = versions.resolve_conflicts(
            [("a", "pkg", ">=1.0.0 <3.0.0"), ("b", "pkg", ">=2.0.0 <4.0.0")]
        )
        assert result.ok
        assert result.resolved == {"pkg": ">=1.0.0 <3.0.0 >=2.0.0 <4.0.0"}

    def test_disjoint_ranges_conflict(self, versions: VersionManager):
        result = versions.resolve_conflicts(
            [("react", "react", "^18.2.0"), ("legacy", "react", "^16.0.0")]
        )
        assert not result.ok
        (conflict,) = result.conflicts
        assert conflict.package == "react"
        assert conflict.requirements == {"react": "^18.2.0", "legacy": "^16.0.0"}
        assert "react" not in result.resolved

    def test_catalog_picks_highest_available(self):
        versions = VersionManager(catalog={"react": ["18.1.0", "18.2.0", "18.3.1", "19.0.0"]})
        result = versions.resolve_conflicts(
            [("a", "react", "^18.0.0"), ("b", "react", ">=18.2.0")]
        )
        assert result.resolved == {"react": "18.3.1"}

    def test_catalog_without_match_conflicts(self):
        versions = VersionManager(catalog={"react": ["17.0.2"]})
        result = versions.resolve_conflicts([("a", "react", "^18.0.0")])
        assert not result.ok
        assert result.conflicts[0].requirements == {"a": "^18.0.0"}

    def test_catalog_skips_prerelease(self):
        versions = VersionManager(catalog={"vue": ["3.4.0", "3.5.0-beta.1"]})
        result = versions.resolve_conflicts([("a", "vue", "^3.4.0")])
        assert result.resolved == {"vue": "3.4.0"}

    def test_opaque_ranges(self, versions: VersionManager):
        single = versions.resolve_conflicts([("a", "lib", "github:user/lib")])
        assert single.resolved == {"lib": "github:user/lib"}

        mixed = versions.resolve_conflicts([("a", "lib", "github:user/lib"), ("b", "lib", "^1.0.0")])
        assert not mixed.ok
