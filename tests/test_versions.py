"""Tests for version sets, specifier conversion and the pre-release policy."""
from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st
from packaging.version import Version

from pinflow.versions import (
    PrereleasePolicy,
    VersionSet,
    filter_candidates,
    mentions_prerelease,
    parse_specifiers,
    parse_version,
)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

version_strings = st.builds(lambda major, minor: f"{major}.{minor}", st.integers(0, 4), st.integers(0, 3))
versions = version_strings.map(Version)
operators = st.sampled_from(["==", "!=", ">=", ">", "<=", "<"])
single_specifiers = st.builds(lambda op, version: f"{op}{version}", operators, version_strings)


@st.composite
def version_sets(draw: st.DrawFn) -> VersionSet:
    pieces = draw(st.lists(st.lists(single_specifiers, min_size=1, max_size=2), min_size=0, max_size=3))
    result = VersionSet.empty()
    for clauses in pieces:
        result = result.union(parse_specifiers(",".join(clauses)))
    return result


# ---------------------------------------------------------------------------
# Specifier conversion
# ---------------------------------------------------------------------------


class TestParseSpecifiers:
    def test_empty_text_is_full(self) -> None:
        assert parse_specifiers("").is_full()
        assert parse_specifiers("*").is_full()
        assert parse_specifiers(None) is VersionSet.full()

    def test_range(self) -> None:
        allowed = parse_specifiers(">=1.0,<2.0")
        assert Version("1.0") in allowed
        assert Version("1.5") in allowed
        assert Version("2.0") not in allowed
        assert Version("0.9") not in allowed

    def test_upper_bound_excludes_prereleases_of_that_release(self) -> None:
        allowed = parse_specifiers("<2.0")
        assert Version("2.0a1") not in allowed
        assert Version("2.0.dev0") not in allowed
        assert Version("1.9.9") in allowed

    def test_wildcards(self) -> None:
        matched = parse_specifiers("==1.*")
        assert "1.0" in matched
        assert "1.99" in matched
        assert "2.0" not in matched
        excluded = parse_specifiers("!=1.*")
        assert "1.4" not in excluded
        assert "2.0" in excluded
        assert "0.9" in excluded

    def test_compatible_release(self) -> None:
        allowed = parse_specifiers("~=1.4")
        assert "1.4" in allowed
        assert "1.9" in allowed
        assert "1.3" not in allowed
        assert "2.0" not in allowed

        narrow = parse_specifiers("~=1.4.2")
        assert "1.4.5" in narrow
        assert "1.5.0" not in narrow

    def test_exclusion_and_exact(self) -> None:
        assert str(parse_specifiers("==1.0")) == "==1.0"
        assert str(parse_specifiers("!=1.0")) == "!=1.0"
        assert parse_specifiers("===1.0") == VersionSet.exact("1.0")
        assert str(parse_specifiers(">=1.0,<2.0")) == ">=1.0, <2.0"

    def test_contradiction_is_empty(self) -> None:
        assert parse_specifiers(">=2.0,<1.0").is_empty()
        assert str(VersionSet.empty()) == "<none>"
        assert str(VersionSet.full()) == "*"

    def test_invalid_specifier(self) -> None:
        with pytest.raises(ValueError):
            parse_specifiers(">=not a version")

    def test_mentions_prerelease(self) -> None:
        assert mentions_prerelease(">=2.0b1")
        assert not mentions_prerelease(">=2.0")

    def test_parse_version(self) -> None:
        assert parse_version("1.0") == Version("1.0")
        with pytest.raises(ValueError):
            parse_version("banana")


# ---------------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------------


class TestCanonicalForm:
    def test_adjacent_ranges_merge(self) -> None:
        merged = parse_specifiers(">=1.0,<=2.0").union(parse_specifiers(">2.0,<=3.0"))
        assert merged == parse_specifiers(">=1.0,<=3.0")
        assert len(merged.ranges) == 1

    def test_construction_order_does_not_matter(self) -> None:
        left = parse_specifiers(">=1.0").intersect(parse_specifiers("<=2.0"))
        right = parse_specifiers("<=2.0,>=1.0")
        assert left == right
        assert hash(left) == hash(right)

    def test_singleton(self) -> None:
        assert VersionSet.exact("1.2").singleton() == Version("1.2")
        assert parse_specifiers(">=1.0").singleton() is None

    def test_subset_and_disjoint(self) -> None:
        wide = parse_specifiers(">=1.0")
        narrow = parse_specifiers(">=1.5,<2.0")
        assert narrow.is_subset(wide)
        assert not wide.is_subset(narrow)
        assert parse_specifiers("<1.0").is_disjoint(wide)


# ---------------------------------------------------------------------------
# Set laws
# ---------------------------------------------------------------------------


class TestSetLaws:
    @given(version_sets(), version_sets())
    def test_union_and_intersection_commute(self, left: VersionSet, right: VersionSet) -> None:
        assert left.union(right) == right.union(left)
        assert left.intersect(right) == right.intersect(left)

    @given(version_sets())
    def test_complement_is_an_involution(self, value: VersionSet) -> None:
        assert value.complement().complement() == value

    @given(version_sets())
    def test_complement_partitions_everything(self, value: VersionSet) -> None:
        assert value.intersect(value.complement()).is_empty()
        assert value.union(value.complement()).is_full()

    @given(version_sets(), version_sets())
    def test_de_morgan(self, left: VersionSet, right: VersionSet) -> None:
        assert left.union(right).complement() == left.complement().intersect(right.complement())

    @given(version_sets(), version_sets(), versions)
    def test_membership_matches_operations(self, left: VersionSet, right: VersionSet, version: Version) -> None:
        assert left.intersect(right).contains(version) == (left.contains(version) and right.contains(version))
        assert left.union(right).contains(version) == (left.contains(version) or right.contains(version))
        assert left.difference(right).contains(version) == (left.contains(version) and not right.contains(version))

    @given(single_specifiers, versions)
    def test_agrees_with_packaging(self, specifier: str, version: Version) -> None:
        from packaging.specifiers import SpecifierSet

        assert parse_specifiers(specifier).contains(version) == SpecifierSet(specifier).contains(version, prereleases=True)


# ---------------------------------------------------------------------------
# Pre-release policy
# ---------------------------------------------------------------------------


class TestFilterCandidates:
    available = [Version("1.0"), Version("2.0b1")]

    def test_default_prefers_finals(self) -> None:
        assert filter_candidates(self.available, VersionSet.full()) == [Version("1.0")]

    def test_if_necessary_falls_back_to_prereleases(self) -> None:
        allowed = parse_specifiers(">=1.5")
        assert filter_candidates(self.available, allowed, PrereleasePolicy.IF_NECESSARY) == [Version("2.0b1")]
        assert filter_candidates(self.available, allowed, PrereleasePolicy.DISALLOW) == []

    def test_allow_and_explicit(self) -> None:
        assert filter_candidates(self.available, VersionSet.full(), PrereleasePolicy.ALLOW) == self.available
        assert filter_candidates(self.available, VersionSet.full(), PrereleasePolicy.EXPLICIT, explicit=True) == self.available
        assert filter_candidates(self.available, VersionSet.full(), PrereleasePolicy.EXPLICIT) == [Version("1.0")]

    def test_order_is_preserved(self) -> None:
        available = [Version("1.2"), Version("1.0"), Version("1.1")]
        assert filter_candidates(available, VersionSet.full()) == available
