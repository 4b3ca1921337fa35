"""Tests for the solve, select and build pipeline."""
from __future__ import annotations

import pytest
from packaging.version import Version

from conftest import TEST_TAGS, build_repo
from pinflow.dists import DirectUrlSourceDist, GitSourceDist, RegistryBuiltDist
from pinflow.exceptions import SelectionError, Unsatisfiable
from pinflow.models import DirectUrlSource, GitSource, PackageName, Requirement
from pinflow.resolution import ResolveOptions, collect_sources, resolve
from pinflow.solver import SolverOptions, solve

OPTIONS = ResolveOptions(supported_tags=TEST_TAGS, max_workers=1)


class TestSelectionFeedback:
    def test_version_without_distribution_is_excluded(self) -> None:
        provider, index = build_repo({"a": {"1.0": {}, "2.0": {"artifacts": []}}})
        resolution = resolve([Requirement.parse("a")], provider, index, OPTIONS)
        assert resolution.graph.versions() == {PackageName("a"): Version("1.0")}
        assert resolution.excluded == {PackageName("a"): [Version("2.0")]}
        assert resolution.attempts == 2

    def test_no_alternative_left(self) -> None:
        provider, index = build_repo({"a": {"2.0": {"artifacts": []}}})
        with pytest.raises(SelectionError) as info:
            resolve([Requirement.parse("a==2.0")], provider, index, OPTIONS)
        assert info.value.package == "a"
        assert info.value.version == "2.0"
        assert isinstance(info.value.__cause__, Unsatisfiable)

    def test_dependents_are_re_solved(self) -> None:
        packages = {
            "a": {"1.0": {"requires": ["b<2.0"]}, "2.0": {"requires": ["b>=2.0"]}},
            "b": {"1.0": {}, "2.0": {"artifacts": []}},
        }
        provider, index = build_repo(packages)
        resolution = resolve([Requirement.parse("a")], provider, index, OPTIONS)
        assert resolution.graph.versions() == {PackageName("a"): Version("1.0"), PackageName("b"): Version("1.0")}

    def test_unsatisfiable_without_selection_failures(self) -> None:
        provider, index = build_repo({"a": {"1.0": {}}})
        with pytest.raises(Unsatisfiable):
            resolve([Requirement.parse("a>=2.0")], provider, index, OPTIONS)

    def test_required_hashes(self) -> None:
        packages = {
            "a": {
                "1.0": {"artifacts": [{"filename": "a-1.0-py3-none-any.whl", "hashes": ["sha256:" + "ab" * 32]}]},
                "1.1": {"artifacts": ["a-1.1-py3-none-any.whl"]},
            }
        }
        provider, index = build_repo(packages)
        options = ResolveOptions(supported_tags=TEST_TAGS, max_workers=1, require_hashes=True)
        resolution = resolve([Requirement.parse("a")], provider, index, options)
        node = resolution.graph.get("a")
        assert node is not None and node.version == Version("1.0")
        assert [str(digest) for digest in node.hashes] == ["sha256:" + "ab" * 32]


class TestExplicitSources:
    def test_direct_url_requirement(self) -> None:
        provider, index = build_repo({"a": {"1.0": {}}})
        requirement = Requirement.parse("a @ https://example.com/a-1.0.tar.gz")
        resolution = resolve([requirement], provider, index, OPTIONS)
        node = resolution.graph.get("a")
        assert node is not None
        assert node.dist == DirectUrlSourceDist(PackageName("a"), Version("1.0"), "https://example.com/a-1.0.tar.gz")

    def test_installed_version(self) -> None:
        provider, index = build_repo({"a": {"1.0": {}}})
        options = ResolveOptions(supported_tags=TEST_TAGS, max_workers=1, installed={"A": "1.0"})
        node = resolve([Requirement.parse("a")], provider, index, options).graph.get("a")
        assert node is not None and node.index() is None

    def test_project_source_wins_over_dependency_metadata(self) -> None:
        packages = {
            "a": {"1.0": {"requires": ["b @ git+https://example.com/other.git"]}},
            "b": {"1.0": {}},
        }
        provider, _ = build_repo(packages)
        requirements = [Requirement.parse("a"), Requirement.parse("b @ git+https://example.com/b.git@v1")]
        result = solve(requirements, provider, SolverOptions(max_workers=1))
        sources = collect_sources(result)
        assert sources == {PackageName("b"): GitSource("https://example.com/b.git", "v1")}

    def test_dependency_source_used_when_project_is_silent(self) -> None:
        packages = {
            "a": {"1.0": {"requires": ["b @ https://example.com/b-1.0.tar.gz"]}},
            "b": {"1.0": {}},
        }
        provider, index = build_repo(packages)
        resolution = resolve([Requirement.parse("a")], provider, index, OPTIONS)
        b = resolution.graph.get("b")
        a = resolution.graph.get("a")
        assert b is not None and a is not None
        assert b.dist == DirectUrlSourceDist(PackageName("b"), Version("1.0"), "https://example.com/b-1.0.tar.gz")
        assert isinstance(a.dist, RegistryBuiltDist)
        assert collect_sources(resolution.solver)[PackageName("b")] == DirectUrlSource("https://example.com/b-1.0.tar.gz")

    def test_git_requirement(self) -> None:
        provider, index = build_repo({"a": {"1.0": {}}})
        resolution = resolve([Requirement.parse("a @ git+https://example.com/a.git@main")], provider, index, OPTIONS)
        node = resolution.graph.get("a")
        assert node is not None and isinstance(node.dist, GitSourceDist)
        assert node.dist.rev == "main"
