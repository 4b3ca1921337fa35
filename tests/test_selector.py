"""Tests for distribution selection."""
from __future__ import annotations

import pytest
from packaging.version import Version

from pinflow.dists import (
    DirectorySourceDist,
    DirectUrlBuiltDist,
    DirectUrlSourceDist,
    GitSourceDist,
    InstalledDist,
    PathBuiltDist,
    RegistryBuiltDist,
    RegistrySourceDist,
    needs_build,
)
from pinflow.exceptions import SelectionError
from pinflow.metadata import InMemoryIndex, describe_artifact
from pinflow.models import DirectorySource, DirectUrlSource, GitSource, HashDigest, PackageName, PathSource
from pinflow.selector import DistributionSelector, HashPolicy

A = PackageName("a")
V1 = Version("1.0")
GOOD = HashDigest("sha256", "aa" * 32)
BAD = HashDigest("sha256", "bb" * 32)


def _index(*artifacts, indexes=("primary", "secondary")) -> InMemoryIndex:
    index = InMemoryIndex(indexes)
    for artifact in artifacts:
        index.add("a", "1.0", artifact)
    return index


def _wheel(tag: str = "py3-none-any", index: str = "primary", hashes=(GOOD,)):
    return describe_artifact(f"a-1.0-{tag}.whl", url=f"https://example/{index}/a.whl", hashes=hashes, index=index)


def _sdist(index: str = "primary", hashes=(GOOD,)):
    return describe_artifact("a-1.0.tar.gz", url=f"https://example/{index}/a.tar.gz", hashes=hashes, index=index)


def _selector(index, **kwargs) -> DistributionSelector:
    kwargs.setdefault("supported_tags", ["cp311-cp311-manylinux_2_17_x86_64", "py3-none-any"])
    kwargs.setdefault("max_workers", 1)
    return DistributionSelector(index, **kwargs)


class TestRegistrySelection:
    def test_built_preferred_over_source(self) -> None:
        selection = _selector(_index(_sdist(), _wheel())).select(A, V1)
        assert isinstance(selection.dist, RegistryBuiltDist)
        assert selection.dist.sdist is not None
        assert selection.dist.index == "primary"
        assert not needs_build(selection.dist)

    def test_best_tag_wins(self) -> None:
        generic = _wheel("py3-none-any")
        native = _wheel("cp311-cp311-manylinux_2_17_x86_64")
        selection = _selector(_index(generic, native)).select(A, V1)
        assert selection.dist.best_wheel() == native

    def test_compressed_tag_sets(self) -> None:
        wheel = _wheel("py2.py3-none-any")
        selection = _selector(_index(wheel), supported_tags=["py3-none-any"]).select(A, V1)
        assert selection.dist.best_wheel() == wheel

    def test_incompatible_wheel_falls_back_to_source(self) -> None:
        index = _index(_wheel("cp27-cp27m-win32"), _sdist())
        selection = _selector(index).select(A, V1)
        assert isinstance(selection.dist, RegistrySourceDist)
        assert needs_build(selection.dist)

    def test_indexes_are_tried_in_order(self) -> None:
        index = _index(_sdist(index="secondary"), _wheel(index="secondary"))
        selection = _selector(index).select(A, V1)
        assert selection.dist.index == "secondary"

    def test_earlier_index_source_beats_later_index_wheel(self) -> None:
        index = _index(_sdist(index="primary"), _wheel(index="secondary"))
        selection = _selector(index).select(A, V1)
        assert isinstance(selection.dist, RegistrySourceDist)
        assert selection.dist.index == "primary"

    def test_nothing_to_select(self) -> None:
        with pytest.raises(SelectionError) as info:
            _selector(_index()).select(A, V1)
        assert info.value.message == "no distribution found"
        assert str(info.value) == "a==1.0: no distribution found"

    def test_installed_version_is_reused(self) -> None:
        selection = _selector(_index(_wheel()), installed={"a": V1}).select(A, V1)
        assert selection.dist == InstalledDist(A, V1)

    def test_installed_other_version_is_ignored(self) -> None:
        selection = _selector(_index(_wheel()), installed={"a": Version("0.9")}).select(A, V1)
        assert isinstance(selection.dist, RegistryBuiltDist)


class TestHashPolicy:
    def test_missing_digest_rejected(self) -> None:
        index = _index(_wheel(hashes=()), _sdist())
        selection = _selector(index, hash_policy=HashPolicy(required=True)).select(A, V1)
        assert isinstance(selection.dist, RegistrySourceDist)
        assert selection.hashes == (GOOD,)

    def test_expected_digest_mismatch(self) -> None:
        policy = HashPolicy.build(required=True, expected={"a": [str(GOOD)]})
        index = _index(_wheel(hashes=(BAD,)))
        with pytest.raises(SelectionError) as info:
            _selector(index, hash_policy=policy).select(A, V1)
        assert info.value.message == "no distribution passed hash verification"
        assert any("hash mismatch" in item for item in info.value.rejected)

    def test_expected_digest_match(self) -> None:
        policy = HashPolicy.build(required=True, expected={"A": ["SHA256:" + GOOD.digest]})
        selection = _selector(_index(_wheel(hashes=(GOOD,))), hash_policy=policy).select(A, V1)
        assert selection.hashes == (GOOD,)

    def test_other_algorithms_are_dropped_when_required(self) -> None:
        md5 = HashDigest("md5", "cc" * 16)
        index = _index(_wheel(hashes=(GOOD, md5)))
        selection = _selector(index, hash_policy=HashPolicy(required=True)).select(A, V1)
        assert selection.hashes == (GOOD,)

    def test_git_cannot_be_hashed(self) -> None:
        selector = _selector(
            _index(),
            sources={A: GitSource("https://example/a.git", "main")},
            hash_policy=HashPolicy(required=True),
        )
        with pytest.raises(SelectionError, match="cannot be verified"):
            selector.select(A, V1)


class TestExplicitSources:
    @pytest.mark.parametrize(
        "source, expected",
        [
            (DirectUrlSource("https://example/a-1.0-py3-none-any.whl"), DirectUrlBuiltDist),
            (DirectUrlSource("https://example/a-1.0.tar.gz"), DirectUrlSourceDist),
            (GitSource("https://example/a.git", "v1.0"), GitSourceDist),
            (PathSource("/wheels/a-1.0-py3-none-any.whl"), PathBuiltDist),
            (DirectorySource("/src/a", editable=True), DirectorySourceDist),
        ],
    )
    def test_source_variants(self, source, expected) -> None:
        selection = _selector(_index(_wheel()), sources={A: source}).select(A, V1)
        assert isinstance(selection.dist, expected)

    def test_explicit_source_beats_installed(self) -> None:
        selector = _selector(_index(), sources={A: PathSource("/src/a-1.0.tar.gz")}, installed={A: V1})
        assert needs_build(selector.select(A, V1).dist)


class TestSelectAll:
    def test_failures_are_returned_in_order(self) -> None:
        index = InMemoryIndex(["primary"])
        index.add("b", "2.0", describe_artifact("b-2.0-py3-none-any.whl", index="primary"))
        pins = [(PackageName("b"), Version("2.0")), (A, V1)]
        outcomes = _selector(index, max_workers=4).select_all(pins)
        assert list(outcomes) == pins
        assert isinstance(outcomes[pins[0]].dist, RegistryBuiltDist)
        assert isinstance(outcomes[pins[1]], SelectionError)
