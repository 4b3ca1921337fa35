"""Shared fixtures for pinflow tests."""
from __future__ import annotations

import hashlib
from typing import Any, Callable, Dict, Tuple

import pytest

from pinflow.metadata import InMemoryIndex, InMemoryProvider, load_offline_packages

TEST_TAGS = ["py3-none-any"]

Repo = Tuple[InMemoryProvider, InMemoryIndex]


def fake_digest(filename: str) -> str:
    return "sha256:" + hashlib.sha256(filename.encode("utf-8")).hexdigest()


def universal_wheel(name: str, version: str) -> Dict[str, Any]:
    filename = f"{name.replace('-', '_')}-{version}-py3-none-any.whl"
    return {"filename": filename, "hashes": [fake_digest(filename)]}


def build_repo(packages: Dict[str, Dict[str, Any]], wheels: bool = True) -> Repo:
    """Offline provider and index; versions without artifacts get a universal wheel."""

    data: Dict[str, Dict[str, Any]] = {}
    for name, versions in packages.items():
        data[name] = {}
        for version, entry in versions.items():
            entry = dict(entry or {})
            if wheels and "artifacts" not in entry and not entry.get("unavailable"):
                entry["artifacts"] = [universal_wheel(name, version)]
            data[name][version] = entry
    return load_offline_packages(data)


@pytest.fixture
def repo() -> Callable[..., Repo]:
    return build_repo
