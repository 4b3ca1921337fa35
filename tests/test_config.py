"""Tests for project configuration parsing."""
from __future__ import annotations

from pathlib import Path

import pytest

from pinflow.config import load_config, parse_config
from pinflow.exceptions import ConfigError
from pinflow.models import DirectorySource, DirectUrlSource, GitSource, PathSource
from pinflow.versions import PrereleasePolicy


def _config(**extra):
    data = {"project": {"name": "demo"}, "requirements": ["requests>=2.0"]}
    data.update(extra)
    return data


class TestLoadConfig:
    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "stack.yaml"
        path.write_text(
            "project: demo\n"
            "requirements:\n"
            "  - requests[socks]>=2.0\n"
            "  - name: attrs\n"
            "    version: '>=22'\n"
            "options:\n"
            "  prereleases: allow\n"
            "  require_hashes: true\n",
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.name == "demo"
        assert [str(item) for item in config.requirements] == ["requests[socks]>=2.0", "attrs>=22"]
        assert config.options.prereleases is PrereleasePolicy.ALLOW
        assert config.options.require_hashes is True
        assert config.packages is None

    def test_project_name_defaults_to_file_stem(self, tmp_path: Path) -> None:
        path = tmp_path / "stack.yaml"
        path.write_text("requirements: [six]\n", encoding="utf-8")
        assert load_config(path).name == "stack"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("requirements: [six\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(path)


class TestRequirements:
    def test_sources(self) -> None:
        config = parse_config(
            _config(
                requirements=[
                    {"name": "a", "git": "https://example.com/a.git", "rev": "v1"},
                    {"name": "b", "path": "/wheels/b-1.0-py3-none-any.whl"},
                    {"name": "c", "directory": "./c", "editable": True},
                    {"name": "d", "url": "https://example.com/d-1.0.tar.gz"},
                ]
            )
        )
        sources = [item.source for item in config.requirements]
        assert sources == [
            GitSource("https://example.com/a.git", "v1"),
            PathSource("/wheels/b-1.0-py3-none-any.whl"),
            DirectorySource("./c", editable=True),
            DirectUrlSource("https://example.com/d-1.0.tar.gz"),
        ]

    def test_markers_use_environment_overrides(self) -> None:
        config = parse_config(
            _config(
                requirements=["a; python_version < '3.0'", {"name": "b", "marker": "sys_platform == 'win32'"}],
                options={"environment": {"python_version": "2.7", "sys_platform": "linux"}},
            )
        )
        assert [item.active for item in config.requirements] == [True, False]

    def test_dependency_groups(self) -> None:
        config = parse_config(
            _config(**{"dependency-groups": {"Dev": ["pytest"]}, "options": {"groups": ["dev"]}})
        )
        assert [str(item) for item in config.active_groups()["dev"]] == ["pytest"]

    @pytest.mark.parametrize(
        "data, message",
        [
            ([], "root must be a mapping"),
            ({"requirements": []}, "non-empty 'requirements'"),
            (_config(requirements=[{"version": ">=1"}]), "missing 'name'"),
            (_config(requirements=["not a requirement!!"]), "Invalid requirement"),
            (_config(requirements=[{"name": "a", "git": "x", "path": "y"}]), "more than one source"),
            (_config(options={"prereleases": "sometimes"}), "'prereleases' must be one of"),
            (_config(options={"hash_algorithm": "crc32"}), "Unsupported hash algorithm"),
            (_config(options={"hashes": {"a": ["deadbeef"]}}), "algorithm:digest"),
            (_config(options={"installed": {"a": "banana"}}), "installed.a"),
            (_config(options={"groups": ["dev"]}), "Unknown dependency group"),
            (_config(options={"max_workers": 0}), "max_workers"),
            (_config(packages=["a"]), "'packages' must map"),
        ],
    )
    def test_invalid(self, data, message: str) -> None:
        with pytest.raises(ConfigError, match=message):
            parse_config(data)


class TestOptions:
    def test_defaults(self) -> None:
        options = parse_config(_config()).options
        assert options.prereleases is PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT
        assert options.allow_runtime_cycles is True
        assert options.indexes == ["https://pypi.org/pypi"]
        assert options.supported_tags is None

    def test_resolve_options(self) -> None:
        options = parse_config(
            _config(
                options={
                    "allow_runtime_cycles": False,
                    "supported_tags": ["py3-none-any"],
                    "hashes": {"requests": ["sha256:" + "ab" * 32]},
                }
            )
        ).options
        converted = options.resolve_options()
        assert converted.allow_runtime_cycles is False
        assert converted.supported_tags == ["py3-none-any"]
        assert converted.hashes == {"requests": ["sha256:" + "ab" * 32]}
