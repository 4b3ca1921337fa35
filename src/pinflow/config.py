"""Parse project configuration files for the resolver."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .constants import DEFAULT_FETCH_WORKERS, DEFAULT_HASH_ALGORITHM, DEFAULT_INDEX, SUPPORTED_HASH_ALGORITHMS
from .exceptions import ConfigError
from .metadata import MarkerEnvironment
from .models import DirectorySource, GitSource, HashDigest, PathSource, Requirement, Source, normalize_extra
from .resolution import ResolveOptions
from .versions import PrereleasePolicy, parse_version


@dataclass
class ResolverOptions:
    prereleases: PrereleasePolicy = PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT
    require_hashes: bool = False
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    allow_runtime_cycles: bool = True
    indexes: List[str] = field(default_factory=lambda: [DEFAULT_INDEX])
    supported_tags: Optional[List[str]] = None
    installed: Dict[str, str] = field(default_factory=dict)
    hashes: Dict[str, List[str]] = field(default_factory=dict)
    groups: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    max_workers: int = DEFAULT_FETCH_WORKERS

    def resolve_options(self) -> ResolveOptions:
        return ResolveOptions(
            prereleases=self.prereleases,
            require_hashes=self.require_hashes,
            hash_algorithm=self.hash_algorithm,
            hashes=dict(self.hashes),
            allow_runtime_cycles=self.allow_runtime_cycles,
            supported_tags=list(self.supported_tags) if self.supported_tags is not None else None,
            installed=dict(self.installed),
            max_workers=self.max_workers,
        )


@dataclass
class ProjectConfig:
    name: str
    requirements: List[Requirement]
    options: ResolverOptions
    dependency_groups: Dict[str, List[Requirement]] = field(default_factory=dict)
    packages: Optional[Dict[str, Any]] = None

    def active_groups(self) -> Dict[str, List[Requirement]]:
        """Dependency groups of the project enabled through ``options.groups``."""
        return {group: self.dependency_groups[group] for group in self.options.groups}


def _string_list(value: Any, what: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{what}' must be a string or a list of strings")
    return list(value)


def _explicit_source(entry: Mapping[str, Any]) -> Optional[Source]:
    named = [key for key in ("url", "git", "path", "directory") if entry.get(key)]
    if len(named) > 1:
        raise ConfigError(f"Requirement {entry.get('name')!r} names more than one source: {', '.join(named)}")
    if entry.get("git"):
        return GitSource(url=str(entry["git"]), rev=entry.get("rev"))
    if entry.get("path"):
        return PathSource(path=str(entry["path"]))
    if entry.get("directory"):
        return DirectorySource(path=str(entry["directory"]), editable=bool(entry.get("editable")))
    return None


def _normalize_requirement(entry: Any, environment: MarkerEnvironment) -> Requirement:
    try:
        if isinstance(entry, str):
            return Requirement.parse(entry, environment=environment)
        if not isinstance(entry, dict):
            raise ConfigError(f"Requirement entries must be strings or mappings, got {entry!r}")
        name = entry.get("name") or entry.get("package")
        if not name:
            raise ConfigError("Requirement entry missing 'name'")
        marker = entry.get("marker")
        return Requirement.build(
            name=str(name),
            specifier=str(entry.get("version") or ""),
            extras=_string_list(entry.get("extras"), "extras"),
            groups=_string_list(entry.get("groups"), "groups"),
            active=environment.evaluate(marker) if marker else True,
            url=entry.get("url"),
            source=_explicit_source(entry),
        )
    except ConfigError:
        raise
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _parse_options(raw: Any) -> ResolverOptions:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("'options' must be a mapping")
    try:
        prereleases = PrereleasePolicy(raw.get("prereleases", PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT.value))
    except ValueError as exc:
        choices = ", ".join(policy.value for policy in PrereleasePolicy)
        raise ConfigError(f"'prereleases' must be one of: {choices}") from exc

    algorithm = str(raw.get("hash_algorithm") or DEFAULT_HASH_ALGORITHM).lower()
    if algorithm not in SUPPORTED_HASH_ALGORITHMS:
        raise ConfigError(f"Unsupported hash algorithm {algorithm!r}")

    hashes_raw = raw.get("hashes") or {}
    if not isinstance(hashes_raw, dict):
        raise ConfigError("'hashes' must map package names to digests")
    hashes = {str(name): _string_list(digests, f"hashes.{name}") for name, digests in hashes_raw.items()}
    for digests in hashes.values():
        for digest in digests:
            try:
                HashDigest.parse(digest)
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc

    installed_raw = raw.get("installed") or {}
    if not isinstance(installed_raw, dict):
        raise ConfigError("'installed' must map package names to versions")
    installed = {str(name): str(version) for name, version in installed_raw.items()}
    for name, version in installed.items():
        try:
            parse_version(version)
        except ValueError as exc:
            raise ConfigError(f"installed.{name}: {exc}") from exc

    environment_raw = raw.get("environment") or {}
    if not isinstance(environment_raw, dict):
        raise ConfigError("'environment' must map marker variables to values")

    tags = raw.get("supported_tags")
    workers = raw.get("max_workers", DEFAULT_FETCH_WORKERS)
    if not isinstance(workers, int) or workers < 1:
        raise ConfigError("'max_workers' must be a positive integer")
    return ResolverOptions(
        prereleases=prereleases,
        require_hashes=bool(raw.get("require_hashes")),
        hash_algorithm=algorithm,
        allow_runtime_cycles=bool(raw.get("allow_runtime_cycles", True)),
        indexes=_string_list(raw.get("indexes"), "indexes") or [DEFAULT_INDEX],
        supported_tags=_string_list(tags, "supported_tags") if tags is not None else None,
        installed=installed,
        hashes=hashes,
        groups=[normalize_extra(group) for group in _string_list(raw.get("groups"), "groups")],
        environment={str(key): str(value) for key, value in environment_raw.items()},
        max_workers=workers,
    )


def parse_config(data: Any, default_name: str = "project") -> ProjectConfig:
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    project = data.get("project")
    project_name = project.get("name") if isinstance(project, dict) else project
    if not project_name:
        project_name = default_name

    options = _parse_options(data.get("options"))
    environment = MarkerEnvironment(options.environment)

    requirements_data = data.get("requirements")
    if not isinstance(requirements_data, list) or not requirements_data:
        raise ConfigError("Configuration must include a non-empty 'requirements' list")
    requirements = [_normalize_requirement(entry, environment) for entry in requirements_data]

    groups_data = data.get("dependency-groups") or {}
    if not isinstance(groups_data, dict):
        raise ConfigError("'dependency-groups' must map group names to requirement lists")
    dependency_groups: Dict[str, List[Requirement]] = {}
    for group, entries in groups_data.items():
        if not isinstance(entries, list):
            raise ConfigError(f"Dependency group {group!r} must be a list")
        dependency_groups[normalize_extra(str(group))] = [
            _normalize_requirement(entry, environment) for entry in entries
        ]
    missing = [group for group in options.groups if group not in dependency_groups]
    if missing:
        raise ConfigError(f"Unknown dependency group(s): {', '.join(missing)}")

    packages = data.get("packages")
    if packages is not None and not isinstance(packages, dict):
        raise ConfigError("'packages' must map package names to versions")

    return ProjectConfig(
        name=str(project_name),
        requirements=requirements,
        options=options,
        dependency_groups=dependency_groups,
        packages=packages,
    )


def load_config(path: Path) -> ProjectConfig:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"{path}: {exc.strerror or exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    return parse_config(data, default_name=path.stem)
