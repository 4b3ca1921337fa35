"""CLI entry point for the dependency resolver."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Tuple

from .config import ProjectConfig, load_config
from .constants import DEFAULT_INDEX
from .exceptions import ConfigError, PinflowError
from .metadata import (
    IndexProvider,
    MarkerEnvironment,
    MetadataProvider,
    PypiIndexProvider,
    PypiMetadataProvider,
    load_offline_packages,
)
from .models import PackageName, normalize_extra
from .report import generate_json, generate_text
from .resolution import resolve
from .versions import PrereleasePolicy

logger = logging.getLogger(__name__)


def _add_common_cache_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cache-root",
        default="cache",
        help="Directory where metadata cache files are stored (default: %(default)s)",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Ignore cached index payloads and fetch them again",
    )


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _providers(config: ProjectConfig, args: argparse.Namespace) -> Tuple[MetadataProvider, IndexProvider, object]:
    environment = MarkerEnvironment(config.options.environment)
    if config.packages is not None:
        provider, index = load_offline_packages(config.packages, environment, indexes=config.options.indexes)
        return provider, index, None
    online = PypiMetadataProvider(
        indexes=config.options.indexes,
        cache_root=Path(args.cache_root),
        environment=environment,
        refresh=args.refresh,
    )
    return online, PypiIndexProvider(online), online


def cmd_update_cache(args: argparse.Namespace) -> int:
    indexes = args.index or None
    names: List[str] = list(args.package or [])
    environment = MarkerEnvironment()
    try:
        if args.config:
            config = load_config(Path(args.config))
            indexes = indexes or config.options.indexes
            environment = MarkerEnvironment(config.options.environment)
            names.extend(requirement.name for requirement in config.requirements)
            for group in config.dependency_groups.values():
                names.extend(requirement.name for requirement in group)
    except PinflowError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    provider = PypiMetadataProvider(
        indexes=indexes or [DEFAULT_INDEX],
        cache_root=Path(args.cache_root),
        environment=environment,
        refresh=args.refresh,
    )
    try:
        processed: List[str] = []
        for name in dict.fromkeys(PackageName(item) for item in names):
            try:
                versions = provider.list_versions(name)
            except PinflowError as exc:
                logger.warning("Could not prime %s: %s", name, exc)
                continue
            processed.append(f"{name} ({len(versions)} versions)")
        if processed:
            print("Primed cache entries:")
            for item in processed:
                print(f"  - {item}")
        else:
            print("No cache entries updated.")
        return 0
    finally:
        provider.close()


def cmd_solve(args: argparse.Namespace) -> int:
    online = None
    try:
        config = load_config(Path(args.config))
        if args.prereleases:
            config.options.prereleases = PrereleasePolicy(args.prereleases)
        if args.require_hashes:
            config.options.require_hashes = True
        if args.forbid_runtime_cycles:
            config.options.allow_runtime_cycles = False
        for raw in args.group or []:
            group = normalize_extra(raw)
            if group not in config.dependency_groups:
                raise ConfigError(f"Unknown dependency group: {raw}")
            if group not in config.options.groups:
                config.options.groups.append(group)

        provider, index, online = _providers(config, args)
        resolution = resolve(
            config.requirements,
            provider,
            index,
            options=config.options.resolve_options(),
            groups=config.active_groups(),
        )
        if args.format == "json":
            output = generate_json(resolution, project=config.name)
        else:
            output = generate_text(resolution)
        print(output)
        return 0
    except (PinflowError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        if online is not None:
            online.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve Python requirements into a pinned distribution graph")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update-cache", help="Prime the metadata cache for selected packages")
    _add_common_cache_argument(update)
    update.add_argument("--package", action="append", help="Package to fetch metadata for", default=[])
    update.add_argument("--index", action="append", help="Index base URL (repeatable)", default=[])
    update.add_argument("--config", help="Project configuration file to scan for requirements")
    update.set_defaults(func=cmd_update_cache)

    solve = subparsers.add_parser("solve", help="Resolve package versions for a project config")
    _add_common_cache_argument(solve)
    solve.add_argument("config", help="Path to the project configuration file")
    solve.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    solve.add_argument(
        "--prereleases",
        choices=[policy.value for policy in PrereleasePolicy],
        help="Override the pre-release policy from the config",
    )
    solve.add_argument("--require-hashes", action="store_true", help="Reject artifacts without a verified hash")
    solve.add_argument(
        "--forbid-runtime-cycles",
        action="store_true",
        help="Treat cycles among runtime dependencies as errors",
    )
    solve.add_argument("--group", action="append", help="Enable a project dependency group (repeatable)")
    solve.set_defaults(func=cmd_solve)

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
