"""Version ranges and the set algebra the solver is built on."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from packaging.specifiers import InvalidSpecifier, Specifier, SpecifierSet
from packaging.version import InvalidVersion, Version


@dataclass(frozen=True)
class Range:
    """A contiguous interval of versions; ``None`` bounds are unbounded."""

    lower: Optional[Version] = None
    lower_inclusive: bool = False
    upper: Optional[Version] = None
    upper_inclusive: bool = False

    def __post_init__(self) -> None:
        if self.lower is None:
            object.__setattr__(self, "lower_inclusive", False)
        if self.upper is None:
            object.__setattr__(self, "upper_inclusive", False)

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower < self.upper:
            return False
        if self.lower == self.upper:
            return not (self.lower_inclusive and self.upper_inclusive)
        return True

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower or (version == self.lower and not self.lower_inclusive):
                return False
        if self.upper is not None:
            if version > self.upper or (version == self.upper and not self.upper_inclusive):
                return False
        return True

    def __str__(self) -> str:  # type: ignore[override]
        if self.lower is not None and self.lower == self.upper:
            return f"=={self.lower}"
        parts: List[str] = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower_inclusive else '>'}{self.lower}")
        if self.upper is not None:
            upper = self.upper
            if not self.upper_inclusive and upper.dev == 0 and upper.pre is None and upper.post is None:
                # "<2.0" is stored as "<2.0.dev0"; show it the way it was written.
                upper = Version(upper.base_version)
            parts.append(f"{'<=' if self.upper_inclusive else '<'}{upper}")
        return ", ".join(parts) or "*"


def _lower_key(item: Range) -> Tuple:
    if item.lower is None:
        return (0,)
    return (1, item.lower, 0 if item.lower_inclusive else 1)


def _upper_key(item: Range) -> Tuple:
    if item.upper is None:
        return (1,)
    return (0, item.upper, 1 if item.upper_inclusive else 0)


def _touches(left: Range, right: Range) -> bool:
    """Whether *right* (which starts no earlier than *left*) overlaps or abuts *left*."""
    if left.upper is None or right.lower is None:
        return True
    if right.lower < left.upper:
        return True
    if right.lower == left.upper:
        return left.upper_inclusive or right.lower_inclusive
    return False


def _normalize(ranges: Iterable[Range]) -> Tuple[Range, ...]:
    items = sorted((item for item in ranges if not item.is_empty()), key=_lower_key)
    merged: List[Range] = []
    for item in items:
        if merged and _touches(merged[-1], item):
            last = merged[-1]
            upper = last if _upper_key(last) >= _upper_key(item) else item
            merged[-1] = Range(last.lower, last.lower_inclusive, upper.upper, upper.upper_inclusive)
        else:
            merged.append(item)
    return tuple(merged)


def _intersect_ranges(left: Range, right: Range) -> Optional[Range]:
    lower = left if _lower_key(left) >= _lower_key(right) else right
    upper = left if _upper_key(left) <= _upper_key(right) else right
    candidate = Range(lower.lower, lower.lower_inclusive, upper.upper, upper.upper_inclusive)
    return None if candidate.is_empty() else candidate


class VersionSet:
    """Immutable union of disjoint version ranges.

    Sets are kept in a canonical form (sorted, merged, no empty pieces), so
    two sets describing the same versions compare equal no matter how they
    were built. The solver relies on that to detect propagation fixpoints.
    """

    __slots__ = ("_ranges",)

    def __init__(self, ranges: Iterable[Range] = ()):
        self._ranges = _normalize(ranges)

    # Constructors ---------------------------------------------------------

    @classmethod
    def _build(cls, ranges: Iterable[Range]) -> "VersionSet":
        normalized = _normalize(ranges)
        if not normalized:
            return _EMPTY
        if normalized == _FULL_RANGES:
            return _FULL
        result = cls.__new__(cls)
        result._ranges = normalized
        return result

    @staticmethod
    def empty() -> "VersionSet":
        return _EMPTY

    @staticmethod
    def full() -> "VersionSet":
        return _FULL

    @classmethod
    def exact(cls, version: Union[Version, str]) -> "VersionSet":
        version = version if isinstance(version, Version) else Version(version)
        return cls._build([Range(version, True, version, True)])

    @classmethod
    def below(cls, version: Union[Version, str]) -> "VersionSet":
        version = version if isinstance(version, Version) else Version(version)
        return cls._build([Range(upper=version, upper_inclusive=False)])

    # Algebra --------------------------------------------------------------

    @property
    def ranges(self) -> Tuple[Range, ...]:
        return self._ranges

    def is_empty(self) -> bool:
        return not self._ranges

    def is_full(self) -> bool:
        return self._ranges == _FULL_RANGES

    def contains(self, version: Version) -> bool:
        return any(item.contains(version) for item in self._ranges)

    def __contains__(self, version: object) -> bool:
        if isinstance(version, str):
            version = Version(version)
        if not isinstance(version, Version):
            return False
        return self.contains(version)

    def union(self, other: "VersionSet") -> "VersionSet":
        return VersionSet._build(self._ranges + other._ranges)

    def intersect(self, other: "VersionSet") -> "VersionSet":
        if self.is_full():
            return other
        if other.is_full():
            return self
        pieces: List[Range] = []
        for left in self._ranges:
            for right in other._ranges:
                piece = _intersect_ranges(left, right)
                if piece is not None:
                    pieces.append(piece)
        return VersionSet._build(pieces)

    def complement(self) -> "VersionSet":
        gaps: List[Range] = []
        lower: Optional[Version] = None
        lower_inclusive = False
        for item in self._ranges:
            if item.lower is not None:
                gaps.append(Range(lower, lower_inclusive, item.lower, not item.lower_inclusive))
            if item.upper is None:
                return VersionSet._build(gaps)
            lower, lower_inclusive = item.upper, not item.upper_inclusive
        gaps.append(Range(lower, lower_inclusive))
        return VersionSet._build(gaps)

    def difference(self, other: "VersionSet") -> "VersionSet":
        return self.intersect(other.complement())

    def is_subset(self, other: "VersionSet") -> bool:
        return self.intersect(other) == self

    def is_disjoint(self, other: "VersionSet") -> bool:
        return self.intersect(other).is_empty()

    def singleton(self) -> Optional[Version]:
        """Return the only version in the set, if it holds exactly one."""
        if len(self._ranges) != 1:
            return None
        item = self._ranges[0]
        if item.lower is not None and item.lower == item.upper:
            return item.lower
        return None

    # Dunder ---------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash(self._ranges)

    def __repr__(self) -> str:
        return f"VersionSet({str(self)!r})"

    def __str__(self) -> str:
        if self.is_empty():
            return "<none>"
        if self.is_full():
            return "*"
        excluded = self.complement().singleton()
        if excluded is not None:
            return f"!={excluded}"
        return " || ".join(str(item) for item in self._ranges)


_FULL_RANGES: Tuple[Range, ...] = (Range(),)
_EMPTY = VersionSet.__new__(VersionSet)
_EMPTY._ranges = ()
_FULL = VersionSet.__new__(VersionSet)
_FULL._ranges = _FULL_RANGES


# Specifier parsing ---------------------------------------------------------


def _with_release(version: Version, release: Sequence[int], suffix: str = "") -> Version:
    prefix = f"{version.epoch}!" if version.epoch else ""
    return Version(f"{prefix}{'.'.join(str(part) for part in release)}{suffix}")


def _prefix_range(prefix: str) -> Range:
    base = Version(prefix)
    release = list(base.release)
    upper = release[:-1] + [release[-1] + 1]
    return Range(_with_release(base, release, ".dev0"), True, _with_release(base, upper, ".dev0"), False)


def _specifier_to_set(specifier: Specifier) -> VersionSet:
    operator, raw = specifier.operator, specifier.version
    if operator in {"==", "!="} and raw.endswith(".*"):
        matched = VersionSet._build([_prefix_range(raw[:-2])])
        return matched if operator == "==" else matched.complement()
    try:
        version = Version(raw)
    except InvalidVersion as exc:
        raise ValueError(f"Unsupported version in specifier {specifier}") from exc
    if operator in {"==", "==="}:
        return VersionSet.exact(version)
    if operator == "!=":
        return VersionSet.exact(version).complement()
    if operator == ">=":
        return VersionSet._build([Range(version, True)])
    if operator == ">":
        return VersionSet._build([Range(version, False)])
    if operator == "<=":
        return VersionSet._build([Range(upper=version, upper_inclusive=True)])
    if operator == "<":
        if version.pre is None and version.dev is None and version.post is None:
            # "<2.0" must not admit 2.0a1.
            return VersionSet._build([Range(upper=_with_release(version, version.release, ".dev0"))])
        return VersionSet._build([Range(upper=version)])
    if operator == "~=":
        release = list(version.release)
        upper = release[:-2] + [release[-2] + 1]
        return VersionSet._build([Range(version, True, _with_release(version, upper, ".dev0"), False)])
    raise ValueError(f"Unsupported operator: {operator}")


def to_specifier_set(value: Union[str, SpecifierSet, None]) -> SpecifierSet:
    if value is None:
        return SpecifierSet()
    if isinstance(value, SpecifierSet):
        return value
    text = value.strip()
    if text in {"", "*"}:
        return SpecifierSet()
    try:
        return SpecifierSet(text)
    except InvalidSpecifier as exc:
        raise ValueError(f"Invalid version specifier {value!r}") from exc


def parse_specifiers(value: Union[str, SpecifierSet, None]) -> VersionSet:
    """Convert a PEP 440 specifier string (or ``SpecifierSet``) into a VersionSet."""

    result = VersionSet.full()
    for specifier in sorted(to_specifier_set(value), key=str):
        result = result.intersect(_specifier_to_set(specifier))
    return result


def mentions_prerelease(value: Union[str, SpecifierSet, None]) -> bool:
    return bool(to_specifier_set(value).prereleases)


# Pre-release policy --------------------------------------------------------


class PrereleasePolicy(str, enum.Enum):
    DISALLOW = "disallow"
    ALLOW = "allow"
    IF_NECESSARY = "if-necessary"
    EXPLICIT = "explicit"
    IF_NECESSARY_OR_EXPLICIT = "if-necessary-or-explicit"


def filter_candidates(
    versions: Iterable[Version],
    allowed: VersionSet,
    policy: PrereleasePolicy = PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT,
    explicit: bool = False,
) -> List[Version]:
    """Return the members of *versions* inside *allowed* that *policy* admits.

    The input order is preserved.
    """

    matching = [version for version in versions if allowed.contains(version)]
    if policy is PrereleasePolicy.ALLOW:
        return matching
    if explicit and policy in {PrereleasePolicy.EXPLICIT, PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT}:
        return matching
    finals = [version for version in matching if not version.is_prerelease]
    if finals or policy in {PrereleasePolicy.DISALLOW, PrereleasePolicy.EXPLICIT}:
        return finals
    return matching


def parse_version(value: Union[str, Version]) -> Version:
    if isinstance(value, Version):
        return value
    try:
        return Version(str(value))
    except InvalidVersion as exc:
        raise ValueError(f"Invalid version {value!r}") from exc
