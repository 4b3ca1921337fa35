"""Terms, incompatibilities and their causes."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

from packaging.version import Version

from .models import PackageName
from .versions import VersionSet

ROOT_VERSION = Version("0")


@dataclass(frozen=True)
class SolverPackage:
    """A package as the solver sees it.

    ``A[x]`` (an extra) and ``A:g`` (a dependency group) are separate solver
    packages that depend on ``A`` at the very same version.
    """

    name: PackageName
    extra: Optional[str] = None
    group: Optional[str] = None
    is_root: bool = False

    def base(self) -> "SolverPackage":
        return SolverPackage(self.name)

    @property
    def is_base(self) -> bool:
        return not self.is_root and self.extra is None and self.group is None

    def sort_key(self) -> Tuple[int, str, str, str]:
        return (0 if self.is_root else 1, str(self.name), self.extra or "", self.group or "")

    def __str__(self) -> str:  # type: ignore[override]
        if self.is_root:
            return "the project"
        if self.extra:
            return f"{self.name}[{self.extra}]"
        if self.group:
            return f"{self.name}:{self.group}"
        return str(self.name)


ROOT = SolverPackage(PackageName("root"), is_root=True)


class Relation(enum.Enum):
    SUBSET = "subset"
    DISJOINT = "disjoint"
    OVERLAPPING = "overlapping"


@dataclass(frozen=True)
class Term:
    """A statement about one package.

    A positive term says the package is selected at a version in
    ``versions``; a negative term says it is either not selected or selected
    outside ``versions``.
    """

    package: SolverPackage
    versions: VersionSet
    positive: bool = True

    def inverse(self) -> "Term":
        return Term(self.package, self.versions, not self.positive)

    def intersect(self, other: "Term") -> "Term":
        if other.package != self.package:
            raise ValueError(f"{other} should refer to {self.package}")
        if self.positive and other.positive:
            return Term(self.package, self.versions.intersect(other.versions), True)
        if self.positive:
            return Term(self.package, self.versions.difference(other.versions), True)
        if other.positive:
            return Term(self.package, other.versions.difference(self.versions), True)
        return Term(self.package, self.versions.union(other.versions), False)

    def difference(self, other: "Term") -> Optional["Term"]:
        result = self.intersect(other.inverse())
        return None if result.is_empty() else result

    def is_empty(self) -> bool:
        return self.positive and self.versions.is_empty()

    def satisfies(self, other: "Term") -> bool:
        return self.intersect(other) == self

    def relation(self, other: "Term") -> Relation:
        """How *other* relates to this (accumulated) term."""
        intersection = self.intersect(other)
        if intersection == self:
            return Relation.SUBSET
        if intersection.is_empty():
            return Relation.DISJOINT
        return Relation.OVERLAPPING

    def describe_versions(self) -> str:
        if self.package.is_root:
            return str(self.package)
        if self.versions.is_full():
            return str(self.package)
        text = str(self.versions)
        if text[0] in "<>=!":
            return f"{self.package}{text}"
        return f"{self.package} {text}"

    def __str__(self) -> str:  # type: ignore[override]
        label = self.describe_versions()
        return label if self.positive else f"not {label}"


# Causes ---------------------------------------------------------------------


@dataclass(frozen=True)
class RootCause:
    pass


@dataclass(frozen=True)
class DependencyCause:
    pass


@dataclass(frozen=True)
class NoVersionsCause:
    pass


@dataclass(frozen=True)
class UnavailableCause:
    reason: str


@dataclass(frozen=True)
class ConflictCause:
    left: "Incompatibility"
    right: "Incompatibility"


Cause = Union[RootCause, DependencyCause, NoVersionsCause, UnavailableCause, ConflictCause]


class Incompatibility:
    """A set of terms that must not all be true at once."""

    def __init__(self, terms: Iterable[Term], cause: Cause):
        items = list(terms)
        if (
            isinstance(cause, ConflictCause)
            and len(items) != 1
            and any(term.positive and term.package.is_root for term in items)
        ):
            # The root is always selected, so a positive root term adds nothing.
            items = [term for term in items if not (term.positive and term.package.is_root)]
        merged: Dict[SolverPackage, Term] = {}
        for term in items:
            existing = merged.get(term.package)
            merged[term.package] = term if existing is None else existing.intersect(term)
        self.terms: Tuple[Term, ...] = tuple(merged.values())
        self.cause = cause

    def is_failure(self) -> bool:
        if not self.terms:
            return True
        return len(self.terms) == 1 and self.terms[0].positive and self.terms[0].package.is_root

    def is_external(self) -> bool:
        return not isinstance(self.cause, ConflictCause)

    def packages(self) -> Tuple[SolverPackage, ...]:
        return tuple(term.package for term in self.terms)

    def __repr__(self) -> str:
        return f"<Incompatibility {self}>"

    def __str__(self) -> str:
        cause = self.cause
        if isinstance(cause, RootCause):
            return "the project is being resolved"
        if isinstance(cause, DependencyCause) and len(self.terms) == 2:
            depender, dependee = self.terms
            if not depender.positive:
                depender, dependee = dependee, depender
            if depender.package.is_root:
                return f"the project depends on {dependee.inverse().describe_versions()}"
            return f"{depender.describe_versions()} depends on {dependee.inverse().describe_versions()}"
        if isinstance(cause, NoVersionsCause) and len(self.terms) == 1:
            term = self.terms[0]
            if term.versions.is_full():
                return f"no versions of {term.package} are available"
            return f"no versions of {term.package} match {term.versions}"
        if isinstance(cause, UnavailableCause) and len(self.terms) == 1:
            return f"{self.terms[0].describe_versions()} is unavailable: {cause.reason}"
        return self._describe_terms()

    def _describe_terms(self) -> str:
        if self.is_failure():
            return "version solving failed"
        if len(self.terms) == 1:
            term = self.terms[0]
            if term.positive:
                return f"{term.describe_versions()} is forbidden"
            return f"{term.describe_versions()} is required"
        positive = [term for term in self.terms if term.positive]
        negative = [term for term in self.terms if not term.positive]
        if len(positive) == 1 and negative:
            required = " or ".join(term.describe_versions() for term in negative)
            return f"{positive[0].describe_versions()} requires {required}"
        if positive and not negative:
            joined = " and ".join(term.describe_versions() for term in positive)
            return f"{joined} are incompatible"
        joined = ", ".join(str(term) for term in self.terms)
        return f"one of {joined} must be false"
