"""The solver's partial assignment, kept as an append-only log."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from packaging.version import Version

from .incompatibility import Incompatibility, Relation, SolverPackage, Term
from .versions import VersionSet


@dataclass(frozen=True)
class Assignment:
    term: Term
    decision_level: int
    index: int
    cause: Optional[Incompatibility]
    # Intersection of every assignment for this package up to and including this one.
    accumulated: Term

    @property
    def is_decision(self) -> bool:
        return self.cause is None


class PartialSolution:
    """Decisions and derivations made so far.

    Each assignment remembers the accumulated term of its package, so
    backtracking only truncates the log and pops the per-package index
    stacks; nothing is copied or recomputed.
    """

    def __init__(self) -> None:
        self._log: List[Assignment] = []
        self._by_package: Dict[SolverPackage, List[int]] = {}
        self._decisions: Dict[SolverPackage, Version] = {}
        self._backtracking = False
        self.attempted_solutions = 1

    @property
    def decision_level(self) -> int:
        return len(self._decisions)

    @property
    def decisions(self) -> Dict[SolverPackage, Version]:
        return dict(self._decisions)

    def __len__(self) -> int:
        return len(self._log)

    def _append(self, term: Term, cause: Optional[Incompatibility]) -> Assignment:
        accumulated = term
        stack = self._by_package.get(term.package)
        if stack:
            accumulated = self._log[stack[-1]].accumulated.intersect(term)
        assignment = Assignment(term, self.decision_level, len(self._log), cause, accumulated)
        self._log.append(assignment)
        self._by_package.setdefault(term.package, []).append(assignment.index)
        return assignment

    def decide(self, package: SolverPackage, version: Version) -> Assignment:
        if self._backtracking:
            self.attempted_solutions += 1
            self._backtracking = False
        self._decisions[package] = version
        return self._append(Term(package, VersionSet.exact(version), True), None)

    def derive(self, term: Term, cause: Incompatibility) -> Assignment:
        return self._append(term, cause)

    def backtrack(self, level: int) -> None:
        """Drop every assignment made above *level*."""
        self._backtracking = True
        cut = len(self._log)
        while cut and self._log[cut - 1].decision_level > level:
            cut -= 1
        for assignment in reversed(self._log[cut:]):
            package = assignment.term.package
            stack = self._by_package[package]
            stack.pop()
            if not stack:
                del self._by_package[package]
            if assignment.is_decision:
                del self._decisions[package]
        del self._log[cut:]

    def term(self, package: SolverPackage) -> Optional[Term]:
        stack = self._by_package.get(package)
        if not stack:
            return None
        return self._log[stack[-1]].accumulated

    def relation(self, term: Term) -> Relation:
        current = self.term(term.package)
        if current is None:
            return Relation.OVERLAPPING
        return current.relation(term)

    def satisfies(self, term: Term) -> bool:
        return self.relation(term) is Relation.SUBSET

    def satisfier(self, term: Term) -> Assignment:
        """The earliest assignment after which *term* is satisfied."""
        for index in self._by_package.get(term.package, ()):
            assignment = self._log[index]
            if assignment.accumulated.satisfies(term):
                return assignment
        raise RuntimeError(f"[BUG] {term} is not satisfied by the partial solution")

    def undecided(self) -> List[Tuple[SolverPackage, Term]]:
        """Packages that must be selected but have no version decided yet."""
        pending: List[Tuple[SolverPackage, Term]] = []
        for package, stack in self._by_package.items():
            if package in self._decisions:
                continue
            accumulated = self._log[stack[-1]].accumulated
            if accumulated.positive:
                pending.append((package, accumulated))
        return pending
