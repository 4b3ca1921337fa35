"""Custom exceptions raised by the resolver."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .incompatibility import Incompatibility


class PinflowError(Exception):
    """Base class for every error surfaced by pinflow."""


class ConfigError(PinflowError, ValueError):
    """Raised when a project configuration file is malformed."""


class FetchError(PinflowError):
    """Raised when metadata for a package cannot be retrieved."""


class MetadataError(PinflowError):
    """Raised when fetched metadata is malformed or self-contradictory."""


@dataclass
class SelectionError(PinflowError):
    package: str
    version: Optional[str]
    message: str
    rejected: Optional[List[str]] = None

    def __str__(self) -> str:  # type: ignore[override]
        target = f"{self.package}=={self.version}" if self.version else self.package
        return f"{target}: {self.message}"


@dataclass
class CycleError(PinflowError):
    cycle: List[str]
    message: str = "Build dependency cycle detected"

    def __str__(self) -> str:  # type: ignore[override]
        return f"{self.message}: {' -> '.join(self.cycle)}"


class Unsatisfiable(PinflowError):
    """Raised when no assignment satisfies the requirements.

    The attached incompatibility is the root of the derivation; see
    :func:`pinflow.report.explain` for the ordered trail.
    """

    def __init__(self, incompatibility: "Incompatibility"):
        super().__init__(incompatibility)
        self.incompatibility = incompatibility

    def explanation(self) -> str:
        from .report import render_explanation

        return render_explanation(self.incompatibility)

    def __str__(self) -> str:
        return self.explanation()


class ResolutionError(PinflowError):
    """Raised when a finished resolution is internally inconsistent."""
