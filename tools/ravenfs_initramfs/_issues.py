"""Typed results for best-effort build steps.

Steps that are allowed to degrade (host tools, shared libraries) record
what went wrong as Issues instead of discarding errors, so the caller can
choose between lenient and strict behaviour.
"""

from dataclasses import dataclass, field
from typing import List, Optional

FATAL = "FATAL"
DEGRADED = "DEGRADED"
SKIPPED = "SKIPPED"


class BuildError(Exception):
    """Fatal condition: the run stops and no artifact is produced."""


@dataclass
class Issue:
    """One problem found while running a step"""
    severity: str  # FATAL, DEGRADED or SKIPPED
    message: str
    path: Optional[str] = None

    def __str__(self):
        loc = f" [{self.path}]" if self.path else ""
        return f"{self.severity}: {self.message}{loc}"


@dataclass
class StepReport:
    """Outcome of a best-effort step"""
    step: str
    copied: List[str] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)

    def add(self, severity: str, message: str, path: Optional[str] = None):
        self.issues.append(Issue(severity, message, path))

    def degraded(self) -> List[Issue]:
        return [i for i in self.issues if i.severity in (DEGRADED, FATAL)]

    def merge(self, other: "StepReport"):
        self.copied.extend(other.copied)
        self.issues.extend(other.issues)

    def raise_if_fatal(self, strict: bool = False):
        """Raise BuildError on a FATAL issue, or on DEGRADED ones in strict mode."""
        for issue in self.issues:
            if issue.severity == FATAL or (strict and issue.severity == DEGRADED):
                raise BuildError(f"{self.step}: {issue}")
