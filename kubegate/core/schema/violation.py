"""Violation model for representing failed admission checks."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

SEVERITIES = ("error", "warning", "info")


@dataclass
class Violation:
    """Represents a failed admission check.

    Violations are returned by oracles during validation and contain
    information about what went wrong, where it occurred, and evidence
    useful for fixing the manifest.

    Attributes:
        id: Identifier of the form "<check>.<CODE>" (e.g., "policy.IMAGE_TAG_LATEST")
        message: Human-readable description of the violation
        path: Location path as list of strings (e.g., ["app.yaml", "Deployment/web", "spec"])
        severity: Severity level - "error", "warning", or "info"
        evidence: Check-specific data such as offending values or suggested rules
    """

    id: str
    message: str
    path: List[str]
    severity: str = "error"
    evidence: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity '{self.severity}', expected one of {SEVERITIES}")

    @property
    def check(self) -> str:
        """Name of the check that produced this violation."""
        return self.id.split(".", 1)[0]

    @property
    def is_blocking(self) -> bool:
        """Only errors reject a bundle; warnings and info are advisory."""
        return self.severity == "error"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "message": self.message,
            "path": list(self.path),
            "severity": self.severity,
        }
        if self.evidence:
            result["evidence"] = self.evidence
        return result


def blocking(violations: List[Violation]) -> List[Violation]:
    """Filter violations down to the ones that reject a bundle."""
    return [v for v in violations if v.is_blocking]
