"""Verifier for executing oracles and aggregating violations."""

import logging
from typing import Any, List

from kubegate.core.schema.oracle import Oracle
from kubegate.core.schema.violation import Violation

logger = logging.getLogger(__name__)


def oracle_name(oracle: Any) -> str:
    """Display name of an oracle (function name or class name)."""
    if hasattr(oracle, "__name__"):
        return oracle.__name__
    return type(oracle).__name__


def verify(artifact: Any, oracles: List[Oracle]) -> List[Violation]:
    """Execute all oracles against a bundle and aggregate violations.

    Runs every oracle sequentially and collects all violations. Execution
    continues when an individual oracle crashes: the crash is reported as an
    "oracle_error" violation so a broken check can never silently admit a
    bundle.

    Args:
        artifact: The manifest bundle to verify
        oracles: List of checks to execute

    Returns:
        Aggregated list of violations from all oracles. Returns empty list if
        no oracles provided or if all oracles pass.

    Example:
        >>> bundle = ManifestBundle.from_path("k8s/")
        >>> violations = verify(bundle, [StructureOracle(), PolicyOracle()])
    """
    if not oracles:
        return []

    violations: List[Violation] = []

    for oracle in oracles:
        name = oracle_name(oracle)
        try:
            oracle_violations = oracle(artifact)
        except Exception as e:
            logger.error(f"Oracle {name} failed: {e}")
            violations.append(Violation(
                id=f"oracle_error:{name}",
                message=f"Oracle execution failed: {e}",
                path=["verifier", "oracle_error"],
                severity="error",
                evidence={"exception": str(e), "exception_type": type(e).__name__},
            ))
            continue
        logger.debug(f"{name}: {len(oracle_violations)} violations")
        violations.extend(oracle_violations)

    return violations
