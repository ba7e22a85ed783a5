"""
Core schema definitions for violations, checks and patches.

These protocols and dataclasses form the foundation of the kubegate
admission pipeline.
"""

from kubegate.core.schema.oracle import Oracle
from kubegate.core.schema.patch_dsl import Patch, PatchOp
from kubegate.core.schema.violation import Violation

__all__ = [
    "Oracle",
    "Patch",
    "PatchOp",
    "Violation",
]
