"""Patch DSL for mutating admission.

A patch is an ordered list of operations applied to a manifest bundle before
validation. Operations are named after the state they ensure
("EnsureNamespace", "EnsureLabel", ...) so applying a patch twice yields the
same bundle.

JSON transport format::

    {
      "ops": [
        {"op": "EnsureNamespace", "args": {"namespace": "default"}},
        {"op": "EnsureLabel", "args": {"key": "team", "value": "web", "scope": "both"}}
      ],
      "meta": {"source": "config"}
    }
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PatchOp:
    """Single atomic patch operation.

    Attributes:
        op: Operation name (e.g., "EnsureLabel")
        args: Operation-specific arguments as a dictionary
    """

    op: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "args": dict(self.args)}


@dataclass
class Patch:
    """Ordered mutation program.

    Attributes:
        ops: List of patch operations to apply sequentially
        meta: Optional metadata dictionary (origin, version, etc.)
    """

    ops: List[PatchOp]
    meta: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"ops": [op.to_dict() for op in self.ops]}
        if self.meta:
            result["meta"] = self.meta
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Patch":
        ops = [PatchOp(op=o["op"], args=dict(o.get("args") or {})) for o in data.get("ops", [])]
        return cls(ops=ops, meta=data.get("meta"))
