"""Shared utility functions for K8s manifests.

This module provides helpers used across oracles, mutations and the
reconciler to read pod specs, containers and labels, and to parse resource
quantities.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

_BINARY_SUFFIXES = {
    "Ki": Decimal(2) ** 10,
    "Mi": Decimal(2) ** 20,
    "Gi": Decimal(2) ** 30,
    "Ti": Decimal(2) ** 40,
    "Pi": Decimal(2) ** 50,
    "Ei": Decimal(2) ** 60,
}

_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}

_QUANTITY_RE = re.compile(
    r"(?P<number>[+-]?(?:\d+\.?\d*|\.\d+))"
    r"(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|[numkMGTPE]|[eE][+-]?\d+)?"
)


def get_pod_spec(manifest: dict) -> Optional[dict]:
    """Extract the pod spec from any pod-bearing manifest.

    Handles bare Pods, the workload controllers with a pod template, and
    CronJobs (whose template sits under jobTemplate).

    Args:
        manifest: Kubernetes manifest dict

    Returns:
        Pod spec dict, or None if the kind carries no pod spec
    """
    kind = manifest.get("kind")
    spec = manifest.get("spec") or {}
    if kind == "Pod":
        return spec
    if kind == "CronJob":
        spec = (spec.get("jobTemplate") or {}).get("spec") or {}
    template = spec.get("template")
    if template is None:
        return None
    return template.get("spec") or {}


def get_pod_template_labels(manifest: dict) -> Dict[str, str]:
    """Labels that pods created from this manifest will carry."""
    kind = manifest.get("kind")
    if kind == "Pod":
        return dict((manifest.get("metadata") or {}).get("labels") or {})
    spec = manifest.get("spec") or {}
    if kind == "CronJob":
        spec = (spec.get("jobTemplate") or {}).get("spec") or {}
    return dict(((spec.get("template") or {}).get("metadata") or {}).get("labels") or {})


def get_pod_template_label(manifest: dict, key: str) -> Optional[str]:
    """Extract label value from pod template.

    Args:
        manifest: Kubernetes manifest dict
        key: Label key to extract

    Returns:
        Label value if found, None otherwise
    """
    return get_pod_template_labels(manifest).get(key)


def get_containers(manifest: dict, include_init: bool = False) -> List[dict]:
    """Extract containers from any pod-bearing manifest.

    Args:
        manifest: Kubernetes manifest dict
        include_init: Also return initContainers (listed after the main containers)

    Returns:
        List of container dicts, empty list if not found
    """
    pod_spec = get_pod_spec(manifest)
    if not pod_spec:
        return []
    containers = list(pod_spec.get("containers") or [])
    if include_init:
        containers.extend(pod_spec.get("initContainers") or [])
    return containers


def get_sidecar_containers(manifest: dict) -> List[dict]:
    """Native sidecars: init containers that keep running (restartPolicy: Always)."""
    pod_spec = get_pod_spec(manifest) or {}
    return [
        c for c in (pod_spec.get("initContainers") or [])
        if c.get("restartPolicy") == "Always"
    ]


def get_labels(manifest: dict) -> Dict[str, str]:
    return dict((manifest.get("metadata") or {}).get("labels") or {})


def get_name(manifest: dict) -> str:
    return str((manifest.get("metadata") or {}).get("name") or "")


def parse_quantity(value: Any) -> Decimal:
    """Parse a Kubernetes resource quantity.

    Accepts CPU quantities ("250m", "2", 0.5) and memory quantities
    ("512Mi", "1G", "129e6").

    Args:
        value: Quantity as string or number

    Returns:
        Quantity in base units (cores or bytes)

    Raises:
        ValueError: If value is not a valid quantity

    Example:
        >>> parse_quantity("500m")
        Decimal('0.500')
        >>> parse_quantity("1Gi")
        Decimal('1073741824')
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if not isinstance(value, str):
        raise ValueError(f"Invalid quantity: {value!r}")

    match = _QUANTITY_RE.fullmatch(value.strip())
    if not match:
        raise ValueError(f"Invalid quantity: {value!r}")

    try:
        number = Decimal(match.group("number"))
    except InvalidOperation as e:
        raise ValueError(f"Invalid quantity: {value!r}") from e

    suffix = match.group("suffix") or ""
    if suffix in _BINARY_SUFFIXES:
        return number * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return number * _DECIMAL_SUFFIXES[suffix]
    # Exponent form: e3, E-2
    return number * (Decimal(10) ** int(suffix[1:]))


def match_labels(selector: Dict[str, str], labels: Dict[str, str]) -> bool:
    """True if every selector entry is present in labels.

    An empty selector matches nothing, mirroring how a Service without a
    selector selects no pods.
    """
    if not selector:
        return False
    return all(labels.get(k) == v for k, v in selector.items())


def match_label_selector(selector: Optional[dict], labels: Dict[str, str]) -> bool:
    """Evaluate a full LabelSelector (matchLabels + matchExpressions).

    An empty selector ({}) matches everything; None matches nothing.
    """
    if selector is None:
        return False
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    for expr in selector.get("matchExpressions") or []:
        key = expr.get("key")
        operator = expr.get("operator")
        values = list(expr.get("values") or [])
        if operator == "In":
            if key not in labels or labels[key] not in values:
                return False
        elif operator == "NotIn":
            if key in labels and labels[key] in values:
                return False
        elif operator == "Exists":
            if key not in labels:
                return False
        elif operator == "DoesNotExist":
            if key in labels:
                return False
        else:
            raise ValueError(f"Unknown label selector operator: {operator}")
    return True
