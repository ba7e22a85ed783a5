"""K8s mutation operations applied before validation.

This module implements the mutating admission step. Operations modify the
manifests with ruamel.yaml so comments and formatting survive, and every
operation only rewrites files whose content actually changed. All operations
are idempotent.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from kubegate.core.config import get_config_value
from kubegate.core.errors import ManifestLoadError, PatchApplyError
from kubegate.core.schema.patch_dsl import Patch, PatchOp
from kubegate.k8s.artifact import (
    KindRegistry,
    ManifestBundle,
    dump_yaml_documents,
    is_list_document,
    load_yaml_documents,
    split_api_version,
)
from kubegate.k8s.constants import (
    DEFAULT_NAMESPACE,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    POD_BEARING_KINDS,
)
from kubegate.k8s.utils import get_containers

logger = logging.getLogger(__name__)

# Resource profile mappings
RESOURCE_PROFILES = {
    "small": {
        "requests": {"cpu": "100m", "memory": "128Mi"},
        "limits": {"cpu": "200m", "memory": "256Mi"}
    },
    "medium": {
        "requests": {"cpu": "500m", "memory": "512Mi"},
        "limits": {"cpu": "1000m", "memory": "1Gi"}
    },
    "large": {
        "requests": {"cpu": "1000m", "memory": "1Gi"},
        "limits": {"cpu": "2000m", "memory": "2Gi"}
    }
}

PULL_POLICIES = ("Always", "IfNotPresent", "Never")

# A mutator changes one manifest in place and returns True if it changed anything
Mutator = Callable[[Any, Dict[str, Any], KindRegistry], bool]


def apply_patch(bundle: ManifestBundle, patch: Patch) -> ManifestBundle:
    """Apply patch operations to a bundle.

    Applies all operations sequentially, preserving YAML formatting and
    comments.

    Args:
        bundle: Bundle to mutate (unchanged)
        patch: Patch containing operations

    Returns:
        New ManifestBundle with the patch applied

    Raises:
        PatchApplyError: If a file is not valid YAML, or an operation is
            unknown or its arguments are invalid

    Example:
        >>> patch = Patch(ops=[PatchOp("EnsureNamespace", {"namespace": "web"})])
        >>> mutated = apply_patch(bundle, patch)
    """
    try:
        registry = bundle.registry()
    except ManifestLoadError as e:
        raise PatchApplyError(f"Cannot apply patch: {e}") from e
    files = dict(bundle.files)
    for op in patch.ops:
        files = apply_op(files, op, registry)
    return ManifestBundle(files=files)


def apply_op(files: Dict[str, str], op: PatchOp, registry: Optional[KindRegistry] = None) -> Dict[str, str]:
    """Apply a single operation to every manifest in every file.

    Raises:
        PatchApplyError: If the operation kind is unknown or its args invalid
    """
    mutator = _MUTATORS.get(op.op)
    if mutator is None:
        raise PatchApplyError(f"Unknown patch operation: {op.op}", patch_op=op)
    _validate_args(op)
    registry = registry or KindRegistry()

    result = dict(files)
    for filepath, content in files.items():
        try:
            documents = load_yaml_documents(content, source=filepath)
        except ManifestLoadError as e:
            raise PatchApplyError(f"Cannot apply {op.op}: {e}", patch_op=op) from e

        changed = False
        for doc in documents:
            for manifest in _manifests_in(doc):
                if mutator(manifest, op.args, registry):
                    changed = True

        if changed:
            result[filepath] = dump_yaml_documents(d for d in documents if d is not None)
            logger.debug(f"{op.op} changed {filepath}")
    return result


def _manifests_in(doc: Any) -> List[Any]:
    if not isinstance(doc, dict):
        return []
    if is_list_document(doc):
        return [item for item in doc["items"] if isinstance(item, dict)]
    return [doc]


def _validate_args(op: PatchOp) -> None:
    args = op.args
    required = {
        "EnsureNamespace": ["namespace"],
        "EnsureLabel": ["key", "value"],
        "EnsureAnnotation": ["key", "value"],
        "EnsureResourceProfile": ["profile"],
    }.get(op.op, [])
    for name in required:
        if name not in args:
            raise PatchApplyError(f"{op.op} requires argument '{name}'", patch_op=op)
    if op.op == "EnsureResourceProfile" and args["profile"] not in RESOURCE_PROFILES:
        raise PatchApplyError(
            f"Unknown resource profile: {args['profile']}. Valid: {list(RESOURCE_PROFILES.keys())}",
            patch_op=op,
        )
    if op.op == "EnsureImagePullPolicy" and args.get("policy", "IfNotPresent") not in PULL_POLICIES:
        raise PatchApplyError(f"Unknown imagePullPolicy: {args.get('policy')}", patch_op=op)
    if op.op == "EnsureLabel" and args.get("scope", "both") not in ("object", "podTemplate", "both"):
        raise PatchApplyError(f"Unknown label scope: {args.get('scope')}", patch_op=op)


def _ensure_mapping(parent: Any, key: str) -> Any:
    if parent.get(key) is None:
        parent[key] = {}
    return parent[key]


def _set(mapping: Any, key: str, value: Any, overwrite: bool) -> bool:
    if key in mapping and (not overwrite or mapping[key] == value):
        return False
    mapping[key] = value
    return True


def _pod_template(manifest: Any) -> Optional[Any]:
    kind = manifest.get("kind")
    if kind not in POD_BEARING_KINDS or kind == "Pod":
        return None
    spec = _ensure_mapping(manifest, "spec")
    if kind == "CronJob":
        spec = _ensure_mapping(_ensure_mapping(spec, "jobTemplate"), "spec")
    return _ensure_mapping(spec, "template")


def _selected_containers(manifest: Any, args: Dict[str, Any]) -> List[Any]:
    name = args.get("container")
    containers = get_containers(manifest, include_init=True)
    if name is None:
        return containers
    return [c for c in containers if c.get("name") == name]


def _ensure_namespace(manifest: Any, args: Dict[str, Any], registry: KindRegistry) -> bool:
    kind = str(manifest.get("kind") or "")
    group = split_api_version(str(manifest.get("apiVersion") or ""))[0]
    if not kind or not registry.is_namespaced(kind, group):
        return False
    metadata = _ensure_mapping(manifest, "metadata")
    if metadata.get("namespace"):
        return False
    metadata["namespace"] = args["namespace"]
    return True


def _ensure_label(manifest: Any, args: Dict[str, Any], registry: KindRegistry) -> bool:
    """Add or update a label.

    Args:
        args: {key, value, scope="both", overwrite=True, kinds=None}
              scope: "object" | "podTemplate" | "both"
              kinds: optional list restricting which kinds are labelled
    """
    kinds = args.get("kinds")
    if kinds and manifest.get("kind") not in kinds:
        return False
    scope = args.get("scope", "both")
    overwrite = args.get("overwrite", True)
    changed = False

    if scope in ("object", "both"):
        labels = _ensure_mapping(_ensure_mapping(manifest, "metadata"), "labels")
        changed |= _set(labels, args["key"], args["value"], overwrite)

    if scope in ("podTemplate", "both"):
        template = _pod_template(manifest)
        if template is not None:
            labels = _ensure_mapping(_ensure_mapping(template, "metadata"), "labels")
            changed |= _set(labels, args["key"], args["value"], overwrite)

    return changed


def _ensure_annotation(manifest: Any, args: Dict[str, Any], registry: KindRegistry) -> bool:
    annotations = _ensure_mapping(_ensure_mapping(manifest, "metadata"), "annotations")
    return _set(annotations, args["key"], str(args["value"]), args.get("overwrite", True))


def _ensure_security_baseline(manifest: Any, args: Dict[str, Any], registry: KindRegistry) -> bool:
    """Default the restricted securityContext on containers.

    Explicit settings are kept; only unset fields are filled in, and ALL is
    added to capabilities.drop.
    """
    changed = False
    for container in _selected_containers(manifest, args):
        sec_ctx = _ensure_mapping(container, "securityContext")
        changed |= _set(sec_ctx, "runAsNonRoot", True, overwrite=False)
        changed |= _set(sec_ctx, "allowPrivilegeEscalation", False, overwrite=False)
        changed |= _set(sec_ctx, "readOnlyRootFilesystem", True, overwrite=False)
        capabilities = _ensure_mapping(sec_ctx, "capabilities")
        drop = capabilities.get("drop")
        if drop is None:
            capabilities["drop"] = ["ALL"]
            changed = True
        elif "ALL" not in [str(c).upper() for c in drop]:
            drop.append("ALL")
            changed = True
    return changed


def _ensure_resource_profile(manifest: Any, args: Dict[str, Any], registry: KindRegistry) -> bool:
    """Fill missing requests/limits from a profile ("small" | "medium" | "large")."""
    profile_spec = RESOURCE_PROFILES[args["profile"]]
    changed = False
    for container in _selected_containers(manifest, args):
        resources = _ensure_mapping(container, "resources")
        for section in ("requests", "limits"):
            values = _ensure_mapping(resources, section)
            for resource, quantity in profile_spec[section].items():
                changed |= _set(values, resource, quantity, overwrite=False)
    return changed


def _ensure_image_pull_policy(manifest: Any, args: Dict[str, Any], registry: KindRegistry) -> bool:
    policy = args.get("policy", "IfNotPresent")
    changed = False
    for container in _selected_containers(manifest, args):
        changed |= _set(container, "imagePullPolicy", policy, overwrite=False)
    return changed


_MUTATORS: Dict[str, Mutator] = {
    "EnsureNamespace": _ensure_namespace,
    "EnsureLabel": _ensure_label,
    "EnsureAnnotation": _ensure_annotation,
    "EnsureSecurityBaseline": _ensure_security_baseline,
    "EnsureResourceProfile": _ensure_resource_profile,
    "EnsureImagePullPolicy": _ensure_image_pull_policy,
}


def default_mutations(config: Optional[Dict[str, Any]] = None) -> Patch:
    """Build the patch the pipeline applies before validation.

    Always fills the default namespace and stamps the managed-by label that
    pruning relies on; extra operations come from the "pipeline.mutations"
    config list (same shape as Patch.to_dict()["ops"]).
    """
    config = config if config is not None else {}
    namespace = get_config_value(["pipeline", "default_namespace"], DEFAULT_NAMESPACE, config)
    ops = [
        PatchOp("EnsureNamespace", {"namespace": namespace}),
        PatchOp("EnsureLabel", {"key": MANAGED_BY_LABEL, "value": MANAGED_BY_VALUE, "scope": "object"}),
    ]
    for extra in get_config_value(["pipeline", "mutations"], [], config) or []:
        if not isinstance(extra, dict) or not extra.get("op"):
            raise PatchApplyError(f"Malformed pipeline.mutations entry (needs an \"op\"): {extra!r}")
        ops.append(PatchOp(op=extra["op"], args=dict(extra.get("args") or {})))
    return Patch(ops=ops, meta={"source": "default_mutations"})
