"""Dry-run planning and reconciliation against a cluster snapshot.

plan() compares the desired objects of a bundle with live objects and
produces ordered create / update / unchanged / delete actions. The desired
manifest is a partial intent, as with server-side apply: fields it omits
never cause an update, while lists are compared whole. reconcile() then
authorizes each change and, unless running dry, writes it into the
ClusterState.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kubegate.core.schema.violation import Violation
from kubegate.k8s.artifact import KindRegistry, ManifestObject, ObjectRef, ref_for
from kubegate.k8s.cluster import ClusterState
from kubegate.k8s.constants import (
    APPLY_ORDER,
    DEFAULT_NAMESPACE,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    SERVER_MANAGED_METADATA,
)
from kubegate.k8s.rbac import AccessRequest, AuthorizationResult, RBACAuthorizer, RBACPolicy, UserInfo
from kubegate.k8s.utils import get_labels

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
UNCHANGED = "unchanged"
DELETE = "delete"

# Plan verb -> API verb checked by RBAC
API_VERBS = {CREATE: "create", UPDATE: "patch", DELETE: "delete"}

FieldChange = Tuple[str, Any, Any]


@dataclass
class Action:
    """One planned change.

    Attributes:
        verb: "create" | "update" | "unchanged" | "delete"
        ref: Identity of the object
        desired: Desired manifest (None for deletes)
        live: Live object from the snapshot (None for creates)
        diff: (path, old, new) for every field that changes
        source: Bundle location of the desired manifest
    """

    verb: str
    ref: ObjectRef
    desired: Optional[dict] = None
    live: Optional[dict] = None
    diff: List[FieldChange] = field(default_factory=list)
    source: Optional[str] = None

    @property
    def api_verb(self) -> Optional[str]:
        return API_VERBS.get(self.verb)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"verb": self.verb, "object": str(self.ref)}
        if self.source:
            result["source"] = self.source
        if self.diff:
            result["diff"] = [{"path": p, "old": old, "new": new} for p, old, new in self.diff]
        return result


@dataclass
class Plan:
    """Ordered actions plus problems found while planning."""

    actions: List[Action] = field(default_factory=list)
    violations: List[Violation] = field(default_factory=list)
    registry: KindRegistry = field(default_factory=KindRegistry)

    @property
    def changes(self) -> List[Action]:
        return [a for a in self.actions if a.verb != UNCHANGED]

    def summary(self) -> Dict[str, int]:
        counts = {CREATE: 0, UPDATE: 0, UNCHANGED: 0, DELETE: 0}
        for action in self.actions:
            counts[action.verb] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "actions": [a.to_dict() for a in self.actions],
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class ReconcileResult:
    applied: List[Action] = field(default_factory=list)
    denied: List[Tuple[Action, AuthorizationResult]] = field(default_factory=list)
    dry_run: bool = True


def _strip_server_fields(body: dict) -> dict:
    stripped = {k: v for k, v in body.items() if k != "status"}
    metadata = dict(stripped.get("metadata") or {})
    for key in SERVER_MANAGED_METADATA:
        metadata.pop(key, None)
    stripped["metadata"] = metadata
    return stripped


def desired_diff(desired: Any, live: Any, path: str = "") -> List[FieldChange]:
    """Fields where live differs from the (partial) desired state.

    Mappings are compared key by key over the desired keys only; lists and
    scalars are compared as a whole.
    """
    if isinstance(desired, dict) and isinstance(live, dict):
        changes: List[FieldChange] = []
        for key, value in desired.items():
            child = f"{path}.{key}" if path else str(key)
            if key not in live:
                changes.append((child, None, value))
            else:
                changes.extend(desired_diff(value, live[key], child))
        return changes
    if desired != live:
        return [(path, live, desired)]
    return []


def merge_desired(live: dict, desired: dict) -> dict:
    """Merge desired into live: mappings merge recursively, everything else is replaced."""
    merged = copy.deepcopy(live)
    for key, value in desired.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_desired(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _order_index(kind: str) -> int:
    try:
        return APPLY_ORDER.index(kind)
    except ValueError:
        return len(APPLY_ORDER)


def parse_selector(text: Optional[str]) -> Dict[str, str]:
    """Parse "a=b,c=d" into a matchLabels dict."""
    selector: Dict[str, str] = {}
    if not text:
        return selector
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid label selector term: {part!r}")
        selector[key.strip()] = value.strip()
    return selector


def plan(
    objects: Iterable[ManifestObject],
    cluster: ClusterState,
    prune: bool = False,
    selector: Optional[Dict[str, str]] = None,
    default_namespace: str = DEFAULT_NAMESPACE,
) -> Plan:
    """Compute the actions that bring the cluster to the desired state.

    Args:
        objects: Desired objects (typically bundle.objects() after mutation)
        cluster: Live cluster snapshot
        prune: Also delete managed live objects missing from the bundle
        selector: Restrict pruning to live objects carrying these labels
        default_namespace: Namespace for namespaced objects without one

    Returns:
        Plan with actions ordered for apply (deletes last, in reverse order)
    """
    objects = list(objects)
    registry = KindRegistry()
    registry.register_from(cluster.bodies())
    registry.register_from(obj.body for obj in objects)

    result = Plan(registry=registry)
    desired_keys = set()
    namespaces = cluster.namespaces()
    namespaces.update(obj.name for obj in objects if obj.kind == "Namespace")

    upserts: List[Tuple[int, int, Action]] = []
    for position, obj in enumerate(objects):
        ref = ref_for(obj.body, default_namespace, registry)
        desired_keys.add(ref.key())

        if ref.namespace and ref.namespace not in namespaces:
            result.violations.append(Violation(
                id="reconcile.NAMESPACE_NOT_FOUND",
                message=f"{ref} targets namespace {ref.namespace}, which neither exists nor is part of the bundle",
                path=[obj.source, f"{ref.kind}/{ref.name}", "metadata", "namespace"],
                evidence={"namespace": ref.namespace},
            ))

        live = cluster.objects.get(ref.key())
        if live is None:
            action = Action(CREATE, ref, desired=obj.body, source=obj.location())
        else:
            diff = desired_diff(_strip_server_fields(obj.body), live)
            verb = UPDATE if diff else UNCHANGED
            action = Action(verb, ref, desired=obj.body, live=live, diff=diff, source=obj.location())
        upserts.append((_order_index(ref.kind), position, action))

    deletes: List[Tuple[int, str, Action]] = []
    if prune:
        for live in cluster.bodies():
            ref = ref_for(live, default_namespace, registry)
            if ref.key() in desired_keys or ref.kind == "Namespace":
                continue
            labels = get_labels(live)
            if labels.get(MANAGED_BY_LABEL) != MANAGED_BY_VALUE:
                continue
            if selector and any(labels.get(k) != v for k, v in selector.items()):
                continue
            deletes.append((_order_index(ref.kind), str(ref), Action(DELETE, ref, live=live)))

    result.actions = [a for _, _, a in sorted(upserts, key=lambda t: (t[0], t[1]))]
    result.actions += [a for _, _, a in sorted(deletes, key=lambda t: (t[0], t[1]), reverse=True)]
    logger.info(f"Plan: {result.summary()}")
    return result


def request_for(action: Action, registry: KindRegistry) -> AccessRequest:
    """The API request an action would make."""
    resource = registry.resource_for(action.ref.kind, action.ref.group)
    return AccessRequest(
        verb=action.api_verb or "get",
        resource=resource,
        api_group=action.ref.group,
        namespace=action.ref.namespace,
        # create requests carry no name for RBAC purposes
        name=None if action.verb == CREATE else action.ref.name,
    )


def authorize_action(
    action: Action,
    authorizer: RBACAuthorizer,
    user: UserInfo,
    registry: KindRegistry,
    default_namespace: str = DEFAULT_NAMESPACE,
    roles: Optional[RBACPolicy] = None,
) -> AuthorizationResult:
    """RBAC check for one action, including the escalation guard for RBAC objects."""
    result = authorizer.authorize(user, request_for(action, registry))
    if not result.allowed or action.desired is None:
        return result
    escalation = authorizer.check_escalation(user, action.desired, action.api_verb or "", default_namespace, roles)
    return escalation if escalation is not None else result


def planned_roles(plan_: Plan, policy: RBACPolicy, default_namespace: str = DEFAULT_NAMESPACE) -> RBACPolicy:
    """The policy's roles plus the Roles and ClusterRoles the plan creates or updates.

    Bindings in the plan are checked against these, so a bundle may ship a
    role together with its binding.
    """
    roles = policy.copy()
    for action in plan_.changes:
        if action.desired is not None and action.desired.get("kind") in ("Role", "ClusterRole"):
            roles.add(action.desired, default_namespace)
    return roles


def authorize_plan(
    plan_: Plan,
    authorizer: RBACAuthorizer,
    user: UserInfo,
    default_namespace: str = DEFAULT_NAMESPACE,
) -> List[Tuple[Action, AuthorizationResult]]:
    """Authorize every change in a plan (unchanged objects need no request)."""
    decisions = []
    roles = planned_roles(plan_, authorizer.policy, default_namespace)
    for action in plan_.changes:
        decision = authorize_action(action, authorizer, user, plan_.registry, default_namespace, roles)
        if not decision.allowed:
            logger.warning(f"Denied {action.verb} {action.ref}: {decision.reason}")
        decisions.append((action, decision))
    return decisions


def reconcile(
    plan_: Plan,
    cluster: ClusterState,
    authorizer: Optional[RBACAuthorizer] = None,
    user: Optional[UserInfo] = None,
    dry_run: bool = True,
    default_namespace: str = DEFAULT_NAMESPACE,
) -> ReconcileResult:
    """Apply a plan to the cluster snapshot.

    Denied actions are skipped and recorded; the rest are applied in plan
    order. With dry_run the cluster is left untouched.
    """
    result = ReconcileResult(dry_run=dry_run)
    roles = planned_roles(plan_, authorizer.policy, default_namespace) if authorizer is not None else None
    for action in plan_.changes:
        if authorizer is not None:
            if user is None:
                raise ValueError("reconcile() needs a user when an authorizer is given")
            decision = authorize_action(action, authorizer, user, plan_.registry, default_namespace, roles)
            if not decision.allowed:
                result.denied.append((action, decision))
                continue

        if not dry_run:
            if action.verb == CREATE:
                cluster.put(action.desired)
            elif action.verb == UPDATE:
                cluster.put(merge_desired(action.live or {}, action.desired or {}))
            elif action.verb == DELETE:
                cluster.delete(action.ref)
        result.applied.append(action)

    mode = "dry-run" if dry_run else "applied"
    logger.info(f"Reconcile ({mode}): {len(result.applied)} applied, {len(result.denied)} denied")
    return result
