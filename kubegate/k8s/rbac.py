"""RBAC model and request authorizer.

This module evaluates Kubernetes RBAC the way the API server does, against
Roles, ClusterRoles and their bindings taken from a manifest bundle and/or a
cluster snapshot:

- default deny; any matching rule allows
- ClusterRoleBindings grant everywhere, RoleBindings only inside their namespace
- RoleBindings may reference a ClusterRole, scoping its rules to the namespace
- ClusterRole aggregationRule collects rules from matching ClusterRoles
- members of system:masters are always allowed

It also implements the privilege escalation guard: a requester may only
create roles, or bind to roles, whose permissions it already holds, unless it
has the "escalate" or "bind" verb.

Denials use the API server's Forbidden wording; parse_forbidden reads such
messages back into a structured form with a suggested rule.
"""

import logging
import re
from dataclasses import dataclass, field
from itertools import product
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from kubegate.k8s.utils import match_label_selector

logger = logging.getLogger(__name__)

RBAC_GROUP = "rbac.authorization.k8s.io"
RBAC_KINDS = ("Role", "ClusterRole", "RoleBinding", "ClusterRoleBinding")
SUPERUSER_GROUP = "system:masters"
SERVICE_ACCOUNT_PREFIX = "system:serviceaccount:"
AUTHENTICATED_GROUP = "system:authenticated"
ANONYMOUS_USER = "system:anonymous"

# cluster-admin exists in every cluster even when no manifest defines it
_BUILTIN_CLUSTER_ROLES = {
    "cluster-admin": [
        {"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]},
        {"nonResourceURLs": ["*"], "verbs": ["*"]},
    ],
}


@dataclass(frozen=True)
class UserInfo:
    """An authenticated identity: user name plus group memberships."""

    name: str
    groups: Tuple[str, ...] = ()

    @property
    def effective_groups(self) -> Tuple[str, ...]:
        groups = list(self.groups)
        if self.name != ANONYMOUS_USER and AUTHENTICATED_GROUP not in groups:
            groups.append(AUTHENTICATED_GROUP)
        return tuple(groups)

    @classmethod
    def for_service_account(cls, namespace: str, name: str, groups: Sequence[str] = ()) -> "UserInfo":
        sa_groups = ["system:serviceaccounts", f"system:serviceaccounts:{namespace}"]
        return cls(
            name=f"{SERVICE_ACCOUNT_PREFIX}{namespace}:{name}",
            groups=tuple(sa_groups + [g for g in groups if g not in sa_groups]),
        )

    @classmethod
    def parse(cls, name: str, groups: Sequence[str] = ()) -> "UserInfo":
        """Build a UserInfo from a --as style user string.

        "system:serviceaccount:<ns>:<name>" gets the service account groups.
        """
        if name.startswith(SERVICE_ACCOUNT_PREFIX):
            rest = name[len(SERVICE_ACCOUNT_PREFIX):]
            namespace, _, sa_name = rest.partition(":")
            if namespace and sa_name:
                return cls.for_service_account(namespace, sa_name, groups)
        return cls(name=name, groups=tuple(groups))


@dataclass(frozen=True)
class Subject:
    """A binding subject: User, Group or ServiceAccount."""

    kind: str
    name: str
    namespace: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subject":
        return cls(kind=data.get("kind", ""), name=data.get("name", ""), namespace=data.get("namespace"))

    def matches(self, user: UserInfo, binding_namespace: Optional[str] = None) -> bool:
        if self.kind == "User":
            return self.name == user.name
        if self.kind == "Group":
            return self.name in user.effective_groups
        if self.kind == "ServiceAccount":
            namespace = self.namespace or binding_namespace
            return user.name == f"{SERVICE_ACCOUNT_PREFIX}{namespace}:{self.name}"
        return False


@dataclass(frozen=True)
class AccessRequest:
    """A single API request to authorize.

    Attributes:
        verb: API verb (get, list, watch, create, update, patch, delete, ...)
        resource: Plural resource name (e.g. "deployments")
        api_group: API group ("" for core)
        namespace: Target namespace, None for cluster-scoped requests
        name: Object name, None for collection requests
        subresource: Optional subresource (e.g. "scale", "status")
        non_resource_url: Set instead of resource for paths like /healthz
    """

    verb: str
    resource: str = ""
    api_group: str = ""
    namespace: Optional[str] = None
    name: Optional[str] = None
    subresource: Optional[str] = None
    non_resource_url: Optional[str] = None

    @property
    def resource_path(self) -> str:
        if self.subresource:
            return f"{self.resource}/{self.subresource}"
        return self.resource

    def __str__(self) -> str:
        if self.non_resource_url:
            return f"{self.verb} {self.non_resource_url}"
        target = self.resource_path + (f".{self.api_group}" if self.api_group else "")
        if self.name:
            target += f"/{self.name}"
        scope = f" in namespace {self.namespace}" if self.namespace else " (cluster scope)"
        return f"{self.verb} {target}{scope}"

    def suggested_rule(self) -> Dict[str, Any]:
        """The narrowest PolicyRule (as a dict) that grants this request."""
        if self.non_resource_url is not None:
            return {"nonResourceURLs": [self.non_resource_url], "verbs": [self.verb]}
        rule: Dict[str, Any] = {"apiGroups": [self.api_group], "resources": [self.resource_path], "verbs": [self.verb]}
        if self.name:
            rule["resourceNames"] = [self.name]
        return rule

    def forbidden_message(self, user: str) -> str:
        """The API server's wording for denying this request to user."""
        if self.non_resource_url is not None:
            return f'forbidden: User "{user}" cannot {self.verb} path "{self.non_resource_url}"'
        target = f"{self.resource_path}.{self.api_group}" if self.api_group else self.resource_path
        if self.name:
            target += f' "{self.name}"'
        where = f'in the namespace "{self.namespace}"' if self.namespace else "at the cluster scope"
        return (
            f'{target} is forbidden: User "{user}" cannot {self.verb} resource "{self.resource_path}" '
            f'in API group "{self.api_group}" {where}'
        )

    def grant_hint(self, user: str) -> str:
        """Which role and binding kind would grant this request to user."""
        if self.non_resource_url is not None:
            return (
                f'Grant a ClusterRole rule with nonResourceURLs=["{self.non_resource_url}"] '
                f'and bind it to user "{user}" using ClusterRoleBinding.'
            )
        if self.namespace:
            role, binding = f'Role in namespace "{self.namespace}"', "RoleBinding"
        else:
            role, binding = "ClusterRole", "ClusterRoleBinding"
        hint = (
            f"Grant a {role} rule with apiGroups={[self.api_group]}, resources={[self.resource_path]}, "
            f'verbs={[self.verb]}; then bind it to user "{user}" using {binding}.'
        )
        if self.name:
            hint += f' Add resourceNames=["{self.name}"] to limit it to this object.'
        return hint


@dataclass
class PolicyRule:
    """One RBAC rule. "*" is a wildcard in every list."""

    verbs: List[str] = field(default_factory=list)
    api_groups: List[str] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)
    resource_names: List[str] = field(default_factory=list)
    non_resource_urls: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyRule":
        return cls(
            verbs=[str(v) for v in data.get("verbs") or []],
            api_groups=[str(g) for g in data.get("apiGroups") or []],
            resources=[str(r) for r in data.get("resources") or []],
            resource_names=[str(n) for n in data.get("resourceNames") or []],
            non_resource_urls=[str(u) for u in data.get("nonResourceURLs") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"verbs": list(self.verbs)}
        if self.non_resource_urls:
            result["nonResourceURLs"] = list(self.non_resource_urls)
        else:
            result["apiGroups"] = list(self.api_groups)
            result["resources"] = list(self.resources)
        if self.resource_names:
            result["resourceNames"] = list(self.resource_names)
        return result

    def allows(self, request: AccessRequest) -> bool:
        if not _verb_matches(self.verbs, request.verb):
            return False
        if request.non_resource_url is not None:
            return any(_url_matches(pattern, request.non_resource_url) for pattern in self.non_resource_urls)
        if not ("*" in self.api_groups or request.api_group in self.api_groups):
            return False
        if not any(_resource_matches(r, request.resource, request.subresource) for r in self.resources):
            return False
        if self.resource_names:
            return request.name is not None and request.name in self.resource_names
        return True


def _verb_matches(verbs: Sequence[str], verb: str) -> bool:
    return "*" in verbs or verb in verbs


def _url_matches(pattern: str, url: str) -> bool:
    if pattern == "*" or pattern == url:
        return True
    return pattern.endswith("*") and url.startswith(pattern[:-1])


def _resource_matches(rule_resource: str, resource: str, subresource: Optional[str]) -> bool:
    combined = f"{resource}/{subresource}" if subresource else resource
    if rule_resource == "*" or rule_resource == combined:
        return True
    if not subresource:
        return False
    # "*/scale" matches the scale subresource of any resource
    return rule_resource == f"*/{subresource}"


@dataclass
class Role:
    """Role (namespace set) or ClusterRole (namespace None)."""

    name: str
    namespace: Optional[str]
    rules: List[PolicyRule] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    aggregation_selectors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return "Role" if self.namespace else "ClusterRole"


@dataclass
class Binding:
    """RoleBinding (namespace set) or ClusterRoleBinding (namespace None)."""

    name: str
    namespace: Optional[str]
    role_kind: str
    role_name: str
    subjects: List[Subject] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return "RoleBinding" if self.namespace else "ClusterRoleBinding"

    def matches(self, user: UserInfo) -> bool:
        return any(s.matches(user, self.namespace) for s in self.subjects)

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass
class AuthorizationResult:
    """Outcome of an authorization check.

    Attributes:
        allowed: Whether the request is permitted
        reason: Which binding allowed it, or the Forbidden message
        matched_binding: "Kind/[namespace/]name" of the allowing binding
        request: The request that was checked
        suggested_rule: For denials, the minimal rule that would allow the request
        hint: For denials, how to grant it
    """

    allowed: bool
    reason: str
    matched_binding: Optional[str] = None
    request: Optional[AccessRequest] = None
    suggested_rule: Optional[Dict[str, Any]] = None
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"allowed": self.allowed, "reason": self.reason}
        if self.request is not None:
            result["request"] = str(self.request)
        if self.matched_binding:
            result["matched_binding"] = self.matched_binding
        if self.suggested_rule:
            result["suggested_rule"] = self.suggested_rule
        if self.hint:
            result["hint"] = self.hint
        return result


class RBACPolicy:
    """All Roles, ClusterRoles and bindings known to the authorizer."""

    def __init__(self):
        self.roles: Dict[Tuple[str, str], Role] = {}
        self.cluster_roles: Dict[str, Role] = {}
        self.role_bindings: List[Binding] = []
        self.cluster_role_bindings: List[Binding] = []

    @classmethod
    def from_bodies(cls, bodies: Iterable[dict], default_namespace: str = "default") -> "RBACPolicy":
        policy = cls()
        for body in bodies:
            policy.add(body, default_namespace)
        return policy

    def add(self, body: dict, default_namespace: str = "default") -> bool:
        """Add an RBAC object; returns False for any other kind.

        A later definition of the same role or binding replaces the earlier one.
        """
        kind = body.get("kind")
        if kind not in RBAC_KINDS:
            return False
        metadata = body.get("metadata") or {}
        name = str(metadata.get("name") or "")
        namespace = metadata.get("namespace") or default_namespace

        if kind in ("Role", "ClusterRole"):
            aggregation = body.get("aggregationRule") or {}
            role = Role(
                name=name,
                namespace=namespace if kind == "Role" else None,
                rules=[PolicyRule.from_dict(r) for r in body.get("rules") or []],
                labels=dict(metadata.get("labels") or {}),
                aggregation_selectors=list(aggregation.get("clusterRoleSelectors") or []),
            )
            if kind == "Role":
                self.roles[(namespace, name)] = role
            else:
                self.cluster_roles[name] = role
            return True

        role_ref = body.get("roleRef") or {}
        binding = Binding(
            name=name,
            namespace=namespace if kind == "RoleBinding" else None,
            role_kind=role_ref.get("kind", ""),
            role_name=role_ref.get("name", ""),
            subjects=[Subject.from_dict(s) for s in body.get("subjects") or []],
        )
        target = self.role_bindings if kind == "RoleBinding" else self.cluster_role_bindings
        target[:] = [b for b in target if (b.namespace, b.name) != (binding.namespace, binding.name)]
        target.append(binding)
        return True

    def copy(self) -> "RBACPolicy":
        clone = RBACPolicy()
        clone.roles = dict(self.roles)
        clone.cluster_roles = dict(self.cluster_roles)
        clone.role_bindings = list(self.role_bindings)
        clone.cluster_role_bindings = list(self.cluster_role_bindings)
        return clone

    def remove(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        if kind == "Role":
            self.roles.pop((namespace or "", name), None)
        elif kind == "ClusterRole":
            self.cluster_roles.pop(name, None)
        elif kind == "RoleBinding":
            self.role_bindings = [b for b in self.role_bindings if (b.namespace, b.name) != (namespace, name)]
        elif kind == "ClusterRoleBinding":
            self.cluster_role_bindings = [b for b in self.cluster_role_bindings if b.name != name]

    def has_role(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        if kind == "ClusterRole":
            return name in self.cluster_roles or name in _BUILTIN_CLUSTER_ROLES
        return (namespace or "", name) in self.roles

    def cluster_role_rules(self, name: str, _visited: Optional[set] = None) -> List[PolicyRule]:
        """Rules of a ClusterRole including aggregated ones."""
        visited = _visited if _visited is not None else set()
        if name in visited:
            return []
        visited.add(name)

        role = self.cluster_roles.get(name)
        if role is None:
            return [PolicyRule.from_dict(r) for r in _BUILTIN_CLUSTER_ROLES.get(name, [])]

        rules = list(role.rules)
        for selector in role.aggregation_selectors:
            for other in self.cluster_roles.values():
                if other.name != name and match_label_selector(selector, other.labels):
                    rules.extend(self.cluster_role_rules(other.name, visited))
        return rules

    def binding_rules(self, binding: Binding) -> List[PolicyRule]:
        if binding.role_kind == "ClusterRole":
            return self.cluster_role_rules(binding.role_name)
        if binding.role_kind == "Role" and binding.namespace:
            role = self.roles.get((binding.namespace, binding.role_name))
            return list(role.rules) if role else []
        return []

    def role_rules(self, kind: str, name: str, namespace: Optional[str] = None) -> List[PolicyRule]:
        if kind == "ClusterRole":
            return self.cluster_role_rules(name)
        role = self.roles.get((namespace or "", name))
        return list(role.rules) if role else []


class RBACAuthorizer:
    """Evaluates AccessRequests against an RBACPolicy.

    Example:
        >>> policy = RBACPolicy.from_bodies(obj.body for obj in bundle.objects())
        >>> authorizer = RBACAuthorizer(policy)
        >>> result = authorizer.authorize(UserInfo("jane"), AccessRequest("create", "deployments", "apps", "web"))
        >>> result.allowed
        False
    """

    def __init__(self, policy: RBACPolicy, superuser_groups: Sequence[str] = (SUPERUSER_GROUP,)):
        self.policy = policy
        self.superuser_groups = set(superuser_groups)

    def is_superuser(self, user: UserInfo) -> bool:
        return any(g in self.superuser_groups for g in user.effective_groups)

    def authorize(self, user: UserInfo, request: AccessRequest) -> AuthorizationResult:
        if self.is_superuser(user):
            return AuthorizationResult(True, "member of a superuser group", request=request)

        for binding in self.policy.cluster_role_bindings:
            if binding.matches(user) and any(r.allows(request) for r in self.policy.binding_rules(binding)):
                return AuthorizationResult(True, f"allowed by {binding}", str(binding), request=request)

        # RoleBindings never grant cluster-scoped or non-resource access
        if request.namespace and request.non_resource_url is None:
            for binding in self.policy.role_bindings:
                if binding.namespace != request.namespace or not binding.matches(user):
                    continue
                if any(r.allows(request) for r in self.policy.binding_rules(binding)):
                    return AuthorizationResult(True, f"allowed by {binding}", str(binding), request=request)

        return self._deny(user, request)

    def _deny(self, user: UserInfo, request: AccessRequest) -> AuthorizationResult:
        message = request.forbidden_message(user.name)
        logger.debug(message)
        return AuthorizationResult(
            False,
            message,
            request=request,
            suggested_rule=request.suggested_rule(),
            hint=request.grant_hint(user.name),
        )

    def rules_for(self, user: UserInfo, namespace: Optional[str] = None) -> List[PolicyRule]:
        """Every rule the user holds in a namespace (cluster-wide only when namespace is None)."""
        rules: List[PolicyRule] = []
        for binding in self.policy.cluster_role_bindings:
            if binding.matches(user):
                rules.extend(self.policy.binding_rules(binding))
        if namespace:
            for binding in self.policy.role_bindings:
                if binding.namespace == namespace and binding.matches(user):
                    rules.extend(self.policy.binding_rules(binding))
        return rules

    def uncovered_rules(
        self, user: UserInfo, wanted: Sequence[PolicyRule], namespace: Optional[str] = None
    ) -> List[PolicyRule]:
        """Rules in wanted that the user's own permissions do not cover."""
        if self.is_superuser(user):
            return []
        held = self.rules_for(user, namespace)
        return [rule for rule in wanted if not _rule_covered(rule, held)]

    def check_escalation(
        self,
        user: UserInfo,
        body: dict,
        verb: str,
        default_namespace: str = "default",
        roles: Optional["RBACPolicy"] = None,
    ) -> Optional[AuthorizationResult]:
        """Privilege escalation guard for RBAC objects.

        Returns None when body is not an RBAC object or the change is
        permitted, otherwise a denial explaining which rules are missing.
        A binding to a role that roles (default: the authorizer's policy)
        cannot resolve always needs the "bind" verb.
        """
        roles = roles if roles is not None else self.policy
        kind = body.get("kind")
        if kind not in RBAC_KINDS or verb not in ("create", "update", "patch"):
            return None
        metadata = body.get("metadata") or {}
        name = str(metadata.get("name") or "")
        scoped = kind in ("Role", "RoleBinding")
        namespace = (metadata.get("namespace") or default_namespace) if scoped else None

        unresolved = False
        if kind in ("Role", "ClusterRole"):
            wanted = [PolicyRule.from_dict(r) for r in body.get("rules") or []]
            if kind == "ClusterRole" and body.get("aggregationRule"):
                # The aggregated rules are what the role will grant
                merged = RBACPolicy()
                merged.cluster_roles = dict(self.policy.cluster_roles)
                merged.add(body)
                wanted = merged.cluster_role_rules(name)
            override_verb = "escalate"
            override_resource = "roles" if kind == "Role" else "clusterroles"
            override_name = name
        else:
            role_ref = body.get("roleRef") or {}
            role_kind = role_ref.get("kind", "")
            override_name = role_ref.get("name", "")
            unresolved = not roles.has_role(role_kind, override_name, namespace)
            wanted = roles.role_rules(role_kind, override_name, namespace)
            override_verb = "bind"
            override_resource = "roles" if role_kind == "Role" else "clusterroles"

        missing = self.uncovered_rules(user, wanted, namespace)
        if not missing and not unresolved:
            return None

        override = AccessRequest(
            verb=override_verb,
            resource=override_resource,
            api_group=RBAC_GROUP,
            namespace=namespace if override_resource == "roles" else None,
            name=override_name,
        )
        if self.authorize(user, override).allowed:
            logger.debug(f"{user.name} holds '{override_verb}' on {override_resource}/{override_name}")
            return None
        if override.namespace is None and namespace and self.authorize(
            user, AccessRequest(override_verb, override_resource, RBAC_GROUP, namespace, override_name)
        ).allowed:
            return None

        action = "create or update" if kind in ("Role", "ClusterRole") else "bind to"
        target = name if kind in ("Role", "ClusterRole") else f"{override_resource[:-1]} {override_name}"
        if unresolved:
            problem = f"{role_kind or 'role'} {override_name} cannot be resolved"
            hint = f"Define {role_kind or 'the role'} {override_name} before binding to it, or grant \"bind\"."
        else:
            problem = f"attempting to grant RBAC permissions not currently held ({len(missing)} rule(s))"
            hint = f"Missing rules: {[r.to_dict() for r in missing]}"
        return AuthorizationResult(
            allowed=False,
            reason=f'User "{user.name}" cannot {action} {target}: {problem} and lacks "{override_verb}" on {override_resource}',
            request=override,
            suggested_rule=override.suggested_rule(),
            hint=hint,
        )


def _rule_covered(wanted: PolicyRule, held: Sequence[PolicyRule]) -> bool:
    """True if every permission in wanted is granted by some held rule.

    Wildcards in wanted are only covered by wildcards in held.
    """
    verbs = wanted.verbs or []
    if wanted.non_resource_urls:
        return all(
            any(_verb_matches(h.verbs, verb) and any(_url_matches(p, url) for p in h.non_resource_urls) for h in held)
            for verb, url in product(verbs, wanted.non_resource_urls)
        )

    names: List[Optional[str]] = list(wanted.resource_names) or [None]
    for verb, group, resource, name in product(verbs, wanted.api_groups, wanted.resources, names):
        if not any(_held_covers(h, verb, group, resource, name) for h in held):
            return False
    return True


def _held_covers(held: PolicyRule, verb: str, group: str, resource: str, name: Optional[str]) -> bool:
    if not _verb_matches(held.verbs, verb):
        return False
    if not ("*" in held.api_groups or group in held.api_groups):
        return False
    _, _, sub = resource.partition("/")
    if not ("*" in held.resources or resource in held.resources or (sub and f"*/{sub}" in held.resources)):
        return False
    if held.resource_names:
        return name is not None and name in held.resource_names
    return True


_FORBIDDEN_RE = re.compile(
    r"""
    (?:"(?P<name>[^"]+)"\s+)?is\s+forbidden:\s+
    User\s+"(?P<user>[^"]+)"\s+cannot\s+(?P<verb>[a-z]+)\s+
    resource\s+"(?P<resource>[^"]+)"\s+in\s+API\s+group\s+"(?P<group>[^"]*)"\s+
    (?:in\s+the\s+namespace\s+"(?P<namespace>[^"]+)"|at\s+the\s+cluster\s+scope)
    """,
    re.IGNORECASE | re.VERBOSE,
)


def parse_forbidden(text: Any) -> Optional[Dict[str, Any]]:
    """Turn a Forbidden error back into structured diagnostics.

    Accepts kubectl output as well as the authorizer's own denial reasons.
    Returns None when text is not an RBAC denial.

    Example:
        >>> parse_forbidden('namespaces is forbidden: User "bob" cannot create resource '
        ...                 '"namespaces" in API group "" at the cluster scope')["scope"]
        'cluster'
    """
    match = _FORBIDDEN_RE.search(text) if isinstance(text, str) else None
    if match is None:
        return None

    resource, _, subresource = match.group("resource").partition("/")
    request = AccessRequest(
        verb=match.group("verb").lower(),
        resource=resource,
        api_group=match.group("group"),
        namespace=match.group("namespace"),
        name=match.group("name"),
        subresource=subresource or None,
    )
    user = match.group("user")
    return {
        "user": user,
        "verb": request.verb,
        "resource": request.resource_path,
        "api_group": request.api_group,
        "namespace": request.namespace,
        "name": request.name,
        "scope": "namespaced" if request.namespace else "cluster",
        "suggested_rule": request.suggested_rule(),
        "hint": request.grant_hint(user),
    }
