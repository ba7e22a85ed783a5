"""Tests for the RBAC model, authorizer and escalation guard."""

import pytest

from kubegate.k8s.artifact import load_yaml_documents, to_plain
from kubegate.k8s.rbac import (
    AccessRequest,
    PolicyRule,
    RBACAuthorizer,
    RBACPolicy,
    UserInfo,
    parse_forbidden,
)

POLICY_YAML = """apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: workload-editor
rules:
- apiGroups: ["apps"]
  resources: ["deployments", "deployments/scale"]
  verbs: ["get", "list", "create", "patch", "delete"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: developers-workload-editor
subjects:
- kind: Group
  name: developers
roleRef:
  kind: ClusterRole
  name: workload-editor
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: rbac-manager
rules:
- apiGroups: ["rbac.authorization.k8s.io"]
  resources: ["roles", "rolebindings"]
  verbs: ["create", "patch"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: RoleBinding
metadata:
  name: alice-rbac-manager
  namespace: shop
subjects:
- kind: User
  name: alice
roleRef:
  kind: ClusterRole
  name: rbac-manager
---
apiVersion: rbac.authorization.k8s.io/v1
kind: Role
metadata:
  name: config-reader
  namespace: shop
rules:
- apiGroups: [""]
  resources: ["configmaps"]
  resourceNames: ["web-settings"]
  verbs: ["get"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: RoleBinding
metadata:
  name: deployer-config-reader
  namespace: shop
subjects:
- kind: ServiceAccount
  name: deployer
roleRef:
  kind: Role
  name: config-reader
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: secret-admin
rules:
- apiGroups: [""]
  resources: ["secrets"]
  verbs: ["*"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: health-checker
rules:
- nonResourceURLs: ["/healthz", "/healthz/*"]
  verbs: ["get"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: everyone-health
subjects:
- kind: Group
  name: system:authenticated
roleRef:
  kind: ClusterRole
  name: health-checker
"""

ALICE = UserInfo("alice", ("developers",))
BOB = UserInfo("bob", ("developers",))


def _bodies(text):
    return [to_plain(doc) for doc in load_yaml_documents(text) if doc is not None]


@pytest.fixture
def policy():
    return RBACPolicy.from_bodies(_bodies(POLICY_YAML))


@pytest.fixture
def authorizer(policy):
    return RBACAuthorizer(policy)


def _role(name, rules, namespace="shop"):
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "Role",
        "metadata": {"name": name, "namespace": namespace},
        "rules": rules,
    }


def _binding(name, role_kind, role_name, namespace="shop"):
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": {"name": name, "namespace": namespace},
        "subjects": [{"kind": "User", "name": "carol"}],
        "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": role_kind, "name": role_name},
    }


class TestUserInfo:
    """Tests for identities."""

    def test_authenticated_group_added(self):
        assert UserInfo("jane", ("dev",)).effective_groups == ("dev", "system:authenticated")
        assert UserInfo("system:anonymous").effective_groups == ()

    def test_parse_service_account(self):
        user = UserInfo.parse("system:serviceaccount:shop:deployer", ["ci"])
        assert user.name == "system:serviceaccount:shop:deployer"
        assert user.groups == ("system:serviceaccounts", "system:serviceaccounts:shop", "ci")

    def test_parse_plain_user(self):
        assert UserInfo.parse("jane", ["dev"]) == UserInfo("jane", ("dev",))


class TestPolicyRule:
    """Tests for rule matching."""

    def test_round_trip(self):
        data = {"verbs": ["get"], "apiGroups": [""], "resources": ["pods"], "resourceNames": ["a"]}
        assert PolicyRule.from_dict(data).to_dict() == data

    def test_wildcards_and_subresources(self):
        rule = PolicyRule(verbs=["*"], api_groups=["*"], resources=["*/scale"])
        assert rule.allows(AccessRequest("update", "deployments", "apps", "shop", "web", subresource="scale"))
        assert not rule.allows(AccessRequest("update", "deployments", "apps", "shop", "web"))

    def test_resource_names_require_a_name(self):
        rule = PolicyRule(verbs=["get", "list"], api_groups=[""], resources=["configmaps"], resource_names=["a"])
        assert rule.allows(AccessRequest("get", "configmaps", "", "shop", "a"))
        assert not rule.allows(AccessRequest("get", "configmaps", "", "shop", "b"))
        assert not rule.allows(AccessRequest("list", "configmaps", "", "shop"))


class TestRBACPolicy:
    """Tests for the policy store."""

    def test_add_ignores_other_kinds(self):
        policy = RBACPolicy()
        assert not policy.add({"kind": "ConfigMap", "metadata": {"name": "x"}})
        assert policy.add(_role("r", []))
        assert policy.has_role("Role", "r", "shop")
        assert policy.has_role("ClusterRole", "cluster-admin")

    def test_redefinition_replaces_binding(self, policy):
        policy.add(_binding("alice-rbac-manager", "Role", "config-reader"))
        matching = [b for b in policy.role_bindings if b.name == "alice-rbac-manager"]
        assert len(matching) == 1
        assert matching[0].role_kind == "Role"

    def test_remove(self, policy):
        policy.remove("ClusterRoleBinding", "developers-workload-editor")
        policy.remove("Role", "config-reader", "shop")
        assert all(b.name != "developers-workload-editor" for b in policy.cluster_role_bindings)
        assert not policy.has_role("Role", "config-reader", "shop")

    def test_aggregation(self):
        text = """apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: aggregate-edit
  labels:
    rbac.example.com/aggregate-to-widgets: "true"
aggregationRule:
  clusterRoleSelectors:
  - matchLabels:
      rbac.example.com/aggregate-to-edit: "true"
rules: []
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: widget-editor
  labels:
    rbac.example.com/aggregate-to-edit: "true"
aggregationRule:
  clusterRoleSelectors:
  - matchLabels:
      rbac.example.com/aggregate-to-widgets: "true"
rules:
- apiGroups: ["example.com"]
  resources: ["widgets"]
  verbs: ["*"]
"""
        policy = RBACPolicy.from_bodies(_bodies(text))
        rules = policy.cluster_role_rules("aggregate-edit")
        assert [r.resources for r in rules] == [["widgets"]]
        # the two roles select each other; recursion stops at roles already visited
        assert [r.resources for r in policy.cluster_role_rules("widget-editor")] == [["widgets"]]


class TestAuthorize:
    """Tests for RBACAuthorizer.authorize."""

    def test_cluster_role_binding_allows_everywhere(self, authorizer):
        result = authorizer.authorize(BOB, AccessRequest("create", "deployments", "apps", "anywhere"))
        assert result.allowed
        assert result.matched_binding == "ClusterRoleBinding/developers-workload-editor"

    def test_role_binding_only_in_its_namespace(self, authorizer):
        assert authorizer.authorize(ALICE, AccessRequest("create", "roles", "rbac.authorization.k8s.io", "shop")).allowed
        assert not authorizer.authorize(ALICE, AccessRequest("create", "roles", "rbac.authorization.k8s.io", "other")).allowed

    def test_role_binding_never_grants_cluster_scope(self, authorizer):
        result = authorizer.authorize(ALICE, AccessRequest("create", "roles", "rbac.authorization.k8s.io"))
        assert not result.allowed
        assert "at the cluster scope" in result.reason

    def test_service_account_subject_defaults_to_binding_namespace(self, authorizer):
        deployer = UserInfo.parse("system:serviceaccount:shop:deployer")
        assert authorizer.authorize(deployer, AccessRequest("get", "configmaps", "", "shop", "web-settings")).allowed
        assert not authorizer.authorize(deployer, AccessRequest("get", "configmaps", "", "shop", "other")).allowed

        other_ns = UserInfo.parse("system:serviceaccount:billing:deployer")
        assert not authorizer.authorize(other_ns, AccessRequest("get", "configmaps", "", "shop", "web-settings")).allowed

    def test_non_resource_urls(self, authorizer):
        assert authorizer.authorize(BOB, AccessRequest("get", non_resource_url="/healthz/ready")).allowed
        denied = authorizer.authorize(BOB, AccessRequest("get", non_resource_url="/metrics"))
        assert not denied.allowed
        assert denied.reason == 'forbidden: User "bob" cannot get path "/metrics"'
        assert denied.suggested_rule == {"nonResourceURLs": ["/metrics"], "verbs": ["get"]}

    def test_superuser_group(self, authorizer):
        admin = UserInfo("root", ("system:masters",))
        assert authorizer.authorize(admin, AccessRequest("delete", "nodes", "", None, "n1")).allowed

    def test_builtin_cluster_admin(self):
        text = """apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: ops
subjects:
- kind: Group
  name: ops
roleRef:
  kind: ClusterRole
  name: cluster-admin
"""
        authorizer = RBACAuthorizer(RBACPolicy.from_bodies(_bodies(text)))
        user = UserInfo("olga", ("ops",))
        assert authorizer.authorize(user, AccessRequest("delete", "namespaces", "", None, "shop")).allowed
        assert authorizer.authorize(user, AccessRequest("get", non_resource_url="/metrics")).allowed

    def test_denial_carries_forbidden_message_and_hint(self, authorizer):
        result = authorizer.authorize(BOB, AccessRequest("delete", "secrets", "", "shop", "db-password"))

        assert not result.allowed
        assert result.reason == (
            'secrets "db-password" is forbidden: User "bob" cannot delete resource "secrets" '
            'in API group "" in the namespace "shop"'
        )
        assert result.suggested_rule == {
            "apiGroups": [""], "resources": ["secrets"], "verbs": ["delete"], "resourceNames": ["db-password"],
        }
        assert "RoleBinding" in result.hint
        assert result.to_dict()["request"] == "delete secrets/db-password in namespace shop"


class TestEscalation:
    """Tests for the privilege escalation guard."""

    def test_non_rbac_objects_and_deletes_are_ignored(self, authorizer):
        assert authorizer.check_escalation(ALICE, {"kind": "ConfigMap", "metadata": {"name": "c"}}, "create") is None
        secret_role = _role("secret-reader", [{"apiGroups": [""], "resources": ["secrets"], "verbs": ["get"]}])
        assert authorizer.check_escalation(ALICE, secret_role, "delete") is None

    def test_role_with_held_permissions_allowed(self, authorizer):
        role = _role("deploy-reader", [{"apiGroups": ["apps"], "resources": ["deployments"], "verbs": ["get", "list"]}])
        assert authorizer.check_escalation(ALICE, role, "create", "shop") is None

    def test_role_granting_more_is_denied(self, authorizer):
        role = _role("secret-reader", [{"apiGroups": [""], "resources": ["secrets"], "verbs": ["get"]}])
        result = authorizer.check_escalation(ALICE, role, "create", "shop")

        assert result is not None and not result.allowed
        assert "attempting to grant RBAC permissions not currently held" in result.reason
        assert result.suggested_rule == {
            "apiGroups": ["rbac.authorization.k8s.io"],
            "resources": ["roles"],
            "verbs": ["escalate"],
            "resourceNames": ["secret-reader"],
        }
        assert "secrets" in result.hint

    def test_wildcard_rules_need_wildcards(self, authorizer):
        role = _role("all-deploy", [{"apiGroups": ["apps"], "resources": ["deployments"], "verbs": ["*"]}])
        assert authorizer.check_escalation(ALICE, role, "create", "shop") is not None

    def test_escalate_verb_overrides(self, policy):
        policy.cluster_roles["rbac-manager"].rules.append(
            PolicyRule(verbs=["escalate", "bind"], api_groups=["rbac.authorization.k8s.io"], resources=["roles", "clusterroles"])
        )
        authorizer = RBACAuthorizer(policy)
        role = _role("secret-reader", [{"apiGroups": [""], "resources": ["secrets"], "verbs": ["get"]}])
        assert authorizer.check_escalation(ALICE, role, "create", "shop") is None

    def test_binding_to_stronger_role_is_denied(self, authorizer):
        result = authorizer.check_escalation(ALICE, _binding("carol-secrets", "ClusterRole", "secret-admin"), "create")
        assert result is not None
        assert "bind to clusterrole secret-admin" in result.reason

    def test_binding_to_held_role_allowed(self, authorizer):
        assert authorizer.check_escalation(ALICE, _binding("carol-edit", "ClusterRole", "workload-editor"), "create") is None

    def test_namespaced_bind_permission_on_cluster_role(self, policy):
        policy.cluster_roles["rbac-manager"].rules.append(
            PolicyRule(verbs=["bind"], api_groups=["rbac.authorization.k8s.io"], resources=["clusterroles"],
                       resource_names=["secret-admin"])
        )
        authorizer = RBACAuthorizer(policy)
        binding = _binding("carol-secrets", "ClusterRole", "secret-admin")
        assert authorizer.check_escalation(ALICE, binding, "create") is None
        # the bind grant lives in shop only
        elsewhere = _binding("carol-secrets", "ClusterRole", "secret-admin", namespace="billing")
        assert authorizer.check_escalation(ALICE, elsewhere, "create") is not None

    def test_superuser_never_escalates(self, authorizer):
        role = _role("everything", [{"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]}])
        assert authorizer.check_escalation(UserInfo("root", ("system:masters",)), role, "create") is None

    def test_binding_to_unknown_cluster_role_needs_bind(self, authorizer):
        result = authorizer.check_escalation(ALICE, _binding("carol-admin", "ClusterRole", "admin"), "create")

        assert result is not None and not result.allowed
        assert "ClusterRole admin cannot be resolved" in result.reason
        assert result.suggested_rule["verbs"] == ["bind"]

    def test_binding_to_unknown_role_allowed_with_bind(self, policy):
        policy.cluster_roles["rbac-manager"].rules.append(
            PolicyRule(verbs=["bind"], api_groups=["rbac.authorization.k8s.io"], resources=["clusterroles"])
        )
        authorizer = RBACAuthorizer(policy)
        assert authorizer.check_escalation(ALICE, _binding("carol-admin", "ClusterRole", "admin"), "create") is None

    def test_binding_resolves_roles_from_given_policy(self, policy, authorizer):
        roles = policy.copy()
        roles.add(_role("deploy-reader", [{"apiGroups": ["apps"], "resources": ["deployments"], "verbs": ["get"]}]))
        binding = _binding("carol-reader", "Role", "deploy-reader")

        assert authorizer.check_escalation(ALICE, binding, "create") is not None
        assert authorizer.check_escalation(ALICE, binding, "create", roles=roles) is None
        assert ("shop", "deploy-reader") not in policy.roles


class TestForbiddenMessages:
    """Tests for Forbidden message rendering and parsing."""

    def test_cluster_scope_message(self):
        message = AccessRequest("create", "namespaces").forbidden_message("bob")
        assert message == (
            'namespaces is forbidden: User "bob" cannot create resource "namespaces" '
            'in API group "" at the cluster scope'
        )

    def test_subresource_hint(self):
        request = AccessRequest("patch", "deployments", "apps", "shop", "web", subresource="scale")
        assert "resources=['deployments/scale']" in request.grant_hint("bob")
        assert 'resourceNames=["web"]' in request.grant_hint("bob")
        assert request.suggested_rule()["resources"] == ["deployments/scale"]

    def test_parse_kubectl_error(self):
        text = (
            'Error from server (Forbidden): deployments.apps "web" is forbidden: '
            'User "system:serviceaccount:shop:deployer" cannot patch resource "deployments" '
            'in API group "apps" in the namespace "shop"'
        )
        info = parse_forbidden(text)

        assert info["user"] == "system:serviceaccount:shop:deployer"
        assert (info["verb"], info["resource"], info["api_group"]) == ("patch", "deployments", "apps")
        assert (info["namespace"], info["name"], info["scope"]) == ("shop", "web", "namespaced")
        assert info["suggested_rule"] == {
            "apiGroups": ["apps"], "resources": ["deployments"], "verbs": ["patch"], "resourceNames": ["web"],
        }
        assert 'Role in namespace "shop"' in info["hint"]

    def test_parse_round_trips_authorizer_denial(self, authorizer):
        request = AccessRequest("delete", "clusterroles", "rbac.authorization.k8s.io", None, "admin-extra")
        result = authorizer.authorize(BOB, request)
        info = parse_forbidden(result.reason)

        assert info["user"] == "bob"
        assert info["scope"] == "cluster"
        assert info["namespace"] is None
        assert info["name"] == "admin-extra"
        assert info["suggested_rule"] == result.suggested_rule
        assert info["hint"] == result.hint

    @pytest.mark.parametrize("text", [
        "",
        None,
        'deployments.apps "web" not found',
        "forbidden: you cannot do that",
        'forbidden: User "bob" cannot get path "/metrics"',
    ])
    def test_parse_ignores_other_text(self, text):
        assert parse_forbidden(text) is None
