"""Tests for ManifestBundle, KindRegistry and ObjectRef."""

import pytest

from kubegate.core.errors import ManifestLoadError
from kubegate.k8s.artifact import (
    KindRegistry,
    ManifestBundle,
    ObjectRef,
    dump_yaml_documents,
    load_yaml_documents,
    ref_for,
    split_api_version,
)

MULTI_DOC = """apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
data:
  mode: "fast"
---
---
apiVersion: v1
kind: List
items:
- apiVersion: v1
  kind: Secret
  metadata:
    name: token
- apiVersion: v1
  kind: ServiceAccount
  metadata:
    name: runner
"""

CRD = """apiVersion: apiextensions.k8s.io/v1
kind: CustomResourceDefinition
metadata:
  name: widgets.example.com
spec:
  group: example.com
  scope: Cluster
  names:
    kind: Widget
    plural: widgets
"""


class TestManifestBundle:
    """Tests for loading documents from a bundle."""

    def test_objects_skip_empty_and_expand_lists(self):
        bundle = ManifestBundle(files={"app.yaml": MULTI_DOC})
        objects = bundle.objects()

        assert [o.kind for o in objects] == ["ConfigMap", "Secret", "ServiceAccount"]
        assert [o.location() for o in objects] == ["app.yaml#0", "app.yaml#1", "app.yaml#2"]
        assert objects[0].body["data"] == {"mode": "fast"}
        assert type(objects[0].body) is dict

    def test_invalid_yaml_raises(self):
        bundle = ManifestBundle(files={"bad.yaml": "kind: [unclosed\n"})
        with pytest.raises(ManifestLoadError) as exc_info:
            bundle.objects()
        assert exc_info.value.source == "bad.yaml"

    def test_scalar_document_raises(self):
        bundle = ManifestBundle(files={"bad.yaml": "just a string\n"})
        with pytest.raises(ManifestLoadError, match="not a mapping"):
            bundle.objects()

    def test_from_dir_is_recursive_and_sorted(self, tmp_path):
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "svc.yml").write_text("apiVersion: v1\nkind: Service\nmetadata:\n  name: s\n")
        (tmp_path / "a.yaml").write_text("apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: c\n")
        (tmp_path / "README.md").write_text("# not a manifest")

        bundle = ManifestBundle.from_dir(str(tmp_path))

        assert list(bundle.files) == ["a.yaml", "b/svc.yml"]

    def test_from_path_file_and_missing(self, tmp_path):
        path = tmp_path / "one.yaml"
        path.write_text("apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: c\n")

        assert list(ManifestBundle.from_path(str(path)).files) == ["one.yaml"]
        with pytest.raises(ManifestLoadError, match="not found"):
            ManifestBundle.from_path(str(tmp_path / "missing.yaml"))

    def test_write_to_dir(self, tmp_path):
        bundle = ManifestBundle(files={"nested/app.yaml": "kind: ConfigMap\n"})
        bundle.write_to_dir(str(tmp_path / "out"))
        assert (tmp_path / "out" / "nested" / "app.yaml").read_text() == "kind: ConfigMap\n"

    def test_registry_learns_crds(self):
        bundle = ManifestBundle(files={"crd.yaml": CRD})
        assert bundle.registry().resolve("Widget", "example.com") == ("widgets", "example.com", False)


class TestYamlHelpers:
    """Tests for round-trip YAML helpers."""

    def test_dump_preserves_comments_and_quotes(self):
        text = '# keep me\napiVersion: v1\nkind: ConfigMap\ndata:\n  port: "8080"\n'
        docs = load_yaml_documents(text)
        docs[0]["metadata"] = {"name": "c"}
        out = dump_yaml_documents(docs)

        assert "# keep me" in out
        assert 'port: "8080"' in out
        assert "name: c" in out


class TestKindRegistry:
    """Tests for kind resolution."""

    def test_builtin_kinds(self):
        registry = KindRegistry()
        assert registry.resolve("Deployment") == ("deployments", "apps", True)
        assert registry.resolve("ClusterRole") == ("clusterroles", "rbac.authorization.k8s.io", False)
        assert not registry.is_namespaced("Namespace", "")
        assert registry.resource_for("Ingress") == "ingresses"

    def test_unknown_kind_defaults_to_namespaced_plural(self):
        assert KindRegistry().resolve("Gadget", "example.com") == ("gadgets", "example.com", True)

    def test_known_kind_in_another_group_keeps_its_plural(self):
        registry = KindRegistry()
        assert registry.resolve("Ingress", "extensions") == ("ingresses", "extensions", True)
        assert not registry.is_namespaced("ClusterRole", "authorization.openshift.io")


class TestObjectRef:
    """Tests for object identity."""

    def test_namespaced_kind_gets_default_namespace(self):
        ref = ref_for({"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "web"}}, "shop")
        assert ref == ObjectRef("apps/v1", "Deployment", "shop", "web")
        assert str(ref) == "Deployment/shop/web"
        assert ref.group == "apps"

    def test_cluster_scoped_kind_drops_namespace(self):
        ref = ref_for({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "shop", "namespace": "x"}})
        assert ref.namespace is None
        assert str(ref) == "Namespace/shop"

    def test_key_ignores_version(self):
        a = ObjectRef("apps/v1", "Deployment", "shop", "web")
        b = ObjectRef("apps/v1beta1", "Deployment", "shop", "web")
        assert a.key() == b.key() == ("apps", "Deployment", "shop", "web")

    def test_split_api_version(self):
        assert split_api_version("apps/v1") == ("apps", "v1")
        assert split_api_version("v1") == ("", "v1")
