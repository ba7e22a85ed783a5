"""Tests for the cluster snapshot store."""

import json

import pytest

from kubegate.core.errors import SnapshotError
from kubegate.k8s.artifact import ObjectRef
from kubegate.k8s.cluster import ClusterState

SNAPSHOT = """apiVersion: v1
kind: List
items:
- apiVersion: v1
  kind: Namespace
  metadata:
    name: shop
    resourceVersion: "41"
- apiVersion: v1
  kind: ConfigMap
  metadata:
    name: settings
    namespace: shop
    resourceVersion: "42"
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
spec:
  replicas: 2
status:
  readyReplicas: 2
"""

DEPLOYMENT_REF = ObjectRef("apps/v1", "Deployment", "default", "web")


@pytest.fixture
def cluster(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(SNAPSHOT)
    return ClusterState.from_file(str(path))


class TestLoading:
    """Tests for snapshot loading."""

    def test_from_file_expands_lists(self, cluster):
        assert len(cluster) == 3
        assert DEPLOYMENT_REF in cluster
        assert cluster.get(ObjectRef("v1", "ConfigMap", "shop", "settings"))["metadata"]["resourceVersion"] == "42"

    def test_missing_file_gives_empty_cluster(self, tmp_path):
        cluster = ClusterState.from_file(str(tmp_path / "absent.yaml"))
        assert len(cluster) == 0
        assert cluster.path == str(tmp_path / "absent.yaml")

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("items: [oops\n")
        with pytest.raises(SnapshotError):
            ClusterState.from_file(str(path))

    def test_namespaces_include_builtins(self, cluster):
        assert cluster.namespaces() == {"default", "kube-system", "kube-public", "kube-node-lease", "shop"}

    def test_list_filters(self, cluster):
        assert [b["metadata"]["name"] for b in cluster.list(namespace="shop")] == ["settings"]
        assert [b["kind"] for b in cluster.list(kind="Deployment")] == ["Deployment"]


class TestPut:
    """Tests for server-managed metadata."""

    def test_create_assigns_metadata(self, cluster):
        stored = cluster.put({"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web"}, "spec": {}})
        metadata = stored["metadata"]

        assert metadata["namespace"] == "default"
        assert metadata["resourceVersion"] == "43"
        assert metadata["generation"] == 1
        assert metadata["uid"]
        assert metadata["creationTimestamp"].endswith("Z")

    def test_update_keeps_identity_and_status(self, cluster):
        first = cluster.put({"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "web"}, "spec": {"replicas": 2}})
        same_spec = cluster.put({"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "web", "labels": {"a": "b"}}, "spec": {"replicas": 2}})
        new_spec = cluster.put({"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "web"}, "spec": {"replicas": 3}})

        assert same_spec["metadata"]["uid"] == first["metadata"]["uid"]
        assert same_spec["metadata"]["generation"] == first["metadata"]["generation"]
        assert new_spec["metadata"]["generation"] == first["metadata"]["generation"] + 1
        assert new_spec["status"] == {"readyReplicas": 2}
        assert int(new_spec["metadata"]["resourceVersion"]) > int(first["metadata"]["resourceVersion"])

    def test_put_does_not_alias_input(self, cluster):
        body = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "c"}, "data": {"k": "v"}}
        cluster.put(body)
        body["data"]["k"] = "changed"
        assert cluster.get(ObjectRef("v1", "ConfigMap", "default", "c"))["data"] == {"k": "v"}


class TestDelete:
    """Tests for deletes."""

    def test_namespace_delete_cascades(self, cluster):
        cluster.delete(ObjectRef("v1", "Namespace", None, "shop"))
        assert len(cluster) == 1
        assert DEPLOYMENT_REF in cluster

    def test_delete_missing_returns_none(self, cluster):
        assert cluster.delete(ObjectRef("v1", "Secret", "default", "nope")) is None


class TestSave:
    """Tests for writing snapshots."""

    def test_yaml_round_trip(self, cluster, tmp_path):
        target = tmp_path / "out.yaml"
        cluster.save(str(target))
        reloaded = ClusterState.from_file(str(target))
        assert reloaded.bodies() == cluster.bodies()

    def test_json_output(self, cluster, tmp_path):
        target = tmp_path / "out.json"
        cluster.save(str(target))
        data = json.loads(target.read_text())
        assert data["kind"] == "List"
        assert len(data["items"]) == 3

    def test_save_without_path(self):
        with pytest.raises(SnapshotError):
            ClusterState().save()
