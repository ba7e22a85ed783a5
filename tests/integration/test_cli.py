"""Integration tests for the kubegate CLI."""

import json

import pytest

from kubegate.cli.main import main
from kubegate.k8s.examples import SNAPSHOT_YAML, shop_bundle


@pytest.fixture
def manifests(tmp_path):
    path = tmp_path / "k8s"
    shop_bundle().write_to_dir(str(path))
    return str(path)


@pytest.fixture
def snapshot(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(SNAPSHOT_YAML)
    return str(path)


class TestCheck:
    """Tests for the check command."""

    def test_check_passes(self, manifests, capsys):
        assert main(["check", manifests, "--profile", "restricted"]) == 0
        out = capsys.readouterr().out
        assert "Checked 3 files with profile 'restricted'" in out
        assert "All checks passed" in out

    def test_check_json_reports_violations(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("apiVersion: apps/v1\nkind: Deployment\nmetadata:\n  name: web\nspec:\n  template:\n    spec:\n      containers:\n      - name: web\n        image: web:latest\n")

        assert main(["check", str(path), "--json"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "rejected"
        assert "policy.IMAGE_TAG_LATEST" in {v["id"] for v in report["violations"]}

    def test_profile_from_config_file(self, manifests, tmp_path, capsys):
        config = tmp_path / "kubegate.json"
        config.write_text(json.dumps({"pipeline": {"profile": "minimal"}}))

        assert main(["--config", str(config), "check", manifests]) == 0
        assert "profile 'minimal'" in capsys.readouterr().out

    def test_missing_path_is_an_error(self, tmp_path, capsys):
        assert main(["check", str(tmp_path / "nope.yaml")]) == 2
        assert "Error:" in capsys.readouterr().err

    def test_unparsable_yaml_is_an_error(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("kind: [oops\n")

        assert main(["check", str(path), "--profile", "minimal"]) == 2
        assert "bad.yaml" in capsys.readouterr().err


class TestPlanApply:
    """Tests for plan and apply."""

    def test_plan_as_admin(self, manifests, snapshot, capsys):
        code = main(["plan", manifests, "--snapshot", snapshot, "--as", "jane", "--as-group", "platform"])
        out = capsys.readouterr().out

        assert code == 0
        assert "Status: admitted" in out
        assert "+ create    Namespace/shop" in out

    def test_plan_as_developer_is_forbidden(self, manifests, snapshot, capsys):
        code = main(["plan", manifests, "--snapshot", snapshot, "--as", "bob", "--as-group", "developers"])
        out = capsys.readouterr().out

        assert code == 1
        assert "Status: forbidden" in out
        assert "Denied for bob" in out
        assert "hint:" in out

    def test_plan_json(self, manifests, snapshot, capsys):
        main(["plan", manifests, "--snapshot", snapshot, "--as", "jane", "--as-group", "platform", "--json"])
        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "admitted"
        assert report["plan"]["summary"]["create"] == 7
        assert all(entry["allowed"] for entry in report["authorization"])

    def test_default_user_from_config(self, manifests, snapshot, tmp_path, capsys):
        config = tmp_path / "kubegate.json"
        config.write_text(json.dumps({"rbac": {"default_user": "bob", "default_groups": ["developers"]}}))

        assert main(["--config", str(config), "plan", manifests, "--snapshot", snapshot]) == 1
        assert "Denied for bob" in capsys.readouterr().out

    def test_apply_updates_snapshot(self, manifests, snapshot, capsys):
        args = ["--snapshot", snapshot, "--as", "jane", "--as-group", "platform"]

        assert main(["apply", manifests] + args) == 0
        assert "Applied 7 changes" in capsys.readouterr().out

        assert main(["plan", manifests, "--json"] + args) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["plan"]["summary"] == {"create": 0, "update": 0, "unchanged": 7, "delete": 0}

    def test_plan_does_not_write_snapshot(self, manifests, snapshot):
        main(["plan", manifests, "--snapshot", snapshot, "--as", "jane", "--as-group", "platform"])
        with open(snapshot) as f:
            assert f.read() == SNAPSHOT_YAML

    def test_bad_selector(self, manifests, capsys):
        assert main(["plan", manifests, "--prune", "-l", "tier"]) == 2
        assert "Invalid label selector term" in capsys.readouterr().err


class TestCanI:
    """Tests for can-i."""

    def test_allowed(self, snapshot, capsys):
        code = main(["can-i", "create", "deployments.apps", "-n", "shop", "--as", "bob", "--as-group", "developers", "--rbac", snapshot])
        assert code == 0
        assert capsys.readouterr().out.strip() == "yes"

    def test_denied_with_hint(self, snapshot, capsys):
        code = main(["can-i", "create", "namespaces", "--as", "bob", "--as-group", "developers", "--snapshot", snapshot])
        out = capsys.readouterr().out

        assert code == 1
        assert out.startswith("no\n")
        assert 'cannot create resource "namespaces"' in out
        assert "hint: Grant a ClusterRole rule" in out

    def test_subresource_and_non_resource_url(self, snapshot, capsys):
        assert main(["can-i", "update", "deployments.apps/scale", "-n", "shop", "--as", "bob", "--rbac", snapshot]) == 1
        assert main(["can-i", "get", "/healthz", "--as", "root", "--as-group", "system:masters"]) == 0

    def test_requires_user(self, capsys):
        assert main(["can-i", "get", "pods"]) == 2


class TestDemo:
    """Tests for the demo command."""

    def test_demo(self, tmp_path, capsys):
        assert main(["demo", "--out", str(tmp_path / "out")]) == 0
        out = capsys.readouterr().out
        assert "=== jane (platform) ===" in out
        assert "=== bob (developers) ===" in out
        assert (tmp_path / "out" / "rbac.yaml").exists()


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage: kubegate" in capsys.readouterr().out
