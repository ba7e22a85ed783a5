"""Tests for check profiles."""

import pytest

from kubegate.k8s.cluster import ClusterState
from kubegate.k8s.oracle_config import PROFILES, build_oracles, get_oracle_config
from kubegate.k8s.oracles import (
    PolicyOracle,
    ProbeOracle,
    ReferenceOracle,
    ResourceOracle,
    SchemaOracle,
    SecurityOracle,
    StructureOracle,
)


def _types(oracles):
    return [type(o) for o in oracles]


class TestProfiles:
    """Tests for profile composition."""

    def test_profiles_are_cumulative(self):
        assert _types(build_oracles("minimal")) == [StructureOracle, SchemaOracle]
        assert _types(build_oracles("baseline")) == [
            StructureOracle, SchemaOracle, PolicyOracle, ResourceOracle, ReferenceOracle,
        ]
        assert _types(build_oracles("restricted")) == [
            StructureOracle, SchemaOracle, PolicyOracle, ResourceOracle, ReferenceOracle,
            SecurityOracle, ProbeOracle,
        ]
        assert set(PROFILES) == {"minimal", "baseline", "restricted"}

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown check profile: strict"):
            get_oracle_config("strict")

    def test_config_values_reach_oracles(self):
        config = {
            "pipeline": {"default_namespace": "shop"},
            "schema": {"kubernetes_version": "1.30", "strict": True},
            "policy": {"min_replicas": 3, "allowed_registries": ["ghcr.io/example"], "required_labels": ["team"]},
        }
        cluster = ClusterState()
        structure, schema, policy, _, references = build_oracles("baseline", config, cluster)

        assert structure.default_namespace == "shop"
        assert schema.kubernetes_version == "1.30"
        assert schema.strict is True
        assert policy.min_replicas == 3
        assert policy.allowed_registries == ["ghcr.io/example"]
        assert policy.required_labels == ["team"]
        assert references.cluster is cluster
        assert references.default_namespace == "shop"

    def test_env_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("KUBEGATE_POLICY_MIN_REPLICAS", "4")
        policy = build_oracles("baseline", {})[2]
        assert policy.min_replicas == 4
