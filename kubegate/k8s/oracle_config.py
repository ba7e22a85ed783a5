"""Check profiles.

This module is the single source of truth for which oracles run in each
profile. Profiles are cumulative:

- minimal: structure and upstream schema
- baseline: minimal + organisation policy, resources and cross-references
- restricted: baseline + security context and health probes
"""

from typing import Any, Callable, Dict, List, Optional

from kubegate.core.config import get_config_value
from kubegate.k8s.constants import DEFAULT_KUBERNETES_VERSION, DEFAULT_NAMESPACE
from kubegate.k8s.oracles import (
    PolicyOracle,
    ProbeOracle,
    ReferenceOracle,
    ResourceOracle,
    SchemaOracle,
    SecurityOracle,
    StructureOracle,
)

OracleFactory = Callable[[Dict[str, Any], Optional[Any]], Any]


def _structure(config: Dict[str, Any], cluster: Optional[Any]) -> StructureOracle:
    return StructureOracle(
        default_namespace=get_config_value(["pipeline", "default_namespace"], DEFAULT_NAMESPACE, config)
    )


def _schema(config: Dict[str, Any], cluster: Optional[Any]) -> SchemaOracle:
    return SchemaOracle(
        kubernetes_version=str(get_config_value(["schema", "kubernetes_version"], DEFAULT_KUBERNETES_VERSION, config)),
        strict=bool(get_config_value(["schema", "strict"], False, config)),
    )


def _policy(config: Dict[str, Any], cluster: Optional[Any]) -> PolicyOracle:
    return PolicyOracle(
        required_labels=get_config_value(["policy", "required_labels"], ["app.kubernetes.io/name"], config),
        env_label=get_config_value(["policy", "env_label"], "env", config),
        production_envs=get_config_value(["policy", "production_envs"], ["production", "prod"], config),
        min_replicas=int(get_config_value(["policy", "min_replicas"], 2, config)),
        allowed_registries=get_config_value(["policy", "allowed_registries"], [], config),
    )


def _resources(config: Dict[str, Any], cluster: Optional[Any]) -> ResourceOracle:
    return ResourceOracle()


def _references(config: Dict[str, Any], cluster: Optional[Any]) -> ReferenceOracle:
    return ReferenceOracle(
        cluster=cluster,
        default_namespace=get_config_value(["pipeline", "default_namespace"], DEFAULT_NAMESPACE, config),
    )


def _security(config: Dict[str, Any], cluster: Optional[Any]) -> SecurityOracle:
    return SecurityOracle()


def _probes(config: Dict[str, Any], cluster: Optional[Any]) -> ProbeOracle:
    return ProbeOracle()


class OracleConfig:
    """Configuration for an oracle set.

    Holds factories rather than instances because oracles depend on the
    loaded configuration and, for reference checks, on the cluster snapshot.
    """

    def __init__(self, name: str, factories: List[OracleFactory], description: str = ""):
        """Initialize oracle configuration.

        Args:
            name: Profile name (e.g., "baseline")
            factories: Callables building each oracle from (config, cluster)
            description: Description of this profile
        """
        self.name = name
        self.factories = factories
        self.description = description

    def get_oracles(self, config: Optional[Dict[str, Any]] = None, cluster: Optional[Any] = None) -> List[Any]:
        """Instantiate the oracles of this profile.

        Args:
            config: Loaded configuration dict (empty dict means defaults)
            cluster: Optional ClusterState for reference resolution

        Returns:
            List of oracle instances
        """
        config = config if config is not None else {}
        return [factory(config, cluster) for factory in self.factories]


MINIMAL_CONFIG = OracleConfig(
    name="minimal",
    factories=[_structure, _schema],
    description="Structure and upstream schema validation",
)

BASELINE_CONFIG = OracleConfig(
    name="baseline",
    factories=MINIMAL_CONFIG.factories + [_policy, _resources, _references],
    description="Minimal checks plus policy, resource and cross-reference checks",
)

RESTRICTED_CONFIG = OracleConfig(
    name="restricted",
    factories=BASELINE_CONFIG.factories + [_security, _probes],
    description="Baseline checks plus security context and probe checks",
)

PROFILES = {
    "minimal": MINIMAL_CONFIG,
    "baseline": BASELINE_CONFIG,
    "restricted": RESTRICTED_CONFIG,
}


def get_oracle_config(profile: str) -> OracleConfig:
    """Get oracle configuration by profile name.

    Raises:
        ValueError: If profile is not recognized
    """
    if profile not in PROFILES:
        raise ValueError(
            f"Unknown check profile: {profile}. "
            f"Available: {', '.join(PROFILES.keys())}"
        )
    return PROFILES[profile]


def build_oracles(
    profile: str,
    config: Optional[Dict[str, Any]] = None,
    cluster: Optional[Any] = None,
) -> List[Any]:
    """Convenience function combining get_oracle_config() and get_oracles()."""
    return get_oracle_config(profile).get_oracles(config=config, cluster=cluster)
