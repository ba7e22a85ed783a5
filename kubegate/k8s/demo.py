"""Demo: admit the example shop bundle as two different users.

The platform admin is allowed every change; the developer may manage
workloads but not create the namespace, service account or RBAC objects,
so the same bundle comes back forbidden with hints on what to grant.
"""

import logging
from typing import Dict, Optional

from kubegate.core.pipeline import PipelineConfig, PipelineResult, run_pipeline
from kubegate.k8s.artifact import load_yaml_documents, to_plain
from kubegate.k8s.cluster import ClusterState
from kubegate.k8s.examples import SNAPSHOT_YAML, shop_bundle
from kubegate.k8s.rbac import UserInfo

logger = logging.getLogger(__name__)


def demo_cluster() -> ClusterState:
    cluster = ClusterState()
    (snapshot,) = load_yaml_documents(SNAPSHOT_YAML, source="snapshot")
    cluster.load_bodies(to_plain(snapshot)["items"])
    return cluster


def _print_result(title: str, result: PipelineResult) -> None:
    print(f"=== {title} ===")
    print(f"Status: {result.status}")
    if result.plan is not None:
        summary = result.plan.summary()
        print(
            f"Plan: {summary['create']} to create, {summary['update']} to update, "
            f"{summary['unchanged']} unchanged, {summary['delete']} to delete"
        )
    for violation in result.violations:
        print(f"  [{violation.severity}] {violation.id}: {violation.message}")
    for action, decision in result.denied:
        print(f"  DENIED {action.verb} {action.ref}")
        print(f"    {decision.reason}")
        if decision.hint:
            print(f"    hint: {decision.hint}")
    print()


def run_demo(output_dir: Optional[str] = None, profile: str = "restricted") -> Dict[str, PipelineResult]:
    """Run the demo and print a report.

    Args:
        output_dir: If given, the mutated bundle is written there
        profile: Check profile to use

    Returns:
        Mapping of user name to PipelineResult
    """
    bundle = shop_bundle()
    config = PipelineConfig(profile=profile)
    results: Dict[str, PipelineResult] = {}

    users = [
        UserInfo("jane", ("platform",)),
        UserInfo("bob", ("developers",)),
    ]
    for user in users:
        logger.info(f"Running demo pipeline as {user.name}")
        result = run_pipeline(bundle, demo_cluster(), user, config)
        _print_result(f"{user.name} ({', '.join(user.groups)})", result)
        results[user.name] = result

    admitted = results["jane"]
    if output_dir and admitted.bundle is not None:
        admitted.bundle.write_to_dir(output_dir)
        print(f"Wrote mutated manifests to: {output_dir}")

    return results
