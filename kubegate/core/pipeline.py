"""Admission pipeline.

This module provides the main entry point for kubegate's workflow:

1. load the bundle
2. mutate it with the default patch
3. validate it with the configured check profile
4. plan it against the cluster snapshot
5. authorize every planned change with RBAC (including escalation checks)
6. reconcile into the snapshot when admitted and not a dry run
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from kubegate.core.config import get_config_value
from kubegate.core.errors import ManifestLoadError, PatchApplyError
from kubegate.core.schema.violation import Violation, blocking
from kubegate.core.verifier import verify
from kubegate.k8s.artifact import ManifestBundle
from kubegate.k8s.cluster import ClusterState
from kubegate.k8s.constants import DEFAULT_NAMESPACE
from kubegate.k8s.mutations import apply_patch, default_mutations
from kubegate.k8s.oracle_config import build_oracles
from kubegate.k8s.rbac import AuthorizationResult, RBACAuthorizer, RBACPolicy, UserInfo
from kubegate.k8s.reconcile import Action, Plan, authorize_plan, plan, reconcile

logger = logging.getLogger(__name__)

STATUS_ADMITTED = "admitted"
STATUS_APPLIED = "applied"
STATUS_REJECTED = "rejected"
STATUS_FORBIDDEN = "forbidden"
STATUS_INVALID = "invalid"

EXIT_CODES = {
    STATUS_ADMITTED: 0,
    STATUS_APPLIED: 0,
    STATUS_REJECTED: 1,
    STATUS_FORBIDDEN: 1,
    STATUS_INVALID: 2,
}


@dataclass
class PipelineConfig:
    """Pipeline knobs.

    Attributes:
        profile: Check profile ("minimal" | "baseline" | "restricted")
        default_namespace: Namespace for namespaced objects without one
        mutate: Apply the default mutation patch before validation
        prune: Plan deletes for managed objects missing from the bundle
        selector: Restrict pruning to objects with these labels
        dry_run: Never write to the cluster snapshot
    """

    profile: str = "baseline"
    default_namespace: str = DEFAULT_NAMESPACE
    mutate: bool = True
    prune: bool = False
    selector: Optional[Dict[str, str]] = None
    dry_run: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Dict[str, Any]] = None, **overrides: Any) -> "PipelineConfig":
        """Build from the "pipeline" config section; non-None overrides win."""
        settings = settings if settings is not None else {}
        config = cls(
            profile=get_config_value(["pipeline", "profile"], "baseline", settings),
            default_namespace=get_config_value(["pipeline", "default_namespace"], DEFAULT_NAMESPACE, settings),
            mutate=bool(get_config_value(["pipeline", "mutate"], True, settings)),
            prune=bool(get_config_value(["pipeline", "prune"], False, settings)),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    Attributes:
        status: "admitted" | "applied" | "rejected" | "forbidden" | "invalid"
        violations: All violations (checks and planning)
        plan: Planned actions (None when the bundle could not be loaded)
        decisions: RBAC decision for every planned change
        bundle: Bundle after mutation
        applied: Actions written to the snapshot
    """

    status: str
    violations: List[Violation] = field(default_factory=list)
    plan: Optional[Plan] = None
    decisions: List[Tuple[Action, AuthorizationResult]] = field(default_factory=list)
    bundle: Optional[ManifestBundle] = None
    applied: List[Action] = field(default_factory=list)

    @property
    def admitted(self) -> bool:
        return self.status in (STATUS_ADMITTED, STATUS_APPLIED)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]

    @property
    def denied(self) -> List[Tuple[Action, AuthorizationResult]]:
        return [(a, d) for a, d in self.decisions if not d.allowed]

    @property
    def blocking_violations(self) -> List[Violation]:
        return blocking(self.violations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "violations": [v.to_dict() for v in self.violations],
            "plan": self.plan.to_dict() if self.plan is not None else None,
            "authorization": [
                dict(decision.to_dict(), object=str(action.ref), verb=action.verb)
                for action, decision in self.decisions
            ],
            "applied": [str(a.ref) for a in self.applied],
        }


def build_authorizer(cluster: ClusterState, default_namespace: str = DEFAULT_NAMESPACE) -> RBACAuthorizer:
    """Authorizer over the RBAC objects currently live in the cluster.

    Roles in the bundle are not in effect until applied, so only the
    snapshot's roles and bindings govern what the requester may do.
    """
    policy = RBACPolicy.from_bodies(cluster.bodies(), default_namespace)
    return RBACAuthorizer(policy)


def run_pipeline(
    bundle: ManifestBundle,
    cluster: Optional[ClusterState] = None,
    user: Optional[UserInfo] = None,
    config: Optional[PipelineConfig] = None,
    settings: Optional[Dict[str, Any]] = None,
    authorizer: Optional[RBACAuthorizer] = None,
) -> PipelineResult:
    """Run the admission pipeline on a bundle.

    Args:
        bundle: Manifests to admit
        cluster: Live cluster snapshot (empty cluster when None)
        user: Requesting identity; None skips authorization
        config: Pipeline knobs (defaults from settings when None)
        settings: Loaded configuration dict for the check profile
        authorizer: RBAC authorizer (built from the snapshot when None)

    Returns:
        PipelineResult; nothing is written to the cluster unless the status is "applied"

    Example:
        >>> bundle = ManifestBundle.from_path("k8s/")
        >>> result = run_pipeline(bundle, ClusterState(), UserInfo("jane", ("devs",)))
        >>> result.status
        'admitted'
    """
    settings = settings if settings is not None else {}
    config = config or PipelineConfig.from_settings(settings)
    cluster = cluster if cluster is not None else ClusterState(default_namespace=config.default_namespace)

    logger.info(f"Admitting {len(bundle.files)} files with profile '{config.profile}'")

    # Step 1: load
    try:
        objects = bundle.objects()
    except ManifestLoadError as e:
        logger.warning(f"Bundle rejected: {e}")
        return PipelineResult(
            status=STATUS_INVALID,
            violations=[Violation(id="structure.INVALID_YAML", message=str(e), path=[e.source or "?"])],
            bundle=bundle,
        )
    logger.info(f"Loaded {len(objects)} objects")

    # Step 2: mutate
    mutated = bundle
    if config.mutate:
        try:
            mutated = apply_patch(bundle, default_mutations(settings))
        except PatchApplyError as e:
            logger.warning(f"Mutation failed: {e}")
            return PipelineResult(
                status=STATUS_INVALID,
                violations=[Violation(
                    id="mutation.PATCH_FAILED",
                    message=str(e),
                    path=["mutation", getattr(e.patch_op, "op", "?")],
                )],
                bundle=bundle,
            )

    # Step 3: validate
    oracles = build_oracles(config.profile, settings, cluster)
    violations = verify(mutated, oracles)
    logger.info(f"Checks found {len(violations)} violations ({len(blocking(violations))} blocking)")

    # Step 4: plan
    planned = plan(
        mutated.objects(),
        cluster,
        prune=config.prune,
        selector=config.selector,
        default_namespace=config.default_namespace,
    )
    violations.extend(planned.violations)

    result = PipelineResult(status=STATUS_ADMITTED, violations=violations, plan=planned, bundle=mutated)

    # Step 5: authorize
    if user is not None:
        authorizer = authorizer or build_authorizer(cluster, config.default_namespace)
        result.decisions = authorize_plan(planned, authorizer, user, config.default_namespace)
    else:
        logger.info("No requesting user given, skipping authorization")

    if result.blocking_violations:
        result.status = STATUS_REJECTED
        logger.warning(f"Bundle rejected with {len(result.blocking_violations)} blocking violations")
        return result
    if result.denied:
        result.status = STATUS_FORBIDDEN
        logger.warning(f"Bundle forbidden: {len(result.denied)} of {len(planned.changes)} changes denied")
        return result

    # Step 6: reconcile
    if not config.dry_run:
        outcome = reconcile(
            planned,
            cluster,
            authorizer if user is not None else None,
            user,
            dry_run=False,
            default_namespace=config.default_namespace,
        )
        result.applied = outcome.applied
        result.status = STATUS_APPLIED

    return result
