"""kubegate CLI - Command-line interface for manifest admission.

This module provides the main CLI entrypoint, allowing users to check,
plan and apply manifest bundles and to query RBAC from the command line.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from kubegate import __version__
from kubegate.core.config import get_config_value, load_config
from kubegate.core.errors import KubegateError
from kubegate.core.pipeline import PipelineConfig, PipelineResult, run_pipeline
from kubegate.core.schema.violation import blocking
from kubegate.core.verifier import verify
from kubegate.k8s.artifact import ManifestBundle
from kubegate.k8s.cluster import ClusterState
from kubegate.k8s.oracle_config import PROFILES, build_oracles
from kubegate.k8s.rbac import AccessRequest, RBACAuthorizer, RBACPolicy, UserInfo
from kubegate.k8s.reconcile import parse_selector

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entrypoint for kubegate."""
    parser = argparse.ArgumentParser(
        prog="kubegate",
        description="kubegate - policy-driven admission for Kubernetes manifests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a directory of manifests
  kubegate check k8s/ --profile restricted

  # Dry-run plan against a cluster snapshot as a developer
  kubegate plan k8s/ --snapshot cluster.yaml --as jane --as-group developers

  # Apply into the snapshot, pruning managed objects no longer in the bundle
  kubegate apply k8s/ --snapshot cluster.yaml --as admin --as-group system:masters --prune

  # Ask the RBAC evaluator
  kubegate can-i create deployments -n shop --as jane --as-group developers --rbac cluster.yaml

Note:
  Defaults are read from kubegate.json (or $KUBEGATE_CONFIG). CLI flags override it.
"""
    )
    parser.add_argument("--version", action="version", version=f"kubegate {__version__}")
    parser.add_argument("--config", help="Path to config file (default: kubegate.json)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Check command
    check_parser = subparsers.add_parser("check", help="Validate manifests without planning")
    check_parser.add_argument("path", help="Manifest file or directory")
    _add_common(check_parser)

    # Plan and apply commands
    plan_parser = subparsers.add_parser("plan", help="Run the admission pipeline as a dry run")
    apply_parser = subparsers.add_parser("apply", help="Run the pipeline and write the snapshot")
    for sub in (plan_parser, apply_parser):
        sub.add_argument("path", help="Manifest file or directory")
        sub.add_argument(
            "--snapshot",
            help="Cluster snapshot file (default: from config or empty cluster)"
        )
        sub.add_argument("--prune", action="store_true", default=None, help="Delete managed objects missing from the bundle")
        sub.add_argument("-l", "--selector", help="Restrict pruning to labels k=v[,k=v]")
        sub.add_argument("--no-mutate", action="store_true", help="Skip the default mutations")
        sub.add_argument(
            "-n", "--namespace",
            help="Default namespace for objects without one (default: from config or 'default')"
        )
        _add_identity(sub)
        _add_common(sub)

    # can-i command
    cani_parser = subparsers.add_parser("can-i", help="Check whether a user may perform an action")
    cani_parser.add_argument("verb", help="API verb, e.g. create")
    cani_parser.add_argument("resource", help="Resource, e.g. deployments, deployments.apps, deployments/scale")
    cani_parser.add_argument("name", nargs="?", help="Object name")
    cani_parser.add_argument("-n", "--namespace", help="Namespace (omit for cluster scope)")
    cani_parser.add_argument(
        "--rbac",
        action="append",
        default=[],
        help="File or directory with RBAC objects (repeatable)"
    )
    cani_parser.add_argument("--snapshot", help="Cluster snapshot whose RBAC objects also apply")
    _add_identity(cani_parser)
    cani_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo with example manifests")
    demo_parser.add_argument("--out", help="Output directory for the mutated manifests")
    demo_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    # Setup logging
    if getattr(args, "verbose", False):
        logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(levelname)s: %(message)s')

    settings = load_config(args.config)

    # Handle commands
    handlers = {
        "check": cmd_check,
        "plan": cmd_plan,
        "apply": cmd_apply,
        "can-i": cmd_can_i,
        "demo": cmd_demo,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_FAILED
    try:
        return handler(args, settings)
    except (KubegateError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        logger.exception(f"{args.command} failed")
        return EXIT_ERROR


def _add_common(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        help="Check profile (default: from config or 'baseline')"
    )
    sub.add_argument("--json", action="store_true", help="Print a JSON report")
    sub.add_argument("-v", "--verbose", action="store_true", help="Verbose output")


def _add_identity(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--as", dest="as_user", help="Requesting user (default: rbac.default_user from config)")
    sub.add_argument(
        "--as-group",
        dest="as_groups",
        action="append",
        default=None,
        help="Group of the requesting user (repeatable)"
    )


def _user_from_args(args, settings) -> Optional[UserInfo]:
    name = args.as_user or get_config_value(["rbac", "default_user"], None, settings)
    if not name:
        return None
    groups = args.as_groups
    if groups is None:
        groups = get_config_value(["rbac", "default_groups"], [], settings)
    return UserInfo.parse(name, groups)


def cmd_check(args, settings) -> int:
    """Handle check command."""
    bundle = ManifestBundle.from_path(args.path)
    # unparsable YAML is invalid input, not a failed check
    bundle.objects()
    profile = args.profile or get_config_value(["pipeline", "profile"], "baseline", settings)
    violations = verify(bundle, build_oracles(profile, settings))
    failed = blocking(violations)

    if args.json:
        print(json.dumps({
            "status": "rejected" if failed else "passed",
            "violations": [v.to_dict() for v in violations],
        }, indent=2, default=str))
    else:
        print(f"Checked {len(bundle.files)} files with profile '{profile}'")
        _print_violations(violations)
        if failed:
            print(f"\n❌ {len(failed)} blocking violations")
        else:
            print("\n✓ All checks passed")
    return EXIT_FAILED if failed else EXIT_OK


def _run(args, settings, dry_run: bool) -> int:
    bundle = ManifestBundle.from_path(args.path)
    config = PipelineConfig.from_settings(
        settings,
        profile=args.profile,
        default_namespace=args.namespace,
        prune=args.prune,
        selector=parse_selector(args.selector) or None,
        mutate=False if args.no_mutate else None,
        dry_run=dry_run,
    )
    snapshot_path = args.snapshot or get_config_value(["pipeline", "snapshot"], None, settings)
    if snapshot_path:
        cluster = ClusterState.from_file(snapshot_path, default_namespace=config.default_namespace)
    else:
        cluster = ClusterState(default_namespace=config.default_namespace)
    user = _user_from_args(args, settings)

    result = run_pipeline(bundle, cluster, user, config, settings)

    if result.status == "applied" and snapshot_path:
        cluster.save(snapshot_path)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _print_result(result, user)
    return result.exit_code


def cmd_plan(args, settings) -> int:
    """Handle plan command."""
    return _run(args, settings, dry_run=True)


def cmd_apply(args, settings) -> int:
    """Handle apply command."""
    return _run(args, settings, dry_run=False)


def _parse_resource(text: str):
    """Split "deployments.apps/scale" into (resource, group, subresource)."""
    resource, _, subresource = text.partition("/")
    resource, _, group = resource.partition(".")
    return resource, group, subresource or None


def cmd_can_i(args, settings) -> int:
    """Handle can-i command."""
    user = _user_from_args(args, settings)
    if user is None:
        print("Error: --as is required (or set rbac.default_user)", file=sys.stderr)
        return EXIT_ERROR

    bodies = []
    for path in args.rbac:
        bodies.extend(obj.body for obj in ManifestBundle.from_path(path).objects())
    if args.snapshot:
        bodies.extend(ClusterState.from_file(args.snapshot).bodies())
    authorizer = RBACAuthorizer(RBACPolicy.from_bodies(bodies))

    if args.resource.startswith("/"):
        request = AccessRequest(verb=args.verb, non_resource_url=args.resource)
    else:
        resource, group, subresource = _parse_resource(args.resource)
        request = AccessRequest(
            verb=args.verb,
            resource=resource,
            api_group=group,
            namespace=args.namespace,
            name=args.name,
            subresource=subresource,
        )
    result = authorizer.authorize(user, request)
    if result.allowed:
        print("yes")
        logger.info(result.reason)
        return EXIT_OK
    print("no")
    print(f"  {result.reason}")
    if result.hint:
        print(f"  hint: {result.hint}")
    return EXIT_FAILED


def cmd_demo(args, settings) -> int:
    """Handle demo command."""
    print("Running kubegate demo with example manifests...")
    print()

    from kubegate.k8s.demo import run_demo

    results = run_demo(output_dir=args.out)
    return EXIT_OK if results["jane"].admitted and results["bob"].status == "forbidden" else EXIT_FAILED


def _print_violations(violations) -> None:
    for v in violations:
        location = "/".join(v.path)
        print(f"  [{v.severity}] {v.id}: {v.message} ({location})")


def _print_result(result: PipelineResult, user: Optional[UserInfo]) -> None:
    print(f"Status: {result.status}")
    if result.plan is not None:
        for action in result.plan.actions:
            marker = {"create": "+", "update": "~", "unchanged": "=", "delete": "-"}[action.verb]
            print(f"  {marker} {action.verb:<9} {action.ref}")
            for path, old, new in action.diff:
                print(f"      {path}: {old!r} -> {new!r}")
    if result.violations:
        print("\nViolations:")
        _print_violations(result.violations)
    if user is None:
        print("\nAuthorization: skipped (no --as user)")
    elif result.denied:
        print(f"\nDenied for {user.name}:")
        for action, decision in result.denied:
            print(f"  {action.verb} {action.ref}: {decision.reason}")
            if decision.hint:
                print(f"    hint: {decision.hint}")
    if result.status == "applied":
        print(f"\n✅ Applied {len(result.applied)} changes")
    elif result.admitted:
        print("\n✓ Admitted (dry run)")
    else:
        print(f"\n❌ {result.status.capitalize()}")


if __name__ == "__main__":
    sys.exit(main())
