"""
kubegate: policy-driven admission for Kubernetes manifests

Validates manifest bundles against structural, schema, policy, security and
cross-reference checks, plans them against a cluster snapshot, and authorizes
every planned change with an RBAC evaluator before anything is applied.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
