"""Kubernetes domain adapter for kubegate.

This module provides the Kubernetes-specific pieces of the admission pipeline:
- ManifestBundle: Kubernetes YAML manifests grouped by file
- Oracles: structure, schema, policy, security, resource and reference checks
- Mutations: patch operations applied before validation
- RBAC: role/binding model and request authorizer
- ClusterState and reconcile: dry-run planning against a cluster snapshot
"""
