"""
Core domain-agnostic components for kubegate.

This package contains the schemas, configuration loading, check runner and
the admission pipeline that ties the Kubernetes pieces together.
"""

__all__ = []
