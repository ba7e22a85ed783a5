"""Shared pytest fixtures."""

import os

import kubernetes_validate
import pytest


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep tests independent of the caller's kubegate.json and KUBEGATE_* variables."""
    for name in list(os.environ):
        if name.startswith("KUBEGATE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("KUBEGATE_CONFIG", os.path.join(os.path.dirname(__file__), "no-such-config.json"))


@pytest.fixture(autouse=True)
def offline_schemas(request, monkeypatch):
    """Accept every object in SchemaOracle unless a test installs its own validator.

    Tests marked bundled_schemas validate against the library's real schemas.
    """
    if request.node.get_closest_marker("bundled_schemas"):
        return
    monkeypatch.setattr(kubernetes_validate, "validate", lambda data, version, strict=False: None)
