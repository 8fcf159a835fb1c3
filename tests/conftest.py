"""
Pytest configuration and fixtures for Signer Gateway tests.
"""

import sys
import types
from itertools import count

import pytest
from fastapi.testclient import TestClient

from signer_gateway.configuration import load_settings
from signer_gateway.main import create_app

_module_ids = count()


@pytest.fixture
def plugin_module(monkeypatch):
    """
    Register an in-memory signer plugin and return its importable name.

    Usage: ``name = plugin_module(sign=..., Signer=..., default=...)``; every
    keyword becomes a module attribute.
    """

    def _install(**attributes):
        name = f"fake_signer_{next(_module_ids)}"
        module = types.ModuleType(name)
        for key, value in attributes.items():
            setattr(module, key, value)
        monkeypatch.setitem(sys.modules, name, module)
        return name

    return _install


@pytest.fixture
def missing_module_name():
    """A module name guaranteed not to be importable."""
    return "signer_gateway_tests_no_such_signer"


@pytest.fixture
def make_settings():
    """Build settings from the packaged defaults with nested overrides."""

    def _make(module="signer_gateway_tests_no_such_signer", points=60, duration=60, proxy=None):
        return load_settings(
            {
                "signer": {"module": module},
                "rate_limit": {"points": points, "duration": duration},
                "proxy": {"fallback_url": proxy},
            }
        )

    return _make


@pytest.fixture
def make_client(make_settings):
    """
    Create test clients for fresh app instances.

    Each app gets its own signer state and rate limiter, so tests never see
    each other's buckets. Clients are entered as context managers so the
    application lifespan (startup load, crash monitor) runs.
    """
    clients = []

    def _make(module=None, http_client=None, **settings_kwargs):
        if module is not None:
            settings_kwargs["module"] = module
        app = create_app(make_settings(**settings_kwargs), http_client=http_client)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in reversed(clients):
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """A client for an app with no installable signer and no proxy."""
    return make_client()
