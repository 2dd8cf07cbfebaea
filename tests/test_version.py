"""Tests for version management.

Verifies that ``ledger_bridge.__version__`` is a sane version string and
that every place it is surfaced (the OpenAPI schema, ``/`` and ``/health``)
agrees with it.
"""

from __future__ import annotations

import re

import pytest

import ledger_bridge

# Matches major.minor.patch with an optional pre-release suffix.
_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(-[A-Za-z0-9]+(\.[A-Za-z0-9]+)*)?$")


@pytest.mark.unit
class TestVersionAttribute:
    """The ``ledger_bridge.__version__`` package attribute."""

    def test_version_is_a_non_empty_string(self) -> None:
        assert isinstance(ledger_bridge.__version__, str)
        assert ledger_bridge.__version__

    def test_version_matches_semver(self) -> None:
        assert _SEMVER_RE.match(ledger_bridge.__version__)


@pytest.mark.api
class TestVersionEndpoints:
    """Every HTTP surface reports the same version."""

    def test_openapi_schema_version(self, test_client) -> None:
        response = test_client.get("/openapi.json")

        assert response.status_code == 200
        assert response.json()["info"]["version"] == ledger_bridge.__version__

    def test_root_and_health_agree(self, test_client) -> None:
        root = test_client.get("/").json()
        health = test_client.get("/health").json()

        assert root["version"] == health["version"] == ledger_bridge.__version__
