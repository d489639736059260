"""Client-specific test fixtures: Kubernetes API error responses."""

from __future__ import annotations

import pytest
from kubernetes.client.exceptions import ApiException


@pytest.fixture
def api_not_found() -> ApiException:
    """A 404 from the Kubernetes API server."""
    return ApiException(status=404, reason="Not Found")


@pytest.fixture
def api_unavailable() -> ApiException:
    """A 503 from the Kubernetes API server."""
    return ApiException(status=503, reason="Service Unavailable")
