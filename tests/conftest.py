"""Shared test fixtures for all test modules."""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest
import structlog

from aws_lb_backend.config import CLUSTER_MAP, ClusterConfig, load_cluster_map

CLUSTERS_YAML = """
clusters:
  dev-us-west-2:
    environment: dev
    region: us-west-2
    kubeconfig_context: dev-usw2
  prod-us-east-1:
    environment: prod
    region: us-east-1
    kubeconfig_context: prod-use1
    aws_profile: prod
"""


@pytest.fixture(autouse=True, scope="session")
def _cluster_map(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Load a two-cluster configuration once for the whole test session."""
    path = tmp_path_factory.mktemp("config") / "clusters.yaml"
    path.write_text(CLUSTERS_YAML)
    previous = os.environ.get("LB_BACKEND_CLUSTERS")
    os.environ["LB_BACKEND_CLUSTERS"] = str(path)
    load_cluster_map()
    yield
    if previous is None:
        os.environ.pop("LB_BACKEND_CLUSTERS", None)
    else:
        os.environ["LB_BACKEND_CLUSTERS"] = previous


@pytest.fixture
def cluster_config() -> ClusterConfig:
    return CLUSTER_MAP["prod-us-east-1"]


@pytest.fixture
def captured_logs() -> Iterator[list[dict[str, Any]]]:
    """Capture structlog events emitted during the test."""
    with structlog.testing.capture_logs() as logs:
        yield logs
