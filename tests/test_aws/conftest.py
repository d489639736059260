"""AWS test fixtures: an isolated AWS environment and a private metrics registry."""

from __future__ import annotations

from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from aws_lb_backend.config import AwsConfig
from aws_lb_backend.metrics import PrometheusCollector

AWS_CREDENTIAL_ENV_VARS = (
    "AWS_PROFILE",
    "AWS_DEFAULT_PROFILE",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
)


@pytest.fixture(autouse=True)
def _isolated_aws_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's profiles, credentials and instance metadata out of the tests."""
    for name in AWS_CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    config_file = tmp_path / "aws_config"
    config_file.write_text("")
    monkeypatch.setenv("AWS_CONFIG_FILE", str(config_file))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "aws_credentials"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def collector(registry: CollectorRegistry) -> PrometheusCollector:
    return PrometheusCollector(registry)


@pytest.fixture
def aws_config() -> AwsConfig:
    return AwsConfig(region="us-east-1", access_key_id="AKIDEXAMPLE", secret_access_key="not-a-secret", max_attempts=1)
