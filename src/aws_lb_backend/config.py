"""Cluster configuration, AWS API settings, and environment variable overrides."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from aws_lb_backend.aws.cache import CacheConfig, load_cache_config


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ClusterConfig:
    """Configuration for a single EKS cluster."""

    cluster_id: str
    environment: str
    region: str
    kubeconfig_context: str
    aws_profile: str | None = None


@dataclass(frozen=True)
class AwsConfig:
    """Base configuration for AWS sessions and clients."""

    region: str | None = None
    profile: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    session_token: str | None = None
    # Service name -> endpoint URL, e.g. {"elbv2": "http://localhost:4566"}
    endpoint_overrides: Mapping[str, str] = field(default_factory=dict)
    # Total attempts per call, the first one included
    max_attempts: int = 10
    retry_mode: str = "standard"
    require_credentials: bool = False


@dataclass(frozen=True)
class ApiSettings:
    """AWS API behaviour with environment variable overrides."""

    debug: bool = field(default_factory=lambda: _env_bool("AWS_API_DEBUG", "false"))
    max_attempts: int = field(default_factory=lambda: int(os.environ.get("AWS_API_MAX_ATTEMPTS", "10")))
    retry_mode: str = field(default_factory=lambda: os.environ.get("AWS_API_RETRY_MODE", "standard"))
    cache_enabled: bool = field(default_factory=lambda: _env_bool("AWS_API_CACHE_ENABLED", "true"))
    cache_ttl: float = field(default_factory=lambda: float(os.environ.get("AWS_API_CACHE_TTL", "300")))
    cache_config_path: str | None = field(default_factory=lambda: os.environ.get("AWS_API_CACHE_CONFIG") or None)


_REQUIRED_FIELDS = (
    "environment",
    "region",
    "kubeconfig_context",
)

_VALID_RETRY_MODES = {"legacy", "standard", "adaptive"}


def _load_cluster_map(path: Path) -> dict[str, ClusterConfig]:
    """Parse a YAML cluster configuration file and return a mapping of cluster ID to ClusterConfig.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A dict mapping cluster IDs to ClusterConfig objects.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the file content is malformed or missing required fields.
    """
    if not path.exists():
        msg = (
            f"Cluster configuration file not found: {path}. "
            "Create clusters.yaml or set LB_BACKEND_CLUSTERS to point to your config file."
        )
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(path.read_text())

    if not isinstance(raw, dict) or "clusters" not in raw:
        msg = f"Cluster config file {path} must contain a top-level 'clusters' key."
        raise ValueError(msg)

    clusters_raw: Any = raw["clusters"]
    if not isinstance(clusters_raw, dict) or len(clusters_raw) == 0:
        msg = f"Cluster config file {path} has an empty or invalid 'clusters' section."
        raise ValueError(msg)

    cluster_map: dict[str, ClusterConfig] = {}
    for cluster_id, entry in clusters_raw.items():
        if not isinstance(entry, dict):
            msg = f"Cluster '{cluster_id}' must be a mapping, got {type(entry).__name__}."
            raise ValueError(msg)

        missing = [f for f in _REQUIRED_FIELDS if f not in entry]
        if missing:
            msg = f"Cluster '{cluster_id}' is missing required fields: {', '.join(missing)}."
            raise ValueError(msg)

        profile = entry.get("aws_profile")
        cluster_map[cluster_id] = ClusterConfig(
            cluster_id=cluster_id,
            environment=str(entry["environment"]),
            region=str(entry["region"]),
            kubeconfig_context=str(entry["kubeconfig_context"]),
            aws_profile=str(profile) if profile else None,
        )

    return cluster_map


CLUSTER_MAP: dict[str, ClusterConfig] = {}
ALL_CLUSTER_IDS: list[str] = []


def load_cluster_map() -> dict[str, ClusterConfig]:
    """Load cluster configuration from YAML and populate module-level globals.

    Reads the file path from the ``LB_BACKEND_CLUSTERS`` environment variable,
    defaulting to ``clusters.yaml`` in the current working directory.

    Raises:
        RuntimeError: If a loaded cluster fails ``validate_cluster_config``.
    """
    path = Path(os.environ.get("LB_BACKEND_CLUSTERS", "clusters.yaml"))
    loaded = _load_cluster_map(path)
    CLUSTER_MAP.clear()
    CLUSTER_MAP.update(loaded)
    ALL_CLUSTER_IDS.clear()
    ALL_CLUSTER_IDS.extend(loaded.keys())
    validate_cluster_config()
    return CLUSTER_MAP


def resolve_cluster(cluster_id: str) -> ClusterConfig:
    """Resolve a cluster ID to its full configuration.

    Raises:
        ValueError: If the cluster_id is not found in CLUSTER_MAP.
    """
    if cluster_id not in CLUSTER_MAP:
        valid = ", ".join(sorted(CLUSTER_MAP.keys()))
        msg = f"Unknown cluster '{cluster_id}'. Valid clusters: {valid}"
        raise ValueError(msg)
    return CLUSTER_MAP[cluster_id]


_REGION_RE = re.compile(r"^[a-z]{2}(-gov|-iso[a-z]?)?-[a-z]+-\d+$")


def validate_cluster_config() -> None:
    """Validate all cluster configurations at startup.

    Raises RuntimeError if malformed regions or empty required fields are detected.
    """
    errors: list[str] = []
    for cluster_id, config in CLUSTER_MAP.items():
        if not _REGION_RE.match(config.region):
            errors.append(f"{cluster_id}: region {config.region!r} is not a valid AWS region")
        if not config.kubeconfig_context:
            errors.append(f"{cluster_id}: kubeconfig_context is empty")
        if not config.environment:
            errors.append(f"{cluster_id}: environment is empty")

    if errors:
        detail = "; ".join(errors)
        msg = f"Cluster configuration errors: {detail}. Fix before running in production."
        raise RuntimeError(msg)


def get_api_settings() -> ApiSettings:
    """Return AWS API settings with environment variable overrides applied.

    Raises:
        ValueError: If the retry mode is unknown or max attempts is not positive.
    """
    settings = ApiSettings()
    if settings.retry_mode not in _VALID_RETRY_MODES:
        valid = ", ".join(sorted(_VALID_RETRY_MODES))
        msg = f"Invalid AWS_API_RETRY_MODE: {settings.retry_mode!r}. Must be one of: {valid}"
        raise ValueError(msg)
    if settings.max_attempts < 1:
        msg = f"Invalid AWS_API_MAX_ATTEMPTS: {settings.max_attempts}. Must be at least 1."
        raise ValueError(msg)
    return settings


def aws_config_for(cluster: ClusterConfig, settings: ApiSettings | None = None) -> AwsConfig:
    """Build the AWS base configuration for a cluster."""
    settings = settings or get_api_settings()
    return AwsConfig(
        region=cluster.region,
        profile=cluster.aws_profile,
        max_attempts=settings.max_attempts,
        retry_mode=settings.retry_mode,
    )


def cache_config_for(settings: ApiSettings | None = None) -> CacheConfig:
    """Build the AWS response cache policy.

    A YAML policy named by ``AWS_API_CACHE_CONFIG`` takes precedence over the
    ``AWS_API_CACHE_ENABLED`` and ``AWS_API_CACHE_TTL`` switches.
    """
    settings = settings or get_api_settings()
    if settings.cache_config_path:
        return load_cache_config(Path(settings.cache_config_path))
    return CacheConfig(enabled=settings.cache_enabled, default_ttl=settings.cache_ttl)
