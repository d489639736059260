"""AWS API metrics collector backed by prometheus-client."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from prometheus_client import REGISTRY, CollectorRegistry, Counter

API_LABELS = ["service", "operation"]


class Collector(Protocol):
    """The counters the instrumented AWS session reports to."""

    def inc_api_request_count(self, labels: Mapping[str, str]) -> None: ...

    def inc_api_retry_count(self, labels: Mapping[str, str]) -> None: ...

    def inc_api_error_count(self, labels: Mapping[str, str]) -> None: ...


class PrometheusCollector:
    """Collector exporting ``aws_api_{requests,retries,errors}_total`` counters.

    Counters are registered in ``registry`` (the process default when omitted);
    pass a fresh ``CollectorRegistry`` to keep instances independent.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else REGISTRY
        self._requests = Counter(
            "aws_api_requests_total",
            "Number of AWS API requests sent",
            API_LABELS,
            registry=self.registry,
        )
        self._retries = Counter(
            "aws_api_retries_total",
            "Number of AWS API request attempts that failed and entered the retry chain",
            API_LABELS,
            registry=self.registry,
        )
        self._errors = Counter(
            "aws_api_errors_total",
            "Number of AWS API calls and session constructions that ended in error",
            API_LABELS,
            registry=self.registry,
        )

    def inc_api_request_count(self, labels: Mapping[str, str]) -> None:
        self._requests.labels(**_api_labels(labels)).inc()

    def inc_api_retry_count(self, labels: Mapping[str, str]) -> None:
        self._retries.labels(**_api_labels(labels)).inc()

    def inc_api_error_count(self, labels: Mapping[str, str]) -> None:
        self._errors.labels(**_api_labels(labels)).inc()


def _api_labels(labels: Mapping[str, str]) -> dict[str, str]:
    return {name: str(labels.get(name, "unknown")) for name in API_LABELS}
