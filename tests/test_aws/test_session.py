"""Tests for instrumented AWS sessions: construction failures, caching, counting and logging."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.awsrequest import AWSResponse
from botocore.exceptions import ClientError, EndpointConnectionError, ProfileNotFound
from prometheus_client import CollectorRegistry

from aws_lb_backend.aws.cache import CacheConfig
from aws_lb_backend.aws.session import (
    SESSION_CONSTRUCTION_LABELS,
    _SessionHooks,
    new_client,
    new_cluster_session,
    new_session,
)
from aws_lb_backend.config import ApiSettings, AwsConfig
from aws_lb_backend.metrics import PrometheusCollector

ELBV2_URL = "https://elasticloadbalancing.us-east-1.amazonaws.com/"
DESCRIBE_LBS = {"service": "elbv2", "operation": "DescribeLoadBalancers"}
SERVICE_UNAVAILABLE_BODY = (
    b'<ErrorResponse xmlns="https://elasticloadbalancing.amazonaws.com/doc/2015-12-01/">'
    b"<Error><Type>Receiver</Type><Code>ServiceUnavailable</Code><Message>try again later</Message></Error>"
    b"<RequestId>0c6d5a3e-0000-4000-8000-000000000000</RequestId>"
    b"</ErrorResponse>"
)


class _RawBody:
    """Stands in for the urllib3 response that AWSResponse reads its body from."""

    def __init__(self, body: bytes) -> None:
        self._body = body

    def stream(self, **kwargs: Any) -> Iterator[bytes]:
        yield self._body


def _ok(parsed: dict[str, Any]) -> tuple[AWSResponse, dict[str, Any]]:
    return AWSResponse(ELBV2_URL, 200, {}, None), parsed


def _error(code: str, status: int = 400) -> tuple[AWSResponse, dict[str, Any]]:
    parsed = {"Error": {"Code": code, "Message": "request failed"}, "ResponseMetadata": {"HTTPStatusCode": status}}
    return AWSResponse(ELBV2_URL, status, {}, None), parsed


def _respond_with(client: Any, *responses: tuple[AWSResponse, dict[str, Any]]) -> list[str]:
    """Answer calls on ``client`` in order without a network round trip.

    Returns the names of the operations that reached the responder, i.e. were
    not served from the cache.
    """
    queue = list(responses)
    answered: list[str] = []

    def _respond(model: Any, **kwargs: Any) -> tuple[AWSResponse, dict[str, Any]]:
        answered.append(model.name)
        return queue.pop(0)

    client.meta.events.register("before-call.*.*", _respond)
    return answered


def _count(registry: CollectorRegistry, metric: str, labels: dict[str, str]) -> float | None:
    return registry.get_sample_value(metric, labels)


@pytest.fixture
def elbv2(aws_config: AwsConfig, collector: PrometheusCollector) -> Any:
    session = new_session(aws_config, False, collector, CacheConfig())
    assert session is not None
    return new_client(session, "elbv2", aws_config)


class TestNewSession:
    def test_failed_construction_counts_one_error(
        self,
        collector: PrometheusCollector,
        registry: CollectorRegistry,
        captured_logs: list[dict[str, Any]],
    ) -> None:
        config = AwsConfig(region="us-east-1", profile="missing")
        with patch("aws_lb_backend.aws.session.boto3.Session", side_effect=ProfileNotFound(profile="missing")):
            session = new_session(config, False, collector, CacheConfig())

        assert session is None
        assert _count(registry, "aws_api_errors_total", SESSION_CONSTRUCTION_LABELS) == 1.0
        failures = [e for e in captured_logs if e["event"] == "aws_session_create_failed"]
        assert len(failures) == 1
        assert failures[0]["profile"] == "missing"

    def test_missing_required_credentials(self, collector: PrometheusCollector, registry: CollectorRegistry) -> None:
        config = AwsConfig(region="us-east-1", require_credentials=True)
        with patch.object(boto3.Session, "get_credentials", return_value=None):
            session = new_session(config, False, collector, CacheConfig())

        assert session is None
        assert _count(registry, "aws_api_errors_total", SESSION_CONSTRUCTION_LABELS) == 1.0

    def test_static_credentials_and_region(self, aws_config: AwsConfig, collector: PrometheusCollector) -> None:
        session = new_session(aws_config, False, collector, CacheConfig())

        assert session is not None
        assert session.region_name == "us-east-1"
        assert session.get_credentials().access_key == "AKIDEXAMPLE"


class TestNewClient:
    def test_endpoint_override_and_retry_mode(self, collector: PrometheusCollector) -> None:
        config = AwsConfig(
            region="us-west-2",
            access_key_id="AKIDEXAMPLE",
            secret_access_key="not-a-secret",
            endpoint_overrides={"elbv2": "http://localhost:4566"},
            retry_mode="adaptive",
        )
        session = new_session(config, False, collector, CacheConfig())
        assert session is not None

        client = new_client(session, "elbv2", config)
        ec2 = new_client(session, "ec2", config)

        assert client.meta.endpoint_url == "http://localhost:4566"
        assert client.meta.config.retries["mode"] == "adaptive"
        assert client.meta.config.retries["total_max_attempts"] == 10
        assert ec2.meta.endpoint_url == "https://ec2.us-west-2.amazonaws.com"


class TestNewClusterSession:
    def test_settings_flow_into_session_and_clients(self, collector: PrometheusCollector) -> None:
        settings = ApiSettings(debug=True, max_attempts=2, retry_mode="legacy", cache_enabled=False)
        session, config = new_cluster_session("dev-us-west-2", collector, settings)

        assert session is not None
        assert session.region_name == "us-west-2"
        assert config.max_attempts == 2
        client = new_client(session, "elbv2", config)
        assert client.meta.config.retries["total_max_attempts"] == 2
        assert client.meta.config.retries["mode"] == "legacy"

        answered = _respond_with(client, _ok({"LoadBalancers": []}), _ok({"LoadBalancers": []}))
        client.describe_load_balancers()
        client.describe_load_balancers()
        assert len(answered) == 2

    def test_missing_profile_counts_construction_error(
        self, collector: PrometheusCollector, registry: CollectorRegistry
    ) -> None:
        session, config = new_cluster_session("prod-us-east-1", collector, ApiSettings())

        assert session is None
        assert config.profile == "prod"
        assert _count(registry, "aws_api_errors_total", SESSION_CONSTRUCTION_LABELS) == 1.0

    def test_unknown_cluster(self, collector: PrometheusCollector) -> None:
        with pytest.raises(ValueError, match="Unknown cluster"):
            new_cluster_session("staging", collector, ApiSettings())


class TestCaching:
    def test_repeated_read_is_served_from_cache(self, elbv2: Any, captured_logs: list[dict[str, Any]]) -> None:
        answered = _respond_with(elbv2, _ok({"LoadBalancers": [{"LoadBalancerName": "lb-1"}]}))

        first = elbv2.describe_load_balancers()
        first["LoadBalancers"].clear()
        second = elbv2.describe_load_balancers()

        assert answered == ["DescribeLoadBalancers"]
        assert second["LoadBalancers"] == [{"LoadBalancerName": "lb-1"}]
        calls = [e for e in captured_logs if e["event"] == "aws_api_call"]
        assert [c["cached"] for c in calls] == [False, True]
        assert all(c["service"] == "elbv2" and c["operation"] == "DescribeLoadBalancers" for c in calls)

    def test_different_parameters_are_cached_separately(self, elbv2: Any) -> None:
        answered = _respond_with(elbv2, _ok({"LoadBalancers": []}), _ok({"LoadBalancers": []}))

        elbv2.describe_load_balancers(Names=["a"])
        elbv2.describe_load_balancers(Names=["b"])
        elbv2.describe_load_balancers(Names=["a"])

        assert answered == ["DescribeLoadBalancers", "DescribeLoadBalancers"]

    def test_clients_in_different_regions_do_not_share_entries(
        self, aws_config: AwsConfig, collector: PrometheusCollector
    ) -> None:
        session = new_session(aws_config, False, collector, CacheConfig())
        assert session is not None
        east = new_client(session, "elbv2", aws_config)
        west = session.client("elbv2", region_name="us-west-2")
        east_answered = _respond_with(east, _ok({"LoadBalancers": [{"LoadBalancerName": "east"}]}))
        west_answered = _respond_with(west, _ok({"LoadBalancers": [{"LoadBalancerName": "west"}]}))

        east.describe_load_balancers()
        result = west.describe_load_balancers()

        assert east_answered == ["DescribeLoadBalancers"]
        assert west_answered == ["DescribeLoadBalancers"]
        assert result["LoadBalancers"] == [{"LoadBalancerName": "west"}]

    def test_mutation_flushes_cached_reads(self, elbv2: Any) -> None:
        answered = _respond_with(
            elbv2,
            _ok({"LoadBalancers": []}),
            _ok({"LoadBalancers": [{"LoadBalancerName": "lb-2"}]}),
            _ok({"LoadBalancers": [{"LoadBalancerName": "lb-2"}]}),
        )

        elbv2.describe_load_balancers()
        elbv2.create_load_balancer(Name="lb-2")
        after = elbv2.describe_load_balancers()

        assert answered == ["DescribeLoadBalancers", "CreateLoadBalancer", "DescribeLoadBalancers"]
        assert after["LoadBalancers"] == [{"LoadBalancerName": "lb-2"}]

    def test_disabled_cache_always_calls_through(self, aws_config: AwsConfig, collector: PrometheusCollector) -> None:
        session = new_session(aws_config, False, collector, CacheConfig(enabled=False))
        assert session is not None
        client = new_client(session, "elbv2", aws_config)
        answered = _respond_with(client, _ok({"LoadBalancers": []}), _ok({"LoadBalancers": []}))

        client.describe_load_balancers()
        client.describe_load_balancers()

        assert len(answered) == 2

    def test_error_responses_are_not_cached(self, elbv2: Any, registry: CollectorRegistry) -> None:
        answered = _respond_with(elbv2, _error("ValidationError"), _ok({"LoadBalancers": []}))

        with pytest.raises(ClientError):
            elbv2.describe_load_balancers()
        elbv2.describe_load_balancers()

        assert len(answered) == 2
        assert _count(registry, "aws_api_errors_total", DESCRIBE_LBS) == 1.0


class TestCounting:
    def test_cache_hits_send_no_request(self, elbv2: Any, registry: CollectorRegistry) -> None:
        _respond_with(elbv2, _ok({"LoadBalancers": []}))

        elbv2.describe_load_balancers()
        elbv2.describe_load_balancers()

        # Responses above never reach the wire, so nothing counts as sent.
        assert _count(registry, "aws_api_requests_total", DESCRIBE_LBS) is None
        assert _count(registry, "aws_api_errors_total", DESCRIBE_LBS) is None

    def test_transport_failure_counts_request_and_error(
        self,
        aws_config: AwsConfig,
        collector: PrometheusCollector,
        registry: CollectorRegistry,
        captured_logs: list[dict[str, Any]],
    ) -> None:
        session = new_session(aws_config, True, collector, CacheConfig())
        assert session is not None
        client = new_client(session, "elbv2", aws_config)

        def _fail(**kwargs: Any) -> None:
            raise RuntimeError("connection reset")

        client.meta.events.register("before-send.*.*", _fail)

        with pytest.raises(RuntimeError, match="connection reset"):
            client.describe_load_balancers(Names=["lb-1"])

        assert _count(registry, "aws_api_requests_total", DESCRIBE_LBS) == 1.0
        assert _count(registry, "aws_api_errors_total", DESCRIBE_LBS) == 1.0
        sent = [e for e in captured_logs if e["event"] == "aws_api_request"]
        assert len(sent) == 1
        assert '"Names"' in sent[0]["payload"]
        failed = [e for e in captured_logs if e["event"] == "aws_api_call_failed"]
        assert len(failed) == 1
        assert failed[0]["error"] == "connection reset"

    def test_failed_payload_not_logged_without_debug(
        self, elbv2: Any, captured_logs: list[dict[str, Any]]
    ) -> None:
        _respond_with(elbv2, _error("AccessDenied", status=403))

        with pytest.raises(ClientError):
            elbv2.describe_load_balancers()

        events = [e["event"] for e in captured_logs]
        assert "aws_api_call" in events
        assert "aws_api_call_failed" not in events
        assert "aws_api_request" not in events


    def test_unavailable_service_is_retried_then_fails(
        self,
        collector: PrometheusCollector,
        registry: CollectorRegistry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        config = AwsConfig(
            region="us-east-1", access_key_id="AKIDEXAMPLE", secret_access_key="not-a-secret", max_attempts=3
        )
        session = new_session(config, False, collector, CacheConfig(enabled=False))
        assert session is not None
        client = new_client(session, "elbv2", config)
        monkeypatch.setattr("botocore.endpoint.time.sleep", lambda delay: None)

        def _unavailable(request: Any, **kwargs: Any) -> AWSResponse:
            return AWSResponse(request.url, 503, {}, _RawBody(SERVICE_UNAVAILABLE_BODY))

        client.meta.events.register("before-send.*.*", _unavailable)

        with pytest.raises(ClientError) as excinfo:
            client.describe_load_balancers()

        assert excinfo.value.response["Error"]["Code"] == "ServiceUnavailable"
        assert excinfo.value.response["ResponseMetadata"]["RetryAttempts"] == 2
        # Every failed attempt is counted, the last one included.
        assert _count(registry, "aws_api_requests_total", DESCRIBE_LBS) == 3.0
        assert _count(registry, "aws_api_retries_total", DESCRIBE_LBS) == 3.0
        assert _count(registry, "aws_api_errors_total", DESCRIBE_LBS) == 1.0


class TestRetryHook:
    @pytest.fixture
    def operation(self) -> MagicMock:
        operation = MagicMock()
        operation.service_model.service_name = "ec2"
        operation.name = "DescribeInstances"
        return operation

    def test_successful_attempt_is_not_a_retry(
        self, operation: MagicMock, collector: PrometheusCollector, registry: CollectorRegistry
    ) -> None:
        hooks = _SessionHooks(collector, aws_debug=False)
        hooks.on_retry(operation=operation, caught_exception=None, response=(MagicMock(status_code=200), {}))

        assert _count(registry, "aws_api_retries_total", {"service": "ec2", "operation": "DescribeInstances"}) is None

    def test_failed_attempts_are_counted(
        self, operation: MagicMock, collector: PrometheusCollector, registry: CollectorRegistry
    ) -> None:
        hooks = _SessionHooks(collector, aws_debug=False)
        hooks.on_retry(operation=operation, caught_exception=None, response=(MagicMock(status_code=503), {}))
        hooks.on_retry(operation=operation, caught_exception=EndpointConnectionError(endpoint_url=ELBV2_URL))

        assert _count(registry, "aws_api_retries_total", {"service": "ec2", "operation": "DescribeInstances"}) == 2.0
