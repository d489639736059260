"""Instrumented AWS sessions.

Every AWS client in the controller is built from a session returned by
``new_session``, so caching, timing, request/retry/error counting and the
per-call audit log line apply uniformly to all of them.
"""

from __future__ import annotations

from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, NoCredentialsError

from aws_lb_backend.aws.cache import CacheConfig, add_caching, is_cache_hit
from aws_lb_backend.aws.call_context import get_call_info, track_calls
from aws_lb_backend.aws.timing import add_timing, get_timing_data
from aws_lb_backend.config import (
    ApiSettings,
    AwsConfig,
    aws_config_for,
    cache_config_for,
    get_api_settings,
    resolve_cluster,
)
from aws_lb_backend.metrics import Collector
from aws_lb_backend.utils import prettify

log = structlog.get_logger()

SESSION_CONSTRUCTION_LABELS = {"service": "AWS", "operation": "NewSession"}


def _is_error_response(response: Any) -> bool:
    if not response:
        return False
    http_response = response[0]
    return http_response is not None and http_response.status_code >= 300


class _SessionHooks:
    """Request, retry, and completion hooks reporting to one collector."""

    def __init__(self, collector: Collector, aws_debug: bool) -> None:
        self._collector = collector
        self._debug = aws_debug

    def on_retry(
        self,
        operation: Any,
        caught_exception: Exception | None = None,
        response: Any = None,
        **kwargs: Any,
    ) -> None:
        # needs-retry fires after every attempt; only failed attempts enter the retry chain.
        if caught_exception is None and not _is_error_response(response):
            return
        self._collector.inc_api_retry_count(
            {"service": operation.service_model.service_name, "operation": operation.name}
        )

    def on_send(self, request: Any, operation_name: str, **kwargs: Any) -> None:
        call = get_call_info(getattr(request, "context", None))
        labels = {"service": call.service, "operation": operation_name}
        self._collector.inc_api_request_count(labels)
        if self._debug:
            log.info("aws_api_request", payload=prettify(call.params), **labels)

    def on_complete(self, http_response: Any, parsed: Any, context: dict[str, Any], **kwargs: Any) -> None:
        error = None
        if http_response is not None and http_response.status_code >= 300:
            error = (parsed or {}).get("Error") or {"Code": str(http_response.status_code)}
        self._complete(context, error)

    def on_complete_error(self, exception: Exception, context: dict[str, Any], **kwargs: Any) -> None:
        self._complete(context, exception)

    def _complete(self, context: dict[str, Any], error: Any) -> None:
        call = get_call_info(context)
        timing = get_timing_data(context)
        log.info(
            "aws_api_call",
            cached=is_cache_hit(context),
            service=call.service,
            operation=call.operation,
            duration_ms=round(timing.request_duration() * 1000, 3),
        )
        if error is None:
            return
        self._collector.inc_api_error_count(call.labels)
        if self._debug:
            log.error(
                "aws_api_call_failed",
                service=call.service,
                operation=call.operation,
                payload=prettify(call.params),
                error=str(error),
            )


def _base_session(aws_config: AwsConfig) -> boto3.Session:
    session = boto3.Session(
        region_name=aws_config.region,
        profile_name=aws_config.profile,
        aws_access_key_id=aws_config.access_key_id,
        aws_secret_access_key=aws_config.secret_access_key,
        aws_session_token=aws_config.session_token,
    )
    if aws_config.require_credentials and session.get_credentials() is None:
        raise NoCredentialsError()
    return session


def new_session(
    aws_config: AwsConfig,
    aws_debug: bool,
    collector: Collector,
    cache_config: CacheConfig,
) -> boto3.Session | None:
    """Return an instrumented AWS session, or None if the session cannot be built.

    A failed construction increments the error counter once, labelled
    ``service=AWS, operation=NewSession``. Retrying with the same configuration
    will fail the same way.

    Args:
        aws_config: Region, profile and credentials for the session.
        aws_debug: Log request payloads, and failing payloads with their errors.
        collector: Receives request, retry and error counts.
        cache_config: Response cache policy.
    """
    try:
        session = _base_session(aws_config)
    except (BotoCoreError, ValueError) as exc:
        collector.inc_api_error_count(SESSION_CONSTRUCTION_LABELS)
        log.error("aws_session_create_failed", error=str(exc), region=aws_config.region, profile=aws_config.profile)
        return None

    track_calls(session)
    add_caching(session, cache_config)
    add_timing(session)

    hooks = _SessionHooks(collector, aws_debug)
    events = session.events
    events.register_first("needs-retry.*.*", hooks.on_retry, unique_id="aws_lb_backend.session.retry")
    events.register_first("request-created.*.*", hooks.on_send, unique_id="aws_lb_backend.session.send")
    events.register("after-call.*.*", hooks.on_complete, unique_id="aws_lb_backend.session.complete")
    events.register("after-call-error.*.*", hooks.on_complete_error, unique_id="aws_lb_backend.session.complete_error")
    return session


def new_client(session: boto3.Session, service_name: str, aws_config: AwsConfig) -> Any:
    """Create a client for ``service_name`` with the configured retry policy and endpoint override."""
    return session.client(
        service_name,
        endpoint_url=aws_config.endpoint_overrides.get(service_name),
        config=Config(retries={"total_max_attempts": aws_config.max_attempts, "mode": aws_config.retry_mode}),
    )


def new_cluster_session(
    cluster_id: str,
    collector: Collector,
    settings: ApiSettings | None = None,
) -> tuple[boto3.Session | None, AwsConfig]:
    """Build the instrumented session of a configured cluster.

    Region and profile come from the cluster map. Debug logging, the retry
    policy and the cache policy come from the ``AWS_API_*`` settings. The
    AwsConfig is returned alongside the session for ``new_client``.

    Raises:
        ValueError: If the cluster is unknown or the settings are invalid.
    """
    settings = settings or get_api_settings()
    aws_config = aws_config_for(resolve_cluster(cluster_id), settings)
    session = new_session(aws_config, settings.debug, collector, cache_config_for(settings))
    return session, aws_config
