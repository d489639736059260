"""Policy-governed caching of AWS API responses.

Read operations (``Describe*``, ``List*``, ``Get*`` by default) are served
from an in-process cache keyed by service, operation, and parameters. A
successful response is stored on ``after-call`` and returned from
``before-call`` on the next identical call, which skips the network round
trip entirely. Any other operation on a service flushes that service's
entries so reads after a write are fresh.
"""

from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import boto3
import structlog
import yaml

from aws_lb_backend.aws.call_context import get_call_info, track_calls

log = structlog.get_logger()

CACHE_HIT_KEY = "aws_lb_backend.cache_hit"


@dataclass(frozen=True)
class CacheConfig:
    """Cache policy.

    ``operation_ttls`` maps ``"<service>.<Operation>"`` (e.g.
    ``"elbv2.DescribeTargetGroups"``) to a TTL in seconds overriding the
    default; a TTL of 0 disables caching for that operation.
    """

    enabled: bool = True
    default_ttl: float = 300.0
    cacheable_prefixes: tuple[str, ...] = ("Describe", "List", "Get")
    operation_ttls: Mapping[str, float] = field(default_factory=dict)
    max_entries: int = 1000
    flush_on_mutation: bool = True

    def ttl_for(self, service: str, operation: str) -> float | None:
        """TTL for an operation, or None if its responses must not be cached."""
        if not self.enabled:
            return None
        override = self.operation_ttls.get(f"{service}.{operation}")
        if override is not None:
            return override if override > 0 else None
        if operation.startswith(self.cacheable_prefixes) and self.default_ttl > 0:
            return self.default_ttl
        return None

    def is_mutation(self, service: str, operation: str) -> bool:
        return f"{service}.{operation}" not in self.operation_ttls and not operation.startswith(
            self.cacheable_prefixes
        )


def load_cache_config(path: Path) -> CacheConfig:
    """Load a cache policy from YAML.

    Example::

        enabled: true
        default_ttl: 60
        max_entries: 500
        operation_ttls:
          elbv2.DescribeTargetHealth: 0
          ec2.DescribeInstances: 30

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file content is malformed.
    """
    if not path.exists():
        msg = f"Cache configuration file not found: {path}."
        raise FileNotFoundError(msg)
    raw = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        msg = f"Cache config file {path} must contain a mapping."
        raise ValueError(msg)

    ttls = raw.get("operation_ttls") or {}
    if not isinstance(ttls, dict):
        msg = f"Cache config file {path}: 'operation_ttls' must be a mapping."
        raise ValueError(msg)
    prefixes = raw.get("cacheable_prefixes", CacheConfig.cacheable_prefixes)
    try:
        return CacheConfig(
            enabled=bool(raw.get("enabled", True)),
            default_ttl=float(raw.get("default_ttl", CacheConfig.default_ttl)),
            cacheable_prefixes=tuple(str(p) for p in prefixes),
            operation_ttls={str(k): float(v) for k, v in ttls.items()},
            max_entries=int(raw.get("max_entries", CacheConfig.max_entries)),
            flush_on_mutation=bool(raw.get("flush_on_mutation", True)),
        )
    except (TypeError, ValueError) as exc:
        msg = f"Cache config file {path} has an invalid value: {exc}"
        raise ValueError(msg) from None


@dataclass
class _Entry:
    service: str
    value: tuple[Any, Any]
    expires_at: float


class ResponseCache:
    """Thread-safe TTL cache of ``(http_response, parsed)`` pairs, evicting oldest first."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._max_entries = max_entries
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> tuple[Any, Any] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if time.monotonic() >= entry.expires_at:
                del self._entries[key]
                return None
            http_response, parsed = entry.value
        return http_response, copy.deepcopy(parsed)

    def put(self, key: str, service: str, value: tuple[Any, Any], ttl: float) -> None:
        http_response, parsed = value
        entry = _Entry(service=service, value=(http_response, copy.deepcopy(parsed)), expires_at=time.monotonic() + ttl)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def flush_service(self, service: str) -> int:
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.service == service]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class _CachingHooks:
    def __init__(self, cache: ResponseCache, config: CacheConfig) -> None:
        self._cache = cache
        self._config = config

    def before_call(self, context: dict[str, Any], **kwargs: Any) -> tuple[Any, Any] | None:
        context[CACHE_HIT_KEY] = False
        call = get_call_info(context)
        if self._config.ttl_for(call.service, call.operation) is None:
            return None
        cached = self._cache.get(call.cache_key)
        if cached is None:
            return None
        context[CACHE_HIT_KEY] = True
        return cached

    def after_call(self, http_response: Any, parsed: Any, context: dict[str, Any], **kwargs: Any) -> None:
        if is_cache_hit(context):
            return
        call = get_call_info(context)
        ttl = self._config.ttl_for(call.service, call.operation)
        if ttl is None:
            if self._config.flush_on_mutation and self._config.is_mutation(call.service, call.operation):
                flushed = self._cache.flush_service(call.service)
                if flushed:
                    log.debug("aws_cache_flushed", service=call.service, operation=call.operation, entries=flushed)
            return
        if http_response is not None and http_response.status_code < 300:
            self._cache.put(call.cache_key, call.service, (http_response, parsed), ttl)


def add_caching(session: boto3.Session, config: CacheConfig) -> None:
    """Serve repeated read calls made through ``session`` from a shared cache."""
    track_calls(session)
    cache = ResponseCache(max_entries=config.max_entries)
    hooks = _CachingHooks(cache, config)
    session.events.register("before-call.*.*", hooks.before_call, unique_id="aws_lb_backend.cache.lookup")
    session.events.register("after-call.*.*", hooks.after_call, unique_id="aws_lb_backend.cache.store")


def is_cache_hit(context: dict[str, Any] | None) -> bool:
    """Whether the call owning ``context`` was served from the cache."""
    return bool((context or {}).get(CACHE_HIT_KEY, False))
