"""Per-call identity shared by the session hooks.

botocore hands every hook of one API call the same ``context`` dict. The
service, operation, and parameters are recorded there once, when parameters
are built, so that later hooks (including ``after-call-error``, which gets no
operation model) can label what they observe.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import boto3

CALL_INFO_KEY = "aws_lb_backend.call"

UNKNOWN = "unknown"


@dataclass(frozen=True)
class CallInfo:
    service: str
    operation: str
    params: dict[str, Any] = field(default_factory=dict)
    region: str | None = None

    @property
    def cache_key(self) -> str:
        body = json.dumps(self.params, sort_keys=True, default=str)
        return f"{self.region}/{self.service}.{self.operation}:{body}"

    @property
    def labels(self) -> dict[str, str]:
        return {"service": self.service, "operation": self.operation}


def _record_call(params: dict[str, Any], model: Any, context: dict[str, Any], **kwargs: Any) -> None:
    context[CALL_INFO_KEY] = CallInfo(
        service=model.service_model.service_name,
        operation=model.name,
        params=dict(params),
        region=context.get("client_region"),
    )


def track_calls(session: boto3.Session) -> None:
    """Record ``CallInfo`` in the context of every call made through ``session``.

    Safe to call more than once.
    """
    session.events.register_first(
        "before-parameter-build.*.*",
        _record_call,
        unique_id="aws_lb_backend.call_context.record",
    )


def get_call_info(context: dict[str, Any] | None) -> CallInfo:
    """Return the call recorded in ``context``, or a placeholder if none was recorded."""
    info = (context or {}).get(CALL_INFO_KEY)
    if isinstance(info, CallInfo):
        return info
    return CallInfo(service=UNKNOWN, operation=UNKNOWN)
