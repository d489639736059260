"""Wall-clock timing of AWS API calls."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import boto3

TIMING_KEY = "aws_lb_backend.timing"


@dataclass
class TimingData:
    start: float
    end: float | None = None

    def request_duration(self) -> float:
        """Seconds from parameter build to completion (or to now, if still running)."""
        end = self.end if self.end is not None else time.monotonic()
        return max(0.0, end - self.start)


def _start(context: dict[str, Any], **kwargs: Any) -> None:
    context[TIMING_KEY] = TimingData(start=time.monotonic())


def _stop(context: dict[str, Any], **kwargs: Any) -> None:
    data = context.get(TIMING_KEY)
    if isinstance(data, TimingData) and data.end is None:
        data.end = time.monotonic()


def add_timing(session: boto3.Session) -> None:
    """Attach a ``TimingData`` to the context of every call made through ``session``.

    The stop hooks are registered first so the duration is final before any
    other completion hook reads it.
    """
    events = session.events
    events.register_first("before-parameter-build.*.*", _start, unique_id="aws_lb_backend.timing.start")
    events.register_first("after-call.*.*", _stop, unique_id="aws_lb_backend.timing.stop")
    events.register_first("after-call-error.*.*", _stop, unique_id="aws_lb_backend.timing.stop_error")


def get_timing_data(context: dict[str, Any] | None) -> TimingData:
    """Return the call's timing data; a zero-length timing if the call was not timed."""
    data = (context or {}).get(TIMING_KEY)
    if isinstance(data, TimingData):
        return data
    now = time.monotonic()
    return TimingData(start=now, end=now)
