"""Shared utility functions."""

from __future__ import annotations

import json
from typing import Any


def prettify(payload: Any) -> str:
    """Render an API payload as indented JSON for debug logging.

    Values JSON cannot encode (datetimes, bytes, streaming bodies) are rendered
    with ``str`` so that logging never fails on an unusual payload.
    """
    try:
        return json.dumps(payload, indent=2, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(payload)
