"""Merge the EndpointSlices of one Service into a single EndpointsData."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from aws_lb_backend.models import EndpointEntry, EndpointPort, EndpointsData, ObjectReference

log = structlog.get_logger()

ADDRESS_TYPE_FQDN = "FQDN"


def _endpoint_port(raw: dict[str, Any]) -> EndpointPort:
    return EndpointPort(
        name=raw.get("name") or "",
        protocol=raw.get("protocol") or "TCP",
        port=raw.get("port"),
    )


def _target_ref(raw: dict[str, Any] | None) -> ObjectReference | None:
    if not raw or not raw.get("name"):
        return None
    return ObjectReference(
        kind=raw.get("kind") or "Pod",
        namespace=raw.get("namespace"),
        name=raw["name"],
        uid=raw.get("uid"),
    )


def _entry_key(entry: EndpointEntry) -> tuple[str, str | None, str | None]:
    ref = entry.target_ref
    return (entry.address, ref.namespace if ref else None, ref.name if ref else None)


def _merge_ports(existing: tuple[EndpointPort, ...], extra: tuple[EndpointPort, ...]) -> tuple[EndpointPort, ...]:
    names = {p.name for p in existing}
    return existing + tuple(p for p in extra if p.name not in names)


def merge_endpoint_slices(slices: Iterable[dict[str, Any]]) -> EndpointsData:
    """Combine EndpointSlice fragments into one view of a Service's membership.

    Each fragment is a dict shaped like the Kubernetes client's ``to_dict()``
    output: ``address_type``, ``ports`` and ``endpoints`` (with ``addresses``,
    ``conditions``, ``node_name``, ``zone`` and ``target_ref``).

    Declared ports are de-duplicated in first-seen order. An endpoint that
    appears in several fragments for the same address and pod is kept once:
    the first occurrence's conditions win and its port list gains the ports
    declared by the later fragments.

    Returns an empty EndpointsData when there are no fragments.
    """
    ports: list[EndpointPort] = []
    entries: dict[tuple[str, str | None, str | None], EndpointEntry] = {}

    for fragment in slices:
        if fragment.get("address_type") == ADDRESS_TYPE_FQDN:
            log.debug("endpoint_slice_skipped", reason="fqdn_address_type", name=_fragment_name(fragment))
            continue

        fragment_ports = tuple(_endpoint_port(p) for p in (fragment.get("ports") or []))
        for port in fragment_ports:
            if port not in ports:
                ports.append(port)

        for raw in fragment.get("endpoints") or []:
            addresses = tuple(raw.get("addresses") or ())
            if not addresses:
                continue
            conditions = raw.get("conditions") or {}
            entry = EndpointEntry(
                addresses=addresses,
                ready=conditions.get("ready"),
                serving=conditions.get("serving"),
                terminating=conditions.get("terminating"),
                node_name=raw.get("node_name"),
                zone=raw.get("zone"),
                target_ref=_target_ref(raw.get("target_ref")),
                ports=fragment_ports,
            )
            key = _entry_key(entry)
            seen = entries.get(key)
            if seen is None:
                entries[key] = entry
            else:
                entries[key] = seen.model_copy(update={"ports": _merge_ports(seen.ports, fragment_ports)})

    return EndpointsData(ports=tuple(ports), endpoints=tuple(entries.values()))


def _fragment_name(fragment: dict[str, Any]) -> str | None:
    metadata = fragment.get("metadata") or {}
    return metadata.get("name")
