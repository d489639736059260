"""Resolve a Service's membership into pod or node-port load balancer targets.

Resolution is pure: inputs are already materialized and nothing is mutated.
Not-ready pods, missing pods, and nodes without an instance id are filtered
out rather than reported as errors, since a partially-ready cluster is the
normal state.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog

from aws_lb_backend.backend.node_utils import extract_node_instance_id, is_node_suitable_as_traffic_proxy
from aws_lb_backend.backend.options import EndpointResolveOptions
from aws_lb_backend.models import (
    EndpointEntry,
    EndpointPort,
    EndpointsData,
    NodeInfo,
    NodePortEndpoint,
    PodEndpoint,
    PodInfo,
)
from aws_lb_backend.validation import ConfigurationError, ip_in_ranges, validate_port

log = structlog.get_logger()

POD_KIND = "Pod"

PodLookup = Callable[[str | None, str], PodInfo | None]
InstanceIdLookup = Callable[[NodeInfo], str | None]


def _default_port_name(endpoints_data: EndpointsData) -> str:
    names = {p.name for p in endpoints_data.ports}
    if len(names) == 1:
        return names.pop()
    if not names:
        return ""
    valid = ", ".join(sorted(repr(n) for n in names))
    msg = f"A port name is required when several ports are declared: {valid}"
    raise ConfigurationError(msg)


def _lookup_port(entry: EndpointEntry, endpoints_data: EndpointsData, port_name: str) -> EndpointPort | None:
    declared = entry.ports or endpoints_data.ports
    for port in declared:
        if port.name == port_name and port.port:
            return port
    return None


def _is_admitted(entry: EndpointEntry, pod: PodInfo | None, readiness_gates: tuple[str, ...]) -> bool:
    # Unknown readiness is treated as ready.
    if entry.ready is None or entry.ready:
        return True
    if pod is None or not readiness_gates:
        return False
    return pod.is_containers_ready() and pod.has_any_of_readiness_gates(readiness_gates)


def resolve_pod_endpoints(
    endpoints_data: EndpointsData,
    options: EndpointResolveOptions | None = None,
    *,
    port_name: str | None = None,
    pod_lookup: PodLookup | None = None,
) -> list[PodEndpoint]:
    """Resolve direct-to-pod endpoints.

    Args:
        endpoints_data: Merged EndpointSlice data of the Service.
        options: Resolution policy; defaults to ``EndpointResolveOptions()``.
        port_name: Name of the Service port to resolve. May be omitted when a
            single port is declared.
        pod_lookup: Returns the pod for ``(namespace, name)`` or None. Needed to
            attach pods to endpoints and to admit not-ready pods through
            readiness gates. When given, entries whose pod it cannot find are
            skipped as stale; when omitted, every entry is admitted on its
            ready flag alone with ``pod=None``.

    Returns:
        One PodEndpoint per admitted entry with a resolvable port and, when
        CIDR ranges are configured, an IP inside one of them. Order follows the
        entries of ``endpoints_data``.

    Raises:
        ConfigurationError: If ``port_name`` is omitted and the port is ambiguous.
    """
    opts = options or EndpointResolveOptions()
    wanted_port = port_name if port_name is not None else _default_port_name(endpoints_data)

    endpoints: list[PodEndpoint] = []
    for entry in endpoints_data.endpoints:
        pod: PodInfo | None = None
        ref = entry.target_ref
        if ref is not None:
            if ref.kind != POD_KIND:
                continue
            # Without a lookup the entry is judged on its own conditions.
            pod = pod_lookup(ref.namespace, ref.name) if pod_lookup else None
            if pod is None and pod_lookup is not None:
                log.debug("pod_endpoint_skipped", reason="pod_not_found", pod=ref.name, ip=entry.address)
                continue

        if not _is_admitted(entry, pod, opts.pod_readiness_gates):
            log.debug("pod_endpoint_skipped", reason="not_ready", ip=entry.address)
            continue

        port = _lookup_port(entry, endpoints_data, wanted_port)
        if port is None:
            log.debug("pod_endpoint_skipped", reason="port_not_found", port_name=wanted_port, ip=entry.address)
            continue

        if opts.cidrs and not ip_in_ranges(entry.address, opts.cidrs):
            log.debug("pod_endpoint_skipped", reason="outside_cidr_ranges", ip=entry.address)
            continue

        endpoints.append(PodEndpoint(ip=entry.address, port=port.port, pod=pod))
    return endpoints


def resolve_node_port_endpoints(
    nodes: Iterable[NodeInfo],
    node_port: int,
    options: EndpointResolveOptions | None = None,
    *,
    instance_id_lookup: InstanceIdLookup = extract_node_instance_id,
) -> list[NodePortEndpoint]:
    """Resolve via-node-port endpoints.

    Only nodes matched by ``options.node_selector`` are considered, so with the
    default options the result is always empty. Nodes excluded from load
    balancers, nodes without an instance id, and (when CIDR ranges are
    configured) nodes with no address in range are skipped.

    Raises:
        ConfigurationError: If ``node_port`` is not a valid port.
    """
    validate_port(node_port, "node port")
    opts = options or EndpointResolveOptions()
    if opts.node_selector.is_nothing:
        return []

    endpoints: list[NodePortEndpoint] = []
    for node in nodes:
        if not opts.node_selector.matches(node.labels):
            continue
        if not is_node_suitable_as_traffic_proxy(node):
            log.debug("node_endpoint_skipped", reason="excluded_from_load_balancers", node=node.name)
            continue
        instance_id = instance_id_lookup(node)
        if not instance_id:
            log.debug("node_endpoint_skipped", reason="instance_id_unresolved", node=node.name)
            continue
        if opts.cidrs and not any(ip_in_ranges(ip, opts.cidrs) for ip in node.ips()):
            log.debug("node_endpoint_skipped", reason="outside_cidr_ranges", node=node.name)
            continue
        endpoints.append(NodePortEndpoint(instance_id=instance_id, port=node_port, node=node))
    return endpoints
