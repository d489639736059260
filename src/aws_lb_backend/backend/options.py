"""Options controlling endpoint resolution.

Options are built by applying option functions, left to right, over
``EndpointResolveOptions()``. The default selects no node, requires no
readiness gate, and restricts no address range. Each option only extends or
narrows what earlier options set.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from functools import reduce

from aws_lb_backend.selectors import LabelSelector
from aws_lb_backend.validation import IPNetwork, parse_cidr_ranges


@dataclass(frozen=True)
class EndpointResolveOptions:
    """Resolution policy for a single resolve call."""

    # [NodePort endpoints] only nodes matched by this selector are included.
    node_selector: LabelSelector = field(default_factory=LabelSelector.nothing)
    # [Pod endpoints] not-ready pods carrying any of these conditions (True) with
    # ContainersReady True are included as well.
    pod_readiness_gates: tuple[str, ...] = ()
    # Candidate IPs must fall in one of these ranges; empty means unrestricted.
    cidrs: tuple[IPNetwork, ...] = ()


EndpointResolveOption = Callable[[EndpointResolveOptions], EndpointResolveOptions]


def build_resolve_options(*options: EndpointResolveOption) -> EndpointResolveOptions:
    """Apply ``options`` in order over the default options."""
    return reduce(lambda opts, option: option(opts), options, EndpointResolveOptions())


def with_node_selector(selector: LabelSelector | str | Mapping[str, str]) -> EndpointResolveOption:
    """Select nodes by label.

    Accepts a ``LabelSelector``, selector syntax (``"role=ingress,!spot"``), or a
    ``matchLabels`` mapping. The first selector replaces the match-nothing
    default; later selectors are AND-ed with it.

    Raises:
        ConfigurationError: If the selector string is malformed.
    """
    if isinstance(selector, str):
        parsed = LabelSelector.parse(selector)
    elif isinstance(selector, LabelSelector):
        parsed = selector
    else:
        parsed = LabelSelector.from_match_labels(selector)

    def _apply(opts: EndpointResolveOptions) -> EndpointResolveOptions:
        if opts.node_selector.is_nothing:
            return replace(opts, node_selector=parsed)
        return replace(opts, node_selector=opts.node_selector.and_(parsed))

    return _apply


def with_pod_readiness_gate(condition_type: str) -> EndpointResolveOption:
    """Append a pod condition type to the readiness gates."""

    def _apply(opts: EndpointResolveOptions) -> EndpointResolveOptions:
        if condition_type in opts.pod_readiness_gates:
            return opts
        return replace(opts, pod_readiness_gates=opts.pod_readiness_gates + (condition_type,))

    return _apply


def with_cidr_ranges(cidrs: Iterable[str | IPNetwork]) -> EndpointResolveOption:
    """Append CIDR ranges used to filter the resolved IPs.

    Raises:
        ConfigurationError: If any range is malformed.
    """
    parsed = parse_cidr_ranges(cidrs)

    def _apply(opts: EndpointResolveOptions) -> EndpointResolveOptions:
        merged = opts.cidrs + tuple(c for c in parsed if c not in opts.cidrs)
        return replace(opts, cidrs=merged)

    return _apply
