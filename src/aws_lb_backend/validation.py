"""Input validation helpers for resolver options and Kubernetes identifiers."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class ConfigurationError(ValueError):
    """Raised for caller mistakes: bad selectors, bad CIDRs, unknown service ports.

    These are never transient and are not retried.
    """


# RFC 1123 label: lowercase alphanumeric and hyphens, 1-63 chars, starts/ends with alphanumeric
_NAMESPACE_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")

# Label name segment (and label value): 63 chars max, alphanumeric at both ends
_LABEL_NAME_RE = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$")

# Label key prefix: a DNS subdomain
_DNS_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


def validate_namespace(namespace: str | None) -> None:
    """Validate a Kubernetes namespace name against RFC 1123."""
    if namespace is None:
        return
    if not _NAMESPACE_RE.match(namespace):
        msg = f"Invalid namespace: {namespace!r}. Must be a valid RFC 1123 label."
        raise ConfigurationError(msg)


def validate_label_key(key: str) -> None:
    """Validate a label key of the form ``[prefix/]name``."""
    prefix, sep, name = key.rpartition("/")
    if sep:
        if not prefix or len(prefix) > 253 or not _DNS_SUBDOMAIN_RE.match(prefix):
            msg = f"Invalid label key prefix in {key!r}. Must be a DNS subdomain."
            raise ConfigurationError(msg)
    if not _LABEL_NAME_RE.match(name):
        msg = f"Invalid label key: {key!r}. Name part must be 1-63 alphanumeric characters, '-', '_' or '.'."
        raise ConfigurationError(msg)


def validate_label_value(value: str) -> None:
    """Validate a label value. The empty string is a valid value."""
    if value and not _LABEL_NAME_RE.match(value):
        msg = f"Invalid label value: {value!r}. Must be at most 63 alphanumeric characters, '-', '_' or '.'."
        raise ConfigurationError(msg)


def validate_port(port: int, what: str = "port") -> None:
    """Validate a TCP/UDP port number."""
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        msg = f"Invalid {what}: {port!r}. Must be an integer between 1 and 65535."
        raise ConfigurationError(msg)


def parse_cidr(cidr: str | IPNetwork) -> IPNetwork:
    """Parse a single CIDR prefix. Host bits are allowed and masked off."""
    if isinstance(cidr, ipaddress.IPv4Network | ipaddress.IPv6Network):
        return cidr
    try:
        return ipaddress.ip_network(str(cidr).strip(), strict=False)
    except ValueError as exc:
        msg = f"Invalid CIDR range: {cidr!r}. {exc}"
        raise ConfigurationError(msg) from None


def parse_cidr_ranges(cidrs: Iterable[str | IPNetwork]) -> tuple[IPNetwork, ...]:
    """Parse a list of CIDR prefixes, failing on the first malformed entry."""
    return tuple(parse_cidr(c) for c in cidrs)


def ip_in_ranges(ip: str, cidrs: Iterable[IPNetwork]) -> bool:
    """Check whether ``ip`` falls inside at least one of ``cidrs``.

    Unparseable addresses are never in range.
    """
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(addr.version == net.version and addr in net for net in cidrs)
