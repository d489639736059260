"""Tests for input validation helpers."""

from __future__ import annotations

import ipaddress

import pytest

from aws_lb_backend.validation import (
    ConfigurationError,
    ip_in_ranges,
    parse_cidr,
    parse_cidr_ranges,
    validate_label_key,
    validate_label_value,
    validate_namespace,
    validate_port,
)


class TestValidateNamespace:
    def test_valid_namespace(self) -> None:
        validate_namespace("kube-system")

    def test_none_is_valid(self) -> None:
        validate_namespace(None)

    def test_invalid_uppercase(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid namespace"):
            validate_namespace("Kube-System")

    def test_configuration_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            validate_namespace("../etc")


class TestLabels:
    @pytest.mark.parametrize("key", ["app", "app.kubernetes.io/name", "a_b.c-d", "x" * 63])
    def test_valid_keys(self, key: str) -> None:
        validate_label_key(key)

    @pytest.mark.parametrize("key", ["", "-app", "app-", "/name", "Bad_Prefix/name", "x" * 64])
    def test_invalid_keys(self, key: str) -> None:
        with pytest.raises(ConfigurationError):
            validate_label_key(key)

    def test_empty_value_is_valid(self) -> None:
        validate_label_value("")

    def test_invalid_value(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid label value"):
            validate_label_value("has space")


class TestValidatePort:
    @pytest.mark.parametrize("port", [1, 80, 65535])
    def test_valid(self, port: int) -> None:
        validate_port(port)

    @pytest.mark.parametrize("port", [0, 65536, True, "80"])
    def test_invalid(self, port: object) -> None:
        with pytest.raises(ConfigurationError, match="Invalid port"):
            validate_port(port)  # type: ignore[arg-type]


class TestCidrs:
    def test_parse_network_passthrough(self) -> None:
        net = ipaddress.ip_network("10.0.0.0/8")
        assert parse_cidr(net) is net

    def test_parse_ranges_fails_on_first_bad_entry(self) -> None:
        with pytest.raises(ConfigurationError, match="'bogus'"):
            parse_cidr_ranges(["10.0.0.0/8", "bogus"])

    def test_ip_in_ranges(self) -> None:
        ranges = parse_cidr_ranges(["10.0.0.0/24", "fd00::/16"])
        assert ip_in_ranges("10.0.0.200", ranges)
        assert ip_in_ranges("fd00:1::1", ranges)
        assert not ip_in_ranges("10.0.1.1", ranges)

    def test_unparseable_ip_is_never_in_range(self) -> None:
        assert not ip_in_ranges("not-an-ip", parse_cidr_ranges(["0.0.0.0/0"]))
