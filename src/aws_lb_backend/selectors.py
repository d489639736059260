"""Kubernetes label selectors: parsing, construction, and matching."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from aws_lb_backend.validation import ConfigurationError, validate_label_key, validate_label_value

Operator = Literal["in", "notin", "exists", "doesnotexist"]

_SET_RE = re.compile(r"^(?P<key>[^\s!=(),]+)\s+(?P<op>in|notin)\s*\((?P<values>[^()]*)\)$")
_EQUALITY_RE = re.compile(r"^(?P<key>[^\s!=(),]+)\s*(?P<op>==|!=|=)\s*(?P<value>[^\s!=(),]*)$")
_EXISTS_RE = re.compile(r"^(?P<neg>!)?\s*(?P<key>[^\s!=(),]+)$")

# matchExpressions operator names as they appear in LabelSelector API objects
_EXPRESSION_OPERATORS: dict[str, Operator] = {
    "In": "in",
    "NotIn": "notin",
    "Exists": "exists",
    "DoesNotExist": "doesnotexist",
}


@dataclass(frozen=True)
class Requirement:
    """A single selector requirement such as ``tier in (web,api)``."""

    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "exists":
            return self.key in labels
        if self.operator == "doesnotexist":
            return self.key not in labels
        if self.operator == "in":
            return self.key in labels and labels[self.key] in self.values
        # notin also matches when the key is absent
        return self.key not in labels or labels[self.key] not in self.values

    def __str__(self) -> str:
        if self.operator == "exists":
            return self.key
        if self.operator == "doesnotexist":
            return f"!{self.key}"
        if len(self.values) == 1:
            op = "=" if self.operator == "in" else "!="
            return f"{self.key}{op}{self.values[0]}"
        return f"{self.key} {self.operator} ({','.join(self.values)})"


@dataclass(frozen=True)
class LabelSelector:
    """An immutable label selector.

    A selector with no requirements matches every label set. The special
    ``nothing()`` selector matches no label set at all.
    """

    requirements: tuple[Requirement, ...] = ()
    match_nothing: bool = False

    @classmethod
    def everything(cls) -> LabelSelector:
        return cls()

    @classmethod
    def nothing(cls) -> LabelSelector:
        return cls(match_nothing=True)

    @classmethod
    def parse(cls, selector: str) -> LabelSelector:
        """Parse the kubectl selector syntax, e.g. ``app=web,tier in (a,b),!canary``.

        Raises:
            ConfigurationError: If the selector is malformed.
        """
        if not isinstance(selector, str):
            msg = f"Label selector must be a string, got {type(selector).__name__}."
            raise ConfigurationError(msg)
        text = selector.strip()
        if not text:
            return cls.everything()
        return cls(requirements=tuple(_parse_term(term, selector) for term in _split_terms(text, selector)))

    @classmethod
    def from_match_labels(cls, match_labels: Mapping[str, str]) -> LabelSelector:
        """Build an equality-only selector from a ``matchLabels`` mapping."""
        return cls.from_label_selector({"match_labels": dict(match_labels)})

    @classmethod
    def from_label_selector(cls, spec: Mapping[str, Any] | None) -> LabelSelector:
        """Build a selector from a LabelSelector API object in dict form.

        Accepts both snake_case (``match_labels``) and camelCase (``matchLabels``)
        keys. A ``None`` spec selects nothing, an empty spec selects everything.
        """
        if spec is None:
            return cls.nothing()
        match_labels = spec.get("match_labels", spec.get("matchLabels")) or {}
        expressions = spec.get("match_expressions", spec.get("matchExpressions")) or []

        requirements: list[Requirement] = []
        for key, value in sorted(match_labels.items()):
            requirements.append(_requirement(key, "in", [str(value)]))
        for expr in expressions:
            op_name = expr.get("operator")
            operator = _EXPRESSION_OPERATORS.get(op_name)
            if operator is None:
                valid = ", ".join(sorted(_EXPRESSION_OPERATORS))
                msg = f"Invalid label selector operator: {op_name!r}. Must be one of: {valid}"
                raise ConfigurationError(msg)
            values = [str(v) for v in (expr.get("values") or [])]
            requirements.append(_requirement(str(expr.get("key", "")), operator, values))
        return cls(requirements=tuple(requirements))

    @property
    def is_nothing(self) -> bool:
        return self.match_nothing

    @property
    def is_everything(self) -> bool:
        return not self.match_nothing and not self.requirements

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        if self.match_nothing:
            return False
        labels = labels or {}
        return all(req.matches(labels) for req in self.requirements)

    def and_(self, other: LabelSelector) -> LabelSelector:
        """Return a selector matching label sets matched by both selectors."""
        if self.match_nothing or other.match_nothing:
            return LabelSelector.nothing()
        return LabelSelector(requirements=self.requirements + other.requirements)

    def selector_string(self) -> str | None:
        """Render for the API's ``label_selector`` parameter; None for ``nothing()``."""
        if self.match_nothing:
            return None
        return ",".join(str(req) for req in self.requirements)

    def __str__(self) -> str:
        rendered = self.selector_string()
        return "<nothing>" if rendered is None else rendered


def _split_terms(text: str, original: str) -> list[str]:
    """Split on commas that are not inside a parenthesised value set."""
    terms: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                msg = f"Invalid label selector {original!r}: unbalanced parentheses."
                raise ConfigurationError(msg)
        if ch == "," and depth == 0:
            terms.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if depth != 0:
        msg = f"Invalid label selector {original!r}: unbalanced parentheses."
        raise ConfigurationError(msg)
    terms.append("".join(current).strip())
    if any(not t for t in terms):
        msg = f"Invalid label selector {original!r}: empty requirement."
        raise ConfigurationError(msg)
    return terms


def _parse_term(term: str, original: str) -> Requirement:
    if m := _SET_RE.match(term):
        values = [v.strip() for v in m.group("values").split(",")]
        if values == [""]:
            msg = f"Invalid label selector {original!r}: empty value set in {term!r}."
            raise ConfigurationError(msg)
        return _requirement(m.group("key"), m.group("op"), values)  # type: ignore[arg-type]
    if m := _EQUALITY_RE.match(term):
        operator: Operator = "notin" if m.group("op") == "!=" else "in"
        return _requirement(m.group("key"), operator, [m.group("value")])
    if m := _EXISTS_RE.match(term):
        return _requirement(m.group("key"), "doesnotexist" if m.group("neg") else "exists", [])
    msg = f"Invalid label selector {original!r}: cannot parse requirement {term!r}."
    raise ConfigurationError(msg)


def _requirement(key: str, operator: Operator, values: list[str]) -> Requirement:
    validate_label_key(key)
    if operator in ("in", "notin"):
        if not values:
            msg = f"Label selector operator {operator!r} on {key!r} requires at least one value."
            raise ConfigurationError(msg)
        for value in values:
            validate_label_value(value)
    elif values:
        msg = f"Label selector operator {operator!r} on {key!r} must not have values."
        raise ConfigurationError(msg)
    return Requirement(key=key, operator=operator, values=tuple(sorted(set(values))))
