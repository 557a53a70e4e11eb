"""
Reusable predicate builders for output assertions.

Any callable ``payload -> bool`` is a valid predicate. The builders here
cover the common cases and carry a readable ``repr`` so that logs and
timeout messages say what was being waited for.

Example:
    >>> from outputmatcher.predicates import equals, has_fields, all_of
    >>>
    >>> check = output.check_for(
    ...     equals("HELLO WORLD"),
    ...     all_of(has_fields(status="shipped"), lambda p: p["total"] > 10),
    ... )
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from outputmatcher.types import Predicate

_MISSING = object()


def predicate_name(predicate: Any) -> str:
    """
    Get a descriptive name for a predicate for logging and error messages.

    Args:
        predicate: Any predicate (builder instance, function, lambda)

    Returns:
        String name for the predicate
    """
    if isinstance(predicate, _NamedPredicate):
        return repr(predicate)
    name = getattr(predicate, "__qualname__", None) or getattr(predicate, "__name__", None)
    if name:
        return str(name)
    return repr(predicate)


class _NamedPredicate:
    """Base for builder predicates: callable with a stable description."""

    __slots__ = ()

    def __call__(self, value: Any) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        raise NotImplementedError


class _Equals(_NamedPredicate):
    __slots__ = ("expected",)

    def __init__(self, expected: Any) -> None:
        self.expected = expected

    def __call__(self, value: Any) -> bool:
        return bool(value == self.expected)

    def __repr__(self) -> str:
        return f"equals({self.expected!r})"


class _Contains(_NamedPredicate):
    __slots__ = ("item",)

    def __init__(self, item: Any) -> None:
        self.item = item

    def __call__(self, value: Any) -> bool:
        if isinstance(value, bytes) and isinstance(self.item, str):
            return self.item.encode("utf-8") in value
        try:
            return self.item in value
        except TypeError:
            return False

    def __repr__(self) -> str:
        return f"contains({self.item!r})"


class _MatchesRegex(_NamedPredicate):
    __slots__ = ("pattern",)

    def __init__(self, pattern: str | re.Pattern[str]) -> None:
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern

    def __call__(self, value: Any) -> bool:
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if not isinstance(value, str):
            return False
        return self.pattern.search(value) is not None

    def __repr__(self) -> str:
        return f"matches_regex({self.pattern.pattern!r})"


class _HasFields(_NamedPredicate):
    __slots__ = ("fields",)

    def __init__(self, fields: dict[str, Any]) -> None:
        self.fields = fields

    def __call__(self, value: Any) -> bool:
        for field_name, expected in self.fields.items():
            if isinstance(value, Mapping):
                actual = value.get(field_name, _MISSING)
            else:
                actual = getattr(value, field_name, _MISSING)
            if actual is _MISSING or actual != expected:
                return False
        return True

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.fields.items())
        return f"has_fields({args})"


class _AllOf(_NamedPredicate):
    __slots__ = ("predicates",)

    def __init__(self, predicates: tuple[Predicate, ...]) -> None:
        self.predicates = predicates

    def __call__(self, value: Any) -> bool:
        return all(p(value) for p in self.predicates)

    def __repr__(self) -> str:
        return f"all_of({', '.join(predicate_name(p) for p in self.predicates)})"


class _AnyOf(_NamedPredicate):
    __slots__ = ("predicates",)

    def __init__(self, predicates: tuple[Predicate, ...]) -> None:
        self.predicates = predicates

    def __call__(self, value: Any) -> bool:
        return any(p(value) for p in self.predicates)

    def __repr__(self) -> str:
        return f"any_of({', '.join(predicate_name(p) for p in self.predicates)})"


class _Not(_NamedPredicate):
    __slots__ = ("predicate",)

    def __init__(self, predicate: Predicate) -> None:
        self.predicate = predicate

    def __call__(self, value: Any) -> bool:
        return not self.predicate(value)

    def __repr__(self) -> str:
        return f"not_({predicate_name(self.predicate)})"


def equals(expected: Any) -> Predicate:
    """Payload equals ``expected``."""
    return _Equals(expected)


def contains(item: Any) -> Predicate:
    """``item`` is contained in the payload (substring, element or key)."""
    return _Contains(item)


def matches_regex(pattern: str | re.Pattern[str]) -> Predicate:
    """Text payload contains a match for ``pattern`` (``re.search`` semantics)."""
    return _MatchesRegex(pattern)


def has_fields(**fields: Any) -> Predicate:
    """
    Payload has every given field with the given value.

    Works on mappings (decoded JSON) and on objects with attributes
    (pydantic models decoded with ``ModelDecoder``).
    """
    if not fields:
        raise ValueError("has_fields() requires at least one field")
    return _HasFields(fields)


def all_of(*predicates: Predicate) -> Predicate:
    """All predicates hold for the same payload."""
    if not predicates:
        raise ValueError("all_of() requires at least one predicate")
    return _AllOf(predicates)


def any_of(*predicates: Predicate) -> Predicate:
    """At least one predicate holds."""
    if not predicates:
        raise ValueError("any_of() requires at least one predicate")
    return _AnyOf(predicates)


def not_(predicate: Predicate) -> Predicate:
    """Negation of ``predicate``."""
    return _Not(predicate)


__all__ = [
    "predicate_name",
    "equals",
    "contains",
    "matches_regex",
    "has_fields",
    "all_of",
    "any_of",
    "not_",
]
