"""Event identity: validation, normalization and matching.

An identifier is one of:
  - a name: delimiter-joined alphanumeric segments (``a.b.c``)
  - a sequence of bare segments, joined into a name (``["a", "b"]``)
  - a compiled ``re.Pattern``, usable for subscribing only
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Union

from relay.errors import InvalidEventIdentifier
from relay.utils import generate_uid

Identifier = Union[str, list, tuple, re.Pattern]

DEFAULT_DELIMITER = "."
RESERVED_NAMES = frozenset({"error", "subscribe", "unsubscribe"})

_SEGMENT = re.compile(r"^[A-Za-z0-9]+$")


@lru_cache(maxsize=16)
def _name_grammar(delimiter: str) -> re.Pattern:
    d = re.escape(delimiter)
    return re.compile(rf"^[A-Za-z0-9]+(?:{d}[A-Za-z0-9]+)*$")


def is_pattern(identifier: Any) -> bool:
    return isinstance(identifier, re.Pattern)


def validate(
    identifier: Any,
    delimiter: str = DEFAULT_DELIMITER,
    reserved: Iterable[str] = RESERVED_NAMES,
) -> None:
    if is_pattern(identifier):
        return
    if isinstance(identifier, str):
        name = identifier.strip()
        if not name:
            raise InvalidEventIdentifier(identifier, "empty name")
        if not _name_grammar(delimiter).match(name):
            raise InvalidEventIdentifier(
                identifier,
                f"segments must be alphanumeric, joined by {delimiter!r}",
            )
    elif isinstance(identifier, (list, tuple)):
        if not identifier:
            raise InvalidEventIdentifier(identifier, "empty segment sequence")
        for seg in identifier:
            if not isinstance(seg, str) or not _SEGMENT.match(seg):
                raise InvalidEventIdentifier(
                    identifier, f"bad segment {seg!r}"
                )
        name = delimiter.join(identifier)
    else:
        raise InvalidEventIdentifier(
            identifier, f"unsupported type {type(identifier).__name__}"
        )
    if name in reserved:
        raise InvalidEventIdentifier(identifier, "reserved name")


def normalize(
    identifier: Any,
    delimiter: str = DEFAULT_DELIMITER,
    reserved: Iterable[str] = RESERVED_NAMES,
) -> Union[str, re.Pattern]:
    validate(identifier, delimiter, reserved)
    if isinstance(identifier, (list, tuple)):
        return delimiter.join(identifier)
    if isinstance(identifier, str):
        return identifier.strip()
    return identifier


def matches(
    identifier: Union[str, re.Pattern], candidate: Union[str, re.Pattern]
) -> bool:
    """True for equal names or a pattern tested against a literal name.

    Pattern tests use ``search`` (unanchored unless the pattern anchors
    itself).
    """
    if is_pattern(identifier) and isinstance(candidate, str):
        return identifier.search(candidate) is not None
    if is_pattern(candidate) and isinstance(identifier, str):
        return candidate.search(identifier) is not None
    return str(identifier) == str(candidate)


class Event:
    """A normalized identifier plus tracing metadata.

    ``uid`` is for logs and debugging only; equality never looks at it.
    """

    __slots__ = ("identifier", "meta", "uid")

    def __init__(
        self,
        identifier: Any,
        meta: Optional[Dict[str, Any]] = None,
        delimiter: str = DEFAULT_DELIMITER,
        reserved: Iterable[str] = RESERVED_NAMES,
    ) -> None:
        self.identifier = normalize(identifier, delimiter, reserved)
        self.meta = meta or {}
        self.uid = generate_uid()

    @classmethod
    def from_identifier(
        cls, event_or_identifier: Any, **kwargs: Any
    ) -> "Event":
        if isinstance(event_or_identifier, Event):
            return event_or_identifier
        return cls(event_or_identifier, **kwargs)

    @property
    def is_pattern(self) -> bool:
        return is_pattern(self.identifier)

    @property
    def name(self) -> str:
        if self.is_pattern:
            raise InvalidEventIdentifier(
                self.identifier, "patterns have no literal name"
            )
        return self.identifier

    def is_match(self, candidate: Union[str, re.Pattern, "Event"]) -> bool:
        if isinstance(candidate, Event):
            candidate = candidate.identifier
        return matches(self.identifier, candidate)

    def __str__(self) -> str:
        if self.is_pattern:
            return self.identifier.pattern
        return self.identifier

    def __repr__(self) -> str:
        return f"Event({self.identifier!r}, uid={self.uid[:8]})"


__all__ = [
    "Identifier",
    "DEFAULT_DELIMITER",
    "RESERVED_NAMES",
    "is_pattern",
    "validate",
    "normalize",
    "matches",
    "Event",
]
