"""Optional payload field container used by the formatters."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Callable

Renderer = Callable[[Any], str]


class Field:
    """A single, possibly missing, value pulled out of a loosely typed payload.

    Formatters build each output segment with :meth:`when_set` or
    :meth:`when_truthy`, which return an empty string when the value is absent,
    so a missing field simply drops its segment.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any = None) -> None:
        self.value = value

    @classmethod
    def of(cls, record: Any, *path: str) -> "Field":
        """Walk ``path`` through nested mappings, yielding an empty field on a miss."""

        current = record
        for key in path:
            if not isinstance(current, Mapping):
                return cls()
            current = current.get(key)
        return cls(current)

    @property
    def is_set(self) -> bool:
        value = self.value
        if value is None:
            return False
        if isinstance(value, float) and math.isnan(value):
            return False
        return True

    @property
    def is_truthy(self) -> bool:
        return self.is_set and bool(self.value)

    def truthy(self) -> "Field":
        """Narrow to the value only when it is truthy (``0`` and ``""`` drop out)."""

        return self if self.is_truthy else Field()

    def map(self, transform: Callable[[Any], Any]) -> "Field":
        if not self.is_set:
            return self
        return Field(transform(self.value))

    def when_set(self, render: Renderer) -> str:
        return render(self.value) if self.is_set else ""

    def when_truthy(self, render: Renderer) -> str:
        return render(self.value) if self.is_truthy else ""

    def __repr__(self) -> str:
        return f"Field({self.value!r})"


def both(first: Field, second: Field) -> bool:
    return first.is_truthy and second.is_truthy


def join_segments(*segments: str, separator: str = " ") -> str:
    return separator.join(segment for segment in segments if segment)
