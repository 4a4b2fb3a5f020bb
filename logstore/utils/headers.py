# logstore/utils/headers.py
"""
Ordered multi-valued header map.

HTTP allows a header name to repeat, and Caddy logs headers as
`{"Name": ["v1", "v2"], ...}`. `HeaderMap` keeps exactly that shape:
names in first-insertion order, each with its values in arrival order.
Names are compared as written (no case folding) so that the stored
form round-trips byte for byte.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple


class HeaderMap:
    """Ordered mapping of header name -> list of values."""

    __slots__ = ("_items",)

    def __init__(self, items: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._items: Dict[str, List[str]] = {}
        if items:
            for name, values in items.items():
                for value in values:
                    self.add(name, value)

    def add(self, name: str, value: str) -> None:
        """Append `value` under `name`, keeping earlier values."""
        if not isinstance(name, str):
            raise ValueError(f"header name must be a string, got {type(name).__name__}")
        if not isinstance(value, str):
            raise ValueError(f"header {name!r} value must be a string, got {type(value).__name__}")
        self._items.setdefault(name, []).append(value)

    def get_all(self, name: str) -> List[str]:
        return list(self._items.get(name, ()))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value for `name`, or `default`."""
        values = self._items.get(name)
        return values[0] if values else default

    def items(self) -> Iterator[Tuple[str, str]]:
        """Flattened `(name, value)` pairs in stored order."""
        for name, values in self._items.items():
            for value in values:
                yield name, value

    def to_dict(self) -> Dict[str, List[str]]:
        """JSON-ready copy: `{name: [values]}`."""
        return {name: list(values) for name, values in self._items.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "HeaderMap":
        """
        Build from the `{name: [values]}` blob form.

        Raises:
            ValueError: if `data` is not a mapping of strings to lists of strings.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"header block must be an object, got {type(data).__name__}")
        headers = cls()
        for name, values in data.items():
            if not isinstance(values, list):
                raise ValueError(f"header {name!r} must map to a list of values")
            for value in values:
                headers.add(name, value)
            if not values:
                # keep names that were logged with no values
                headers._items.setdefault(name, [])
        return headers

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]]) -> "HeaderMap":
        headers = cls()
        for name, value in pairs:
            headers.add(name, value)
        return headers

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeaderMap):
            return NotImplemented
        # dict equality ignores order; compare the ordered item lists too
        return list(self._items.items()) == list(other._items.items())

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"HeaderMap({self._items!r})"
