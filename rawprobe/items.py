"""Ordered name/value pair list used for headers, queries and responses."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

Pair = tuple[str, str]


class ItemList(list):
    """List of ``(key, value)`` pairs where keys may repeat.

    Lookup by key returns the first matching pair.  Insertion order is kept
    so duplicate response headers (two ``Set-Cookie`` lines, for example)
    remain two separate entries.
    """

    def __init__(self, pairs: Optional[Iterable[Pair]] = None) -> None:
        super().__init__()
        for key, value in pairs or ():
            self.add(key, value)

    def add(self, key: str, value: str) -> None:
        self.append((key, value))

    def contains_key(self, key: str) -> bool:
        return any(item_key == key for item_key, _ in self)

    def first(self, key: str) -> str:
        for item_key, value in self:
            if item_key == key:
                return value
        raise KeyError(key)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            return self.first(key)
        except KeyError:
            return default

    def get_all(self, key: str) -> list[str]:
        return [value for item_key, value in self if item_key == key]

    def keys(self) -> list[str]:
        return [key for key, _ in self]

    def find_key(self, key: str) -> Optional[str]:
        """Return the first stored key equal to ``key`` ignoring case."""

        lowered = key.lower()
        for item_key, _ in self:
            if item_key.strip().lower() == lowered:
                return item_key
        return None

    def as_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for key, value in self:
            result.setdefault(key, value)
        return result

    def __getitem__(self, key):  # type: ignore[override]
        if isinstance(key, str):
            return self.first(key)
        return super().__getitem__(key)

    def __repr__(self) -> str:
        return f"ItemList({list(self)!r})"


__all__ = ["ItemList", "Pair"]
