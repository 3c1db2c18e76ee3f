"""Sorted, duplicate-free collection of names.

Used for result, source and licence name sets wherever iteration order
must not depend on insertion or hash order.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator


class StringSet:
    """Ordered set of strings, always iterated in sorted order.

    Examples
    --------
    >>> s = StringSet(["zlib", "busybox", "zlib"])
    >>> list(s)
    ['busybox', 'zlib']
    >>> "zlib" in s
    True
    """

    __slots__ = ("_items", "_sorted")

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: set[str] = set()
        self._sorted: list[str] | None = []
        self.insert_many(items)

    def insert(self, item: str) -> None:
        if not isinstance(item, str):
            raise TypeError(f"StringSet only holds strings, got {type(item).__name__}")
        if item not in self._items:
            self._items.add(item)
            self._sorted = None

    def insert_many(self, items: Iterable[str]) -> None:
        for item in items:
            self.insert(item)

    def copy(self) -> StringSet:
        return StringSet(self._items)

    def to_list(self) -> list[str]:
        if self._sorted is None:
            self._sorted = sorted(self._items)
        return list(self._sorted)

    def concat(self, sep: str = " ") -> str:
        return sep.join(self.to_list())

    def union(self, other: Iterable[str]) -> StringSet:
        merged = self.copy()
        merged.insert_many(other)
        return merged

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_list())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, StringSet):
            return self._items == other._items
        return NotImplemented

    def __repr__(self) -> str:
        return f"StringSet({self.to_list()!r})"
