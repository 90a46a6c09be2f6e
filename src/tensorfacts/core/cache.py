from __future__ import annotations

from typing import Callable, Dict, Generic, Iterator, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class Cache(Generic[K, V]):
    """Index-keyed store that builds each child at most once.

    A child returned by :meth:`get` stays the same object for as long as the
    cache lives; nothing is ever evicted or rebuilt.
    """

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: Dict[K, V] = {}

    def get(self, key: K, constructor: Callable[[], V]) -> V:
        try:
            return self._items[key]
        except KeyError:
            pass
        value = constructor()
        # A re-entrant constructor may already have stored this key.
        return self._items.setdefault(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[K]:
        return iter(self._items)

    def __repr__(self) -> str:
        return f"Cache({sorted(self._items, key=repr)!r})"
