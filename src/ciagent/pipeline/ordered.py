from __future__ import annotations

from typing import Dict, Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class DuplicateKeyError(ValueError):
    """Raised when an OrderedMap is built from pairs with a repeated key."""
    pass


class OrderedMap(Generic[K, V]):
    """
    Insertion-ordered mapping with an explicit key list.

    Used for pipeline `env` blocks, whose order must survive a parse and
    re-serialize cycle.
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[K, V]]] = None):
        self._keys: List[K] = []
        self._values: Dict[K, V] = {}
        for k, v in pairs or ():
            if k in self._values:
                raise DuplicateKeyError(f"duplicate key {k!r}")
            self.set(k, v)

    @classmethod
    def from_dict(cls, d: Dict[K, V]) -> "OrderedMap[K, V]":
        return cls(d.items())

    def set(self, key: K, value: V) -> None:
        if key not in self._values:
            self._keys.append(key)
        self._values[key] = value

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._values.get(key, default)

    def delete(self, key: K) -> None:
        if key in self._values:
            del self._values[key]
            self._keys.remove(key)

    def replace(self, old: K, new: K, value: V) -> None:
        """Swap key `old` for `new` in place, keeping its position."""
        if old == new:
            self._values[old] = value
            return
        if new in self._values:
            self.delete(new)
        idx = self._keys.index(old)
        self._keys[idx] = new
        del self._values[old]
        self._values[new] = value

    def items(self) -> List[Tuple[K, V]]:
        return [(k, self._values[k]) for k in self._keys]

    def keys(self) -> List[K]:
        return list(self._keys)

    def to_dict(self) -> Dict[K, V]:
        return {k: self._values[k] for k in self._keys}

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __getitem__(self, key: K) -> V:
        return self._values[key]

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._keys))

    def __len__(self) -> int:
        return len(self._keys)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OrderedMap):
            return NotImplemented
        return self.items() == other.items()

    def __repr__(self) -> str:
        return f"OrderedMap({self.items()!r})"
