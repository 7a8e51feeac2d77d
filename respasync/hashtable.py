"""Chained hash table with power-of-two bucket counts.

Keys are hashed with a caller-supplied function and compared with a
caller-supplied predicate, so keys that are not natively hashable (or that
need custom equality) can be stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

__all__ = ["HashTable", "gen_hash_function", "INITIAL_SIZE"]

INITIAL_SIZE = 4
_LONG_MAX = 2**63 - 1
_UINT_MASK = 0xFFFFFFFF


def gen_hash_function(data: bytes | bytearray | memoryview | str) -> int:
    """Return the 32-bit Bernstein (djb2) hash of ``data``."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    value = 5381
    for byte in bytes(data):
        value = ((value << 5) + value + byte) & _UINT_MASK
    return value


def _next_power(size: int) -> int:
    if size >= _LONG_MAX:
        return _LONG_MAX
    power = INITIAL_SIZE
    while power < size:
        power *= 2
    return power


@dataclass
class _Entry:
    key: Any
    value: Any


class HashTable:
    """Hash table with separate chaining that doubles when full.

    ``hash_function(key)`` must return a non-negative integer;
    ``key_compare(a, b)`` returns whether two keys are equal and defaults
    to ``==``.
    """

    def __init__(
        self,
        hash_function: Callable[[Any], int],
        key_compare: Optional[Callable[[Any, Any], bool]] = None,
    ) -> None:
        self._hash = hash_function
        self._compare = key_compare if key_compare is not None else (lambda a, b: a == b)
        self._table: list[list[_Entry]] = []
        self._used = 0

    # -- internals -------------------------------------------------------

    @property
    def _sizemask(self) -> int:
        return len(self._table) - 1

    def _bucket_index(self, key: Any) -> int:
        return self._hash(key) & self._sizemask

    def _find_entry(self, key: Any) -> Optional[_Entry]:
        if not self._table:
            return None
        for entry in self._table[self._bucket_index(key)]:
            if self._compare(key, entry.key):
                return entry
        return None

    def _expand_if_needed(self) -> None:
        if not self._table:
            self.expand(INITIAL_SIZE)
        elif self._used == len(self._table):
            self.expand(len(self._table) * 2)

    # -- public API ------------------------------------------------------

    def expand(self, size: int) -> None:
        """Resize to the smallest power of two (at least 4) holding ``size``.

        Raises ValueError if ``size`` is smaller than the number of entries.
        """
        if self._used > size:
            raise ValueError(
                f"cannot expand to {size} slots: table holds {self._used} entries"
            )
        realsize = _next_power(size)
        new_table: list[list[_Entry]] = [[] for _ in range(realsize)]
        mask = realsize - 1
        for bucket in self._table:
            for entry in bucket:
                new_table[self._hash(entry.key) & mask].insert(0, entry)
        self._table = new_table

    def add(self, key: Any, value: Any) -> None:
        """Insert a new key. Raises KeyError if the key is already present."""
        self._expand_if_needed()
        bucket = self._table[self._bucket_index(key)]
        if any(self._compare(key, entry.key) for entry in bucket):
            raise KeyError(key)
        bucket.insert(0, _Entry(key, value))
        self._used += 1

    def replace(self, key: Any, value: Any) -> bool:
        """Insert or overwrite; return True if the key was newly added."""
        try:
            self.add(key, value)
        except KeyError:
            entry = self._find_entry(key)
            if entry is None:
                return False
            entry.value = value
            return False
        return True

    def delete(self, key: Any) -> None:
        """Remove ``key``. Raises KeyError if it is not present."""
        if not self._table:
            raise KeyError(key)
        bucket = self._table[self._bucket_index(key)]
        for position, entry in enumerate(bucket):
            if self._compare(key, entry.key):
                del bucket[position]
                self._used -= 1
                return
        raise KeyError(key)

    def find(self, key: Any) -> Any:
        """Return the value stored under ``key``, or None if absent."""
        entry = self._find_entry(key)
        return None if entry is None else entry.value

    def clear(self) -> None:
        """Remove every entry and release the bucket array."""
        self._table = []
        self._used = 0

    def slots(self) -> int:
        """Return the current number of buckets."""
        return len(self._table)

    def __len__(self) -> int:
        return self._used

    def __contains__(self, key: Any) -> bool:
        return self._find_entry(key) is not None

    def __iter__(self) -> Iterator[tuple[Any, Any]]:
        """Yield ``(key, value)`` pairs; deleting the yielded key is safe."""
        for index in range(len(self._table)):
            if index >= len(self._table):
                break
            for entry in list(self._table[index]):
                yield entry.key, entry.value