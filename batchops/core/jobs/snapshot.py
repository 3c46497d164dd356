from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class SnapshotCell(Generic[T]):
    """Mutable holder for the latest entity snapshot.

    Runners read it at call time for every item; a value captured at job start
    would be stale after the first few completion callbacks.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._version = 0

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._version += 1

    def update(self, fn: Callable[[T], T]) -> T:
        self.set(fn(self._value))
        return self._value

    @property
    def version(self) -> int:
        return self._version
