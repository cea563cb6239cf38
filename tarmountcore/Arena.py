from collections.abc import Iterator
from typing import Generic, Optional, TypeVar

ValueType = TypeVar('ValueType')


class Arena(Generic[ValueType]):
    """
    Append-only store addressing its values by dense, zero-based positions.

    The position of a value never changes after it has been pushed, which makes it usable as a stable identity.
    The archive index uses position = inode - 1. There is no deletion. Access outside the valid range,
    including negative positions, returns None instead of wrapping around like Python lists do.
    Because Python hands out references, get also serves for modifying the stored objects in place.
    """

    def __init__(self) -> None:
        self._values: list[ValueType] = []

    def push(self, value: ValueType) -> int:
        self._values.append(value)
        return len(self._values) - 1

    def insert(self, value: ValueType, position: int) -> None:
        """Inserts at the given position and shifts later values like list.insert. Gaps are not allowed."""
        if position < 0 or position > len(self._values):
            raise IndexError(f"Position {position} is outside of the arena with {len(self._values)} values!")
        self._values.insert(position, value)

    def get(self, position: int) -> Optional[ValueType]:
        if 0 <= position < len(self._values):
            return self._values[position]
        return None

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[ValueType]:
        return iter(self._values)
