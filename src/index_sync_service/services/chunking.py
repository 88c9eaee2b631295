"""Bounded accumulation of transformed records into dispatchable chunks."""

from typing import Generic, TypeVar

from shared.constants import DEFAULT_CHUNK_SIZE

T = TypeVar("T")


class ChunkAccumulator(Generic[T]):
    """Collects items until ``capacity`` is reached, then hands the chunk out.

    Every chunk returned holds between 1 and ``capacity`` items, and the
    accumulator never holds more than one open chunk.
    """

    def __init__(self, capacity: int = DEFAULT_CHUNK_SIZE):
        if capacity < 1:
            raise ValueError(f"Chunk capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._items: list[T] = []

    def __len__(self) -> int:
        return len(self._items)

    def append(self, item: T) -> list[T] | None:
        """Add an item; return the completed chunk when it reaches capacity."""
        self._items.append(item)
        if len(self._items) >= self.capacity:
            return self._take()
        return None

    def flush_remainder(self) -> list[T] | None:
        """Return the final short chunk, or None if nothing is pending."""
        if not self._items:
            return None
        return self._take()

    def _take(self) -> list[T]:
        chunk = self._items
        self._items = []
        return chunk
