"""Bounded per-mode history of decoded messages."""

from __future__ import annotations

from collections import deque
from itertools import islice
from typing import Any, Deque, Dict, List, Optional

from ..constants import RING_BUFFER_SIZE


class RingBufferStore:
    """Keeps the most recent decoder records for every mode seen on the bus.

    Buffers are created on the first record of a mode and live as long as the
    store. When a buffer is full the oldest record is evicted.
    """

    def __init__(self, capacity: int = RING_BUFFER_SIZE) -> None:
        if capacity <= 0:
            raise ValueError("Ring buffer capacity must be positive")
        self.capacity = capacity
        self._buffers: Dict[str, Deque[Any]] = {}

    def push(self, mode: str, record: Any) -> None:
        buffer = self._buffers.get(mode)
        if buffer is None:
            buffer = deque(maxlen=self.capacity)
            self._buffers[mode] = buffer
        buffer.append(record)

    def last_n(self, mode: str, count: int) -> List[Any]:
        """Return up to ``count`` records of ``mode``, most recent first."""

        buffer = self._buffers.get(mode)
        if not buffer or count <= 0:
            return []
        return list(islice(reversed(buffer), count))

    def modes(self) -> List[str]:
        return list(self._buffers)

    def resolve(self, mode: str) -> Optional[str]:
        """Case-insensitive lookup of a known mode."""

        key = mode.upper()
        return key if key in self._buffers else None

    def size(self, mode: str) -> int:
        buffer = self._buffers.get(mode)
        return len(buffer) if buffer is not None else 0

    def __contains__(self, mode: object) -> bool:
        return mode in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)
