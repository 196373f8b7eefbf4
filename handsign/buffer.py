"""
Rolling window over the live detector stream.
"""

from collections import deque
from typing import Callable, List, Optional

from .landmarks import Frame


class SlidingPredictionBuffer:
    """
    Keeps the most recent `size` frames and emits the full window on every
    push once it has filled up.
    """

    def __init__(self, size: int, on_window: Optional[Callable[[List[Frame]], None]] = None):
        if size < 1:
            raise ValueError(f"size must be positive, got {size}")
        self.size = size
        self.on_window = on_window
        self._frames: deque = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def is_full(self) -> bool:
        return len(self._frames) == self.size

    def push(self, frame: Frame) -> Optional[List[Frame]]:
        """
        Append a frame, dropping the oldest beyond `size`.

        Returns:
            The current window (oldest first) once full, else None
        """
        self._frames.append(frame)
        if not self.is_full:
            return None

        window = list(self._frames)
        if self.on_window:
            self.on_window(window)
        return window

    def window(self) -> List[Frame]:
        """Current contents, oldest first."""
        return list(self._frames)

    def clear(self) -> None:
        self._frames.clear()
