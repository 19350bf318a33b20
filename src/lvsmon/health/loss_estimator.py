"""Sliding-window packet loss estimator.

Keeps the most recent loss samples of every backend in a bounded FIFO and
reports their integer mean. With one probe per interval, a window of W
samples approximates the loss rate over the last W intervals without storing
timestamps.

Author: LVS Monitor Team
Version: 1.0.0
"""

import threading
from collections import deque
from typing import Deque, Dict, Optional, Tuple

MIN_LOSS = 0
MAX_LOSS = 100  # also the sentinel for an unreachable backend


def clamp_loss(sample: int) -> int:
    """Bound a loss sample to the 0-100 percent range."""
    return max(MIN_LOSS, min(MAX_LOSS, int(sample)))


class LossEstimator:
    """Per-backend bounded loss history with an arithmetic mean."""

    def __init__(self, window_size: int = 60):
        """Initialize the estimator.

        Args:
            window_size: Number of samples kept per backend (W)

        Raises:
            ValueError: If window_size is not positive
        """
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._window_size = window_size
        self._histories: Dict[str, Deque[int]] = {}
        self.lock = threading.Lock()

    @property
    def window_size(self) -> int:
        return self._window_size

    def record(self, backend: str, sample: int) -> None:
        """Append a sample, evicting the oldest one when the window is full.

        Args:
            backend: Backend address
            sample: Loss percentage of one measurement round
        """
        with self.lock:
            history = self._histories.get(backend)
            if history is None:
                history = deque(maxlen=self._window_size)
                self._histories[backend] = history
            history.append(clamp_loss(sample))

    def average(self, backend: str) -> int:
        """Mean of the current history, truncated; 0 when nothing is recorded."""
        with self.lock:
            history = self._histories.get(backend)
            if not history:
                return 0
            return sum(history) // len(history)

    def history(self, backend: str) -> Tuple[int, ...]:
        """Copy of the retained samples, oldest first."""
        with self.lock:
            return tuple(self._histories.get(backend, ()))

    def latest(self, backend: str) -> Optional[int]:
        with self.lock:
            history = self._histories.get(backend)
            return history[-1] if history else None

    def reset(self, backend: str) -> None:
        with self.lock:
            self._histories.pop(backend, None)
