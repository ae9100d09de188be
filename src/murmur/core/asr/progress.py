"""
Simulated progress for model prewarming.

Prewarming gives no incremental feedback, only a terminal result. The bar is
instead driven by an exponential decay curve that approaches a target fraction
over an expected maximum duration, and is stopped as soon as the real work
returns.
"""

import math
import time
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from ...utils.logger import get_logger
from ..settings.config import PREWARM_MAX_SECONDS, PREWARM_TARGET, PROGRESS_TICK_MS

logger = get_logger(__name__)


class DecayingProgress:
    """
    Progress curve ``p0 + (1 - p0) * (1 - exp(-k * t))`` with
    ``k = -ln(1 - target) / max_time``, capped at ``target``.
    """

    def __init__(self, initial: float, target: float, max_time: float):
        if not 0.0 < target < 1.0:
            raise ValueError(f"target must be in (0, 1), got {target}")
        if max_time <= 0:
            raise ValueError(f"max_time must be positive, got {max_time}")

        self.initial = max(0.0, min(1.0, initial))
        self.target = target
        self.max_time = max_time
        self.decay_constant = -math.log(1.0 - target) / max_time

    def value_at(self, elapsed: float) -> float:
        if elapsed <= 0:
            return min(self.initial, self.target)
        decay_factor = math.exp(-self.decay_constant * elapsed)
        value = self.initial + (1.0 - self.initial) * (1.0 - decay_factor)
        return min(value, self.target)

    def is_complete(self, value: float) -> bool:
        return value >= self.target


class ProgressSimulator(QObject):
    """
    Drives a :class:`DecayingProgress` curve from a QTimer on the thread that
    owns it (the UI thread).

    Signals:
        progress_changed: Emitted on every tick with the capped value
        finished: Emitted once when the simulator stops for any reason
    """

    progress_changed = Signal(float)
    finished = Signal()

    def __init__(
        self,
        tick_ms: int = PROGRESS_TICK_MS,
        clock: Optional[Callable[[], float]] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._clock = clock or time.monotonic
        self._curve: Optional[DecayingProgress] = None
        self._started_at = 0.0
        self._last_value = 0.0

        self._timer = QTimer(self)
        self._timer.setInterval(tick_ms)
        self._timer.timeout.connect(self._tick)

    @property
    def is_running(self) -> bool:
        return self._timer.isActive()

    @property
    def value(self) -> float:
        return self._last_value

    def start(
        self,
        initial: float,
        target: float = PREWARM_TARGET,
        max_time: float = PREWARM_MAX_SECONDS,
    ) -> None:
        self.stop()
        self._curve = DecayingProgress(initial, target, max_time)
        self._last_value = self._curve.initial
        if self._curve.is_complete(self._curve.initial):
            self._curve = None
            self.finished.emit()
            return

        self._started_at = self._clock()
        logger.debug(
            f"Progress simulator started: {initial:.2f} -> {target:.2f} over {max_time}s"
        )
        self._timer.start()

    def stop(self) -> None:
        if self._timer.isActive():
            self._timer.stop()
            self._curve = None
            self.finished.emit()

    def _tick(self) -> None:
        if self._curve is None:
            self._timer.stop()
            return

        value = self._curve.value_at(self._clock() - self._started_at)
        if value > self._last_value:
            self._last_value = value
            self.progress_changed.emit(value)

        if self._curve.is_complete(value):
            self.stop()
