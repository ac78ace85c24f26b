"""One-shot timer scheduling owned by a ServiceFinder.

Brief:
  Thin wrapper over ``threading.Timer`` that remembers every live timer so the
  owner can cancel all of them at once on shutdown. Tests substitute any
  object with the same ``call_later``/``cancel_all`` surface.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Set

logger = logging.getLogger(__name__)


class TimerHandle:
    """
    Brief: Cancellable handle for one scheduled callback.

    Inputs:
      - timer: the underlying threading.Timer.
      - owner: scheduler that tracks the handle.

    Outputs:
      - TimerHandle instance.
    """

    def __init__(self, owner: "TimerScheduler", delay: float, fn: Callable[[], None]):
        self._owner = owner
        self._fn = fn
        self.cancelled = False
        self._timer = threading.Timer(delay, self._run)
        self._timer.daemon = True

    def _run(self) -> None:
        self._owner._discard(self)
        if self.cancelled:
            return
        try:
            self._fn()
        except Exception:
            logger.exception("Scheduled callback %r failed", self._fn)

    def cancel(self) -> None:
        self.cancelled = True
        self._timer.cancel()
        self._owner._discard(self)


class TimerScheduler:
    """
    Brief: Schedules one-shot callbacks on daemon timer threads.

    Inputs:
      - None

    Outputs:
      - TimerScheduler instance.

    Example:
        >>> s = TimerScheduler()
        >>> h = s.call_later(60, lambda: None)
        >>> s.cancel_all()
        >>> h.cancelled
        True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: Set[TimerHandle] = set()
        self._closed = False

    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        """
        Brief: Run ``fn`` once after ``delay`` seconds.

        Inputs:
          - delay: seconds (negative values run immediately).
          - fn: zero-argument callable.

        Outputs:
          - TimerHandle; after cancel_all() the handle is returned already
            cancelled and never fires.
        """
        handle = TimerHandle(self, max(0.0, float(delay)), fn)
        with self._lock:
            if self._closed:
                handle.cancelled = True
                return handle
            self._live.add(handle)
        handle._timer.start()
        return handle

    def cancel_all(self) -> None:
        """Brief: Cancel every live timer and refuse new ones."""
        with self._lock:
            self._closed = True
            live = list(self._live)
            self._live.clear()
        for handle in live:
            handle.cancel()

    def pending(self) -> int:
        with self._lock:
            return len(self._live)

    def _discard(self, handle: TimerHandle) -> None:
        with self._lock:
            self._live.discard(handle)
