"""Cancellable repeating timer used to drive periodic engine callbacks."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from backend.utils.logger import get_logger


logger = get_logger(__name__)


class RepeatingTimer:
    """Invoke ``callback`` every ``interval_seconds`` on a daemon thread.

    The callback returns ``False`` to stop the timer from the inside;
    ``cancel()`` stops it from the outside and is safe to call more than once,
    including from within the callback itself.
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Optional[bool]],
        *,
        name: str = "repeating-timer",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._interval = interval_seconds
        self._callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stopped.is_set()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> "RepeatingTimer":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stopped.set()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                keep_running = self._callback()
            except Exception:
                logger.exception("Timer callback failed | timer=%s", self._thread.name)
                self._stopped.set()
                return
            if keep_running is False:
                self._stopped.set()
                return
