import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, Optional


@dataclass(eq=False)
class TimerHandle:
    key: Hashable
    delay: float
    callback: Callable[[], object]
    repeat: bool = False
    deadline: float = 0.0
    seq: int = 0
    cancelled: bool = field(default=False)


class Scheduler:
    """Cancellable one-shot and recurring timers keyed by ``(room_id, purpose)``.

    - Scheduling a key supersedes whatever timer was pending under it
    - A worker re-checks that its handle is still the current one before firing
    - Recurring timers keep going while the callback returns a truthy value
    - With ``background=False`` (TESTING) timers are only recorded; call ``fire``
    """

    def __init__(self, socketio, logger=None, background: bool = True):
        self.socketio = socketio
        self.logger = logger or logging.getLogger(__name__)
        self.background = background
        self._lock = threading.Lock()
        self._timers: Dict[Hashable, TimerHandle] = {}
        self._seq = itertools.count(1)

    def schedule(self, key, delay: float, callback, repeat: bool = False) -> TimerHandle:
        handle = TimerHandle(key=key, delay=max(0.0, float(delay)), callback=callback,
                             repeat=repeat, deadline=time.time() + delay, seq=next(self._seq))
        with self._lock:
            previous = self._timers.get(key)
            if previous is not None:
                previous.cancelled = True
            self._timers[key] = handle
        self.logger.info(f"[timer-set] key={key} delay={handle.delay}s repeat={repeat} seq={handle.seq}")
        if self.background:
            self.socketio.start_background_task(self._worker, handle)
        return handle

    def cancel(self, key) -> bool:
        with self._lock:
            handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancelled = True
        self.logger.info(f"[timer-cancel] key={key} seq={handle.seq}")
        return True

    def cancel_room(self, room_id: str) -> int:
        with self._lock:
            keys = [k for k in self._timers if isinstance(k, tuple) and k and k[0] == room_id]
        return sum(1 for k in keys if self.cancel(k))

    def is_pending(self, key) -> bool:
        with self._lock:
            return key in self._timers

    def get(self, key) -> Optional[TimerHandle]:
        with self._lock:
            return self._timers.get(key)

    def fire(self, key) -> bool:
        """Run the pending timer for ``key`` now. Returns False if none was pending."""
        handle = self.get(key)
        if handle is None:
            return False
        keep = self._run(handle)
        if not (handle.repeat and keep):
            self._discard(handle)
        return True

    def _is_current(self, handle: TimerHandle) -> bool:
        with self._lock:
            return not handle.cancelled and self._timers.get(handle.key) is handle

    def _discard(self, handle: TimerHandle) -> None:
        with self._lock:
            if self._timers.get(handle.key) is handle:
                del self._timers[handle.key]

    def _run(self, handle: TimerHandle):
        self.logger.info(f"[timer-fire] key={handle.key} seq={handle.seq}")
        try:
            return handle.callback()
        except Exception:
            # a broken callback must not take the worker (or other rooms) down
            self.logger.exception(f"[timer-error] key={handle.key} seq={handle.seq}")
            return False

    def _worker(self, handle: TimerHandle) -> None:
        while True:
            self.socketio.sleep(handle.delay)
            if not self._is_current(handle):
                self.logger.info(f"[timer-abort] key={handle.key} seq={handle.seq} superseded or cancelled")
                return
            keep = self._run(handle)
            if not (handle.repeat and keep) or not self._is_current(handle):
                self._discard(handle)
                return
            handle.deadline = time.time() + handle.delay
