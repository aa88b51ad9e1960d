from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional, Protocol

FrameCallback = Callable[[], None]


class FrameScheduler(Protocol):
    def request_frame(self, callback: FrameCallback) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class ManualScheduler:
    """Frames run only when the host calls :meth:`run_pending`."""

    def __init__(self) -> None:
        self._pending: Dict[int, FrameCallback] = {}
        self._next_handle = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def request_frame(self, callback: FrameCallback) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._pending[handle] = callback
        return handle

    def cancel(self, handle: int) -> None:
        self._pending.pop(handle, None)

    def run_pending(self) -> int:
        """Run the frames queued so far; frames they request wait for the next call."""
        ready = self._pending
        self._pending = {}
        for callback in ready.values():
            callback()
        return len(ready)


class AsyncioScheduler:
    def __init__(self, interval: float, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.interval = max(0.0, interval)
        self._loop = loop

    def request_frame(self, callback: FrameCallback) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self.interval, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()
