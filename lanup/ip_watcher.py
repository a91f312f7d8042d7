#!/usr/bin/env python3
"""
lanup Network Change Watcher

This module re-runs the interface selection cycle on a fixed interval and
reports when the selected LAN address changes, for example when a laptop moves
from Wi-Fi to Ethernet or DHCP hands out a new lease.

**Lifecycle:**
    IDLE -> RUNNING -> STOPPED (terminal)

``start()`` resolves the initial address before polling begins; if no address
can be found the error is raised and the watcher never enters RUNNING. While
running, a failed poll is logged and retried on the next tick. ``stop()`` wakes
the tick wait immediately; a change callback that is already executing is
allowed to finish before ``start()`` returns.

**Two ways to consume changes:**
    ```python
    # Callback
    watcher = IPWatcher(interval=5, on_change=lambda old, new: print(old, "->", new))
    await watcher.start()

    # Event stream
    watcher = IPWatcher(interval=5)
    task = asyncio.create_task(watcher.start())
    async for change in watcher.changes():
        print(change.old_ip, "->", change.new_ip)
    ```

The callback runs on the watcher's own task, so a slow callback delays the next
poll.

License: MIT
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from .errors import LanupError
from .network_utils import NetworkCandidate, detect_local_ip
from .utils import get_logger

ChangeCallback = Callable[[str, str], Union[None, Awaitable[None]]]


class WatcherState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class AddressChange:
    """A transition of the selected LAN address."""
    old_ip: str
    new_ip: str
    interface_name: str


class IPWatcher:
    """
    Polls the interface selection cycle and reports address transitions.

    Attributes:
        interval (float): Seconds between polls.
        on_change (Optional[ChangeCallback]): Called with ``(old_ip, new_ip)``
            on every change, never for the initial address. May be a plain
            function or a coroutine function.

    Example:
        ```python
        async def regenerate(old_ip, new_ip):
            logger.warning(f"Network changed {old_ip} -> {new_ip}")

        watcher = IPWatcher(interval=config.check_interval, on_change=regenerate)
        loop.add_signal_handler(signal.SIGINT, watcher.stop)
        await watcher.start()
        ```
    """

    DEFAULT_INTERVAL = 5.0

    def __init__(self,
                 interval: Optional[float] = None,
                 on_change: Optional[ChangeCallback] = None,
                 detector: Optional[Callable[[], NetworkCandidate]] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            interval: Poll interval in seconds; ``None`` or non-positive uses 5 seconds.
            on_change: Change callback.
            detector: Selection cycle to run each tick, ``detect_local_ip`` by default.
            logger: Logger, ``lanup.watcher`` by default.
        """
        self.interval = float(interval) if interval and interval > 0 else self.DEFAULT_INTERVAL
        self.on_change = on_change
        self.logger = logger or get_logger("lanup.watcher")

        self._detector = detector or detect_local_ip
        self._lock = threading.Lock()
        self._current_ip: Optional[str] = None
        self._state = WatcherState.IDLE
        self._stop_requested = False
        self._stop_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscribers: List[asyncio.Queue] = []

    @property
    def state(self) -> WatcherState:
        with self._lock:
            return self._state

    @property
    def current_ip(self) -> Optional[str]:
        """Last selected address; safe to read from any thread."""
        with self._lock:
            return self._current_ip

    def get_current_ip(self) -> Optional[str]:
        return self.current_ip

    async def start(self) -> None:
        """
        Resolve the initial address, then poll until ``stop()`` is called.

        ``state`` stays ``RUNNING`` until the loop has exited, including while
        a callback that called ``stop()`` is still finishing.

        Raises:
            NoUsableInterfaceError: If the initial address cannot be determined.
            RuntimeError: If the watcher is already running.
        """
        with self._lock:
            if self._state is WatcherState.STOPPED:
                return
            if self._state is WatcherState.RUNNING or self._loop is not None:
                raise RuntimeError("IPWatcher is already running")
            if self._stop_requested:
                self._state = WatcherState.STOPPED
                return
            self._loop = asyncio.get_running_loop()

        try:
            initial = self._detector()
        except BaseException:
            with self._lock:
                self._loop = None
            raise

        with self._lock:
            self._current_ip = initial.address
            self._state = WatcherState.RUNNING

        self.logger.info(f"Watching for network changes every {self.interval:g}s "
                         f"(current IP {initial.address} on {initial.interface_name})")

        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass

                if self._stop_event.is_set():
                    break

                await self.check_ip_change()
        finally:
            with self._lock:
                self._state = WatcherState.STOPPED
            for queue in list(self._subscribers):
                queue.put_nowait(None)
            self.logger.info("Network watcher stopped")

    def stop(self) -> None:
        """
        Stop the watcher. Safe to call more than once and from another thread.

        A pending tick wait returns at once without another poll; a callback
        already in progress runs to completion before ``start()`` returns. A
        watcher that was never started is marked stopped immediately.
        """
        with self._lock:
            if self._stop_requested or self._state is WatcherState.STOPPED:
                return
            self._stop_requested = True
            if self._state is WatcherState.IDLE and self._loop is None:
                self._state = WatcherState.STOPPED

        loop = self._loop
        if loop is None or loop.is_closed():
            self._stop_event.set()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._stop_event.set()
        else:
            loop.call_soon_threadsafe(self._stop_event.set)

    async def check_ip_change(self) -> bool:
        """
        Run one selection cycle and report a change if the address moved.

        Detection failures are logged and swallowed so the watcher keeps
        polling. A failing callback is logged as well.

        Returns:
            bool: True if the address changed on this tick.
        """
        try:
            candidate = self._detector()
        except (LanupError, OSError) as e:
            self.logger.warning(f"Network detection failed, retrying next tick: {e}")
            return False

        with self._lock:
            old_ip = self._current_ip
            new_ip = candidate.address
            if old_ip == new_ip:
                return False
            self._current_ip = new_ip

        self.logger.warning(f"Network interface changed: {old_ip} -> {new_ip} "
                            f"({candidate.interface_name})")

        change = AddressChange(old_ip=old_ip, new_ip=new_ip, interface_name=candidate.interface_name)
        for queue in list(self._subscribers):
            queue.put_nowait(change)

        if self.on_change is not None:
            try:
                result = self.on_change(old_ip, new_ip)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(f"Network change callback failed: {e}", exc_info=True)

        return True

    async def changes(self) -> AsyncIterator[AddressChange]:
        """
        Yield address changes until the watcher stops.

        Each call creates an independent subscription that sees changes from
        the moment it is created.
        """
        if self.state is WatcherState.STOPPED:
            return

        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                change = await queue.get()
                if change is None:
                    return
                yield change
        finally:
            self._subscribers.remove(queue)
