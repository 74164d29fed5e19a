"""Process-wide connectivity signal shared by every pipeline."""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[], None]


class ConnectivityMonitor:
    """Queryable online/offline flag with transition listeners.

    Read by any pipeline; written only by the transport layer (the REST
    gateway and its health probe).
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._online_event: asyncio.Event | None = None
        self._on_online: list[TransitionCallback] = []
        self._on_offline: list[TransitionCallback] = []

    def is_online(self) -> bool:
        return self._online

    def _event(self) -> asyncio.Event:
        # Created lazily so the monitor can be built outside a running loop
        if self._online_event is None:
            self._online_event = asyncio.Event()
            if self._online:
                self._online_event.set()
        return self._online_event

    async def wait_for_online(self) -> None:
        """Block until the transport reports the remote as reachable."""
        if self._online:
            return
        logger.debug("Offline, waiting for network...")
        await self._event().wait()

    def set_online(self, online: bool) -> None:
        """Record the current connectivity state and notify on transitions."""
        if online == self._online:
            return

        self._online = online
        event = self._event()
        if online:
            event.set()
            logger.info("Connectivity restored")
            listeners = list(self._on_online)
        else:
            event.clear()
            logger.info("Connectivity lost")
            listeners = list(self._on_offline)

        for callback in listeners:
            try:
                callback()
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

    def on_transition_to_online(self, callback: TransitionCallback) -> Callable[[], None]:
        """Register a callback for offline -> online transitions.

        Returns:
            Function that removes the callback.
        """
        self._on_online.append(callback)
        return lambda: _discard(self._on_online, callback)

    def on_transition_to_offline(self, callback: TransitionCallback) -> Callable[[], None]:
        """Register a callback for online -> offline transitions."""
        self._on_offline.append(callback)
        return lambda: _discard(self._on_offline, callback)

    async def probe_loop(
        self,
        check: Callable[[], Awaitable[bool]],
        interval_seconds: float,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Periodically run a health check while offline.

        Args:
            check: Coroutine function returning True when the remote answers.
            interval_seconds: Delay between probes.
            stop_event: Event to signal the loop should stop.
        """
        while not (stop_event and stop_event.is_set()):
            if not self._online and await check():
                self.set_online(True)

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(interval_seconds)


def _discard(listeners: list[TransitionCallback], callback: TransitionCallback) -> None:
    if callback in listeners:
        listeners.remove(callback)
