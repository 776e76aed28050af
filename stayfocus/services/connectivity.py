"""Online/offline detection for the persistent store."""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[], Awaitable[None]]


class ConnectivityMonitor:
    """
    Tracks whether the store is reachable.

    A background task probes the store every `interval` seconds; listeners
    registered with add_listener() are awaited on every offline → online
    transition.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        interval: float = 15,
        initially_online: bool = True,
    ):
        self._probe = probe
        self.interval = interval
        self._online = initially_online
        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def set_online(self, online: bool) -> None:
        """Record the observed connectivity and fire transition listeners."""
        was_online = self._online
        self._online = online

        if was_online and not online:
            logger.warning("Хранилище недоступно — переходим в офлайн-режим")
        elif not was_online and online:
            logger.info("Связь с хранилищем восстановлена")
            for listener in list(self._listeners):
                try:
                    await listener()
                except Exception:
                    logger.exception("Connectivity listener %r failed", listener)

    async def check(self) -> bool:
        """Probe the store once and update the state."""
        try:
            online = bool(await self._probe())
        except Exception as e:
            logger.debug("Connectivity probe failed: %s", e)
            online = False
        await self.set_online(online)
        return online

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start periodic probing (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
