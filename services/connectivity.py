# services/connectivity.py

"""
Наблюдение за состоянием сети.

Наблюдатель публикует ConnectivityStatus: сначала текущее состояние,
затем каждое изменение без повторов. Сетевой наблюдатель опрашивает
check_url по расписанию APScheduler.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import aiohttp
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.models import ConnectivityStatus
from core.streams import LiveValue

logger = logging.getLogger(__name__)

class ConnectivityObserver(ABC):
    """Источник состояний сети"""

    @abstractmethod
    def observe(self) -> AsyncIterator[ConnectivityStatus]:
        ...

    @abstractmethod
    def current_status(self) -> ConnectivityStatus:
        ...

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

class ManualConnectivityObserver(ConnectivityObserver):
    """Состояние задаётся извне через set_status()"""

    def __init__(self, initial: ConnectivityStatus = ConnectivityStatus.UNAVAILABLE):
        self._status = LiveValue(initial, "connectivity")

    def observe(self) -> AsyncIterator[ConnectivityStatus]:
        return self._status.subscribe()

    def current_status(self) -> ConnectivityStatus:
        return self._status.value

    def set_status(self, status: ConnectivityStatus) -> bool:
        changed = self._status.set(status)
        if changed:
            logger.info(f"🌐 Состояние сети: {status.value}")
        return changed

class NetworkConnectivityObserver(ManualConnectivityObserver):
    """Периодическая проверка доступности сервера"""

    def __init__(self, check_url: str, interval_seconds: int = 15,
                 lost_after_failures: int = 3, timeout: float = 3.0):
        super().__init__(ConnectivityStatus.UNAVAILABLE)
        self.check_url = check_url
        self.interval_seconds = interval_seconds
        self.lost_after_failures = lost_after_failures
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.consecutive_failures = 0
        self.ever_available = False
        self.scheduler: Optional[AsyncIOScheduler] = None

    async def _is_reachable(self) -> bool:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(self.check_url) as response:
                    logger.debug(f"🔍 Проверка {self.check_url}: HTTP {response.status}")
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"🔍 Проверка {self.check_url} не удалась: {e}")
            return False

    async def check_once(self) -> ConnectivityStatus:
        """Одна проверка и переход состояния"""
        if await self._is_reachable():
            self.consecutive_failures = 0
            self.ever_available = True
            self.set_status(ConnectivityStatus.AVAILABLE)
            return self.current_status()

        self.consecutive_failures += 1
        if not self.ever_available:
            status = ConnectivityStatus.UNAVAILABLE
        elif self.consecutive_failures >= self.lost_after_failures:
            status = ConnectivityStatus.LOST
        else:
            status = ConnectivityStatus.LOSING
        self.set_status(status)
        return status

    async def start(self) -> None:
        if self.scheduler:
            return
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.check_once,
            IntervalTrigger(seconds=self.interval_seconds),
            id='connectivity_check',
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"📡 Мониторинг сети запущен: {self.check_url} каждые {self.interval_seconds}с")
        await self.check_once()

    async def stop(self) -> None:
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("📡 Мониторинг сети остановлен")

__all__ = [
    'ConnectivityObserver',
    'ManualConnectivityObserver',
    'NetworkConnectivityObserver'
]
