# core/streams.py

"""
Живые значения с push-подпиской.

LiveValue хранит текущее значение и рассылает каждое новое (отличное от
предыдущего) значение всем подписчикам. Подписка - асинхронный итератор:
сначала текущее значение, затем изменения. Выход из async for или aclose()
снимает подписку.
"""

import asyncio
import logging
from typing import AsyncIterator, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

class LiveValue(Generic[T]):
    """Значение с рассылкой изменений (distinct until changed)"""

    def __init__(self, initial: T, name: str = "value"):
        self._value = initial
        self.name = name
        self._subscribers: List[asyncio.Queue] = []

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscribers_count(self) -> int:
        return len(self._subscribers)

    def set(self, value: T) -> bool:
        """Установить значение; True если оно изменилось и было разослано"""
        if value == self._value:
            return False
        self._value = value
        for queue in list(self._subscribers):
            queue.put_nowait(value)
        logger.debug(f"📡 {self.name}: новое значение разослано {len(self._subscribers)} подписчикам")
        return True

    async def subscribe(self) -> AsyncIterator[T]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            last = self._value
            yield last
            while True:
                value = await queue.get()
                # Между рассылками значение могло вернуться к уже выданному
                if value == last:
                    continue
                last = value
                yield value
        finally:
            self._subscribers.remove(queue)

__all__ = ['LiveValue']
