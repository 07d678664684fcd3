# services/pending_queue.py

"""
Очередь отложенных операций.

Операция - асинхронная функция без аргументов, повторяющая неудавшуюся
отправку на сервер. Рядом с функцией операция хранит payload: JSON-описание,
по которому SyncService восстанавливает очередь после перезапуска. Каждое
изменение очереди передаётся в on_change вместе с операциями текущего
прохода, которые ещё не доставлены.

Операции журнала задач (ordered=True) образуют строгую полосу: после первой
неудачи в проходе остальные операции полосы не выполняются и возвращаются
в голову очереди в исходном порядке.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from core.models import DataKind

logger = logging.getLogger(__name__)

@dataclass
class PendingOperation:
    """Повтор одной неудавшейся отправки"""
    kind: DataKind
    action: Callable[[], Awaitable[None]]
    ordered: bool = False
    description: str = ""
    attempts: int = 0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'description': self.description,
            'attempts': self.attempts,
            'created_at': self.created_at,
            'payload': self.payload
        }

ErrorHandler = Callable[[PendingOperation, Exception], None]
ChangeHandler = Callable[[List[PendingOperation]], Awaitable[None]]

class PendingOperationQueue:
    """FIFO очередь с блокировкой на изменение и отдельной блокировкой прохода"""

    def __init__(self, ordered_lane: bool = True, on_change: Optional[ChangeHandler] = None):
        self.ordered_lane = ordered_lane
        self.on_change = on_change
        self._operations: Deque[PendingOperation] = deque()
        # Недоставленные операции идущего прохода
        self._in_flight: List[PendingOperation] = []
        self._lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()
        self.drain_count = 0

    def __len__(self) -> int:
        return len(self._operations)

    def has_pending(self, kind: DataKind) -> bool:
        return any(op.kind == kind for op in self._operations)

    def operations(self) -> List[PendingOperation]:
        """Всё, что ещё не доставлено, включая операции идущего прохода"""
        return self._in_flight + list(self._operations)

    def has_undelivered(self, kind: DataKind) -> bool:
        """Как has_pending, но учитывает и операции идущего прохода"""
        return any(op.kind == kind for op in self.operations())

    async def _notify(self) -> None:
        if self.on_change:
            await self.on_change(self.operations())

    async def enqueue(self, operation: PendingOperation) -> None:
        async with self._lock:
            self._operations.append(operation)
        logger.info(f"📥 В очередь: {operation.description or operation.kind.value} (всего {len(self._operations)})")
        await self._notify()

    async def discard(self, kind: DataKind) -> int:
        """Убрать из очереди операции данного вида, ещё не взятые в проход"""
        async with self._lock:
            kept = [op for op in self._operations if op.kind != kind]
            removed = len(self._operations) - len(kept)
            if removed:
                self._operations = deque(kept)
        if removed:
            logger.debug(f"🧹 Из очереди убрано {removed} операций {kind.value}")
            await self._notify()
        return removed

    async def snapshot_and_clear(self) -> List[PendingOperation]:
        async with self._lock:
            snapshot = list(self._operations)
            self._operations.clear()
            return snapshot

    async def _requeue(self, head: List[PendingOperation], tail: List[PendingOperation]) -> None:
        async with self._lock:
            self._operations.extendleft(reversed(head))
            self._operations.extend(tail)
            self._in_flight = []

    async def drain(self, on_error: Optional[ErrorHandler] = None) -> int:
        """
        Выполнить накопленные операции по порядку.

        Неудавшиеся операции возвращаются в очередь. Возвращает число успешных.
        """
        async with self._drain_lock:
            operations = await self.snapshot_and_clear()
            if not operations:
                return 0

            self.drain_count += 1
            self._in_flight = list(operations)
            logger.info(f"🔄 Обработка очереди: {len(operations)} операций")

            succeeded = 0
            lane_blocked = False
            carried_ordered: List[PendingOperation] = []
            failed_scalar: List[PendingOperation] = []

            for index, operation in enumerate(operations):
                strict = self.ordered_lane and operation.ordered
                if strict and lane_blocked:
                    carried_ordered.append(operation)
                    continue

                operation.attempts += 1
                try:
                    await operation.action()
                    succeeded += 1
                except asyncio.CancelledError:
                    rest = operations[index:]
                    await self._requeue(carried_ordered + [op for op in rest if op.ordered],
                                        failed_scalar + [op for op in rest if not op.ordered])
                    raise
                except Exception as e:
                    logger.warning(
                        f"⚠️ Повтор не удался ({operation.description or operation.kind.value}, "
                        f"попытка {operation.attempts}): {e}"
                    )
                    if on_error:
                        on_error(operation, e)
                    if strict:
                        lane_blocked = True
                        carried_ordered.append(operation)
                    else:
                        failed_scalar.append(operation)
                    continue

                self._in_flight = carried_ordered + operations[index + 1:] + failed_scalar
                await self._notify()

            await self._requeue(carried_ordered, failed_scalar)
            if carried_ordered or failed_scalar:
                await self._notify()
                logger.info(f"📤 Очередь: успешно {succeeded}, осталось {len(self._operations)}")
            else:
                logger.info(f"✅ Очередь обработана: {succeeded} операций")
            return succeeded

    def get_stats(self) -> dict:
        return {
            'pending': len(self._operations),
            'drains': self.drain_count,
            'kinds': sorted({op.kind.value for op in self._operations})
        }

__all__ = ['PendingOperation', 'PendingOperationQueue']
