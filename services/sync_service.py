#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DailyQuest Sync v1.0 - Synchronization Engine
Офлайн-синхронизация прогресса пользователя с сервером

Схема каждой записи: сначала локальное хранилище, затем попытка отправки на
сервер. Неудача сети не доходит до вызывающего кода: операция уходит в очередь
и повторяется при восстановлении связи. Ошибки диска поднимаются наверх.
Очередь хранится в том же JSON-документе и переживает перезапуск процесса.

Чтение идёт из локального хранилища; каждое новое локальное значение запускает
фоновую сверку с сервером, если есть сеть.

Версия: 1.0.0
Дата: 2025-06-20
"""

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from core.models import (
    ProgressSnapshot, SeedRecord, RejectInfo, ThemeMode, TaskHistoryEntry,
    TaskStatus, ConnectivityStatus, DataKind, SyncStats, ValidationError, UNSET_DAY
)
from database.local_store import LocalDataStore
from database.manager import StorageError
from services.api_client import (
    RemoteApiClient, ApiError, RequestTimeoutError,
    HttpStatusError, AuthenticationError, MalformedResponseError
)
from services.connectivity import ConnectivityObserver
from services.pending_queue import PendingOperation, PendingOperationQueue
from shared.models import (
    SeedRequest, RejectInfoRequest, ThemePreferenceRequest, GoalProgressRequest,
    progress_to_request, progress_from_response, progress_from_user,
    seed_from_response, reject_info_from_response, theme_from_response,
    task_history_to_request, task_history_from_dto
)
from utils.datetime_utils import now_local, format_date, format_time, parse_server_timestamp

logger = logging.getLogger(__name__)

# Операции журнала задач не должны переставляться при повторе
ORDERED_KINDS = (DataKind.TASK_HISTORY,)

class SyncErrorKind(Enum):
    """Классы ошибок синхронизации"""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    HTTP = "http"
    MALFORMED = "malformed"

class RejectLimitReachedError(Exception):
    """Исчерпан дневной лимит отказов от квеста"""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Достигнут лимит отказов на сегодня: {limit}")

def current_millis() -> int:
    return time.time_ns() // 1_000_000

class SyncService:
    """Движок синхронизации локального и серверного состояния"""

    def __init__(self, store: LocalDataStore, api: RemoteApiClient,
                 connectivity: ConnectivityObserver,
                 max_rejects_per_day: int = 5,
                 ordered_history_queue: bool = True,
                 timezone: Optional[str] = None,
                 clock: Callable[[], int] = current_millis,
                 on_auth_error: Optional[Callable[[AuthenticationError], None]] = None):
        self.store = store
        self.api = api
        self.connectivity = connectivity
        self.max_rejects_per_day = max_rejects_per_day
        self.timezone = timezone
        self.clock = clock
        self.on_auth_error = on_auth_error

        self.queue = PendingOperationQueue(ordered_lane=ordered_history_queue, on_change=self._persist_queue)
        self.is_online = connectivity.current_status() == ConnectivityStatus.AVAILABLE
        self.auth_error_detected = False
        self.stats = SyncStats()

        self._theme_lock = asyncio.Lock()
        self._pending_theme_operation = False
        self._seed_lock = asyncio.Lock()
        self._push_locks = {DataKind.SEED: asyncio.Lock(), DataKind.REJECT_INFO: asyncio.Lock()}
        self._scalar_replays = {
            DataKind.PROGRESS: self._replay_progress,
            DataKind.SEED: self._replay_seed,
            DataKind.REJECT_INFO: self._replay_reject_info,
            DataKind.THEME: self._replay_theme
        }
        self._restored = False
        self._watcher: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ===== LIFECYCLE =====

    async def start(self) -> None:
        """
        Восстановить очередь с диска и подписаться на состояние сети.

        Повторный вызов ничего не делает. Если сеть есть и после прошлого
        запуска остались неотправленные операции, они отправляются сразу.
        """
        if self._watcher:
            return
        restored = await self._restore_pending_operations()
        self.is_online = self.connectivity.current_status() == ConnectivityStatus.AVAILABLE
        self._watcher = asyncio.create_task(self._watch_connectivity())
        logger.info(f"🚀 SyncService запущен, сеть: {'есть' if self.is_online else 'нет'}")

        if restored and self.is_online:
            await self.process_pending_operations()

    async def _watch_connectivity(self) -> None:
        async for status in self.connectivity.observe():
            self.handle_connectivity_status(status)

    def handle_connectivity_status(self, status: ConnectivityStatus) -> None:
        was_online = self.is_online
        self.is_online = status == ConnectivityStatus.AVAILABLE

        if self.is_online and not was_online:
            logger.info(f"🌐 Сеть восстановлена, в очереди {len(self.queue)} операций")
            self._launch(self.process_pending_operations())
        elif was_online and not self.is_online:
            logger.warning(f"📴 Сеть потеряна ({status.value}), работаем локально")

    async def close(self) -> None:
        if self._watcher:
            self._watcher.cancel()
            await asyncio.gather(self._watcher, return_exceptions=True)
            self._watcher = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"🔒 SyncService остановлен, неотправленных операций на диске: {len(self.queue)}")

    def _launch(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Фоновая задача, которую можно дождаться через wait_idle()"""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"❌ Ошибка фоновой синхронизации: {task.exception()}", exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Дождаться завершения всех фоновых сверок и проходов очереди"""
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    # ===== ERRORS =====

    @staticmethod
    def classify_error(error: Exception) -> SyncErrorKind:
        if isinstance(error, AuthenticationError):
            return SyncErrorKind.AUTH
        if isinstance(error, RequestTimeoutError):
            return SyncErrorKind.TIMEOUT
        if isinstance(error, MalformedResponseError):
            return SyncErrorKind.MALFORMED
        if isinstance(error, HttpStatusError):
            return SyncErrorKind.HTTP
        return SyncErrorKind.NETWORK

    def _handle_sync_error(self, error: ApiError, context: str) -> SyncErrorKind:
        kind = self.classify_error(error)
        self.stats.last_error = f"{context}: {error}"

        if kind == SyncErrorKind.AUTH:
            self.auth_error_detected = True
            self.stats.auth_errors += 1
            logger.error(f"🔐 Ошибка авторизации ({context}): {error}")
            if self.on_auth_error:
                self.on_auth_error(error)
        elif kind == SyncErrorKind.MALFORMED:
            logger.error(f"❌ Некорректный ответ сервера ({context}): {error}")
        elif kind == SyncErrorKind.HTTP:
            logger.warning(f"⚠️ Сервер ответил ошибкой {error.status} ({context})")
        else:
            logger.warning(f"📴 Сервер недоступен ({context}, {kind.value}): {error}")
        return kind

    def _on_replay_error(self, operation: PendingOperation, error: Exception) -> None:
        if isinstance(error, ApiError):
            self._handle_sync_error(error, f"повтор {operation.description}")
        else:
            self.stats.last_error = f"повтор {operation.description}: {error}"
            logger.error(f"❌ Непредвиденная ошибка повтора {operation.description}: {error}", exc_info=error)

    # ===== PENDING QUEUE PERSISTENCE =====

    async def _persist_queue(self, operations: List[PendingOperation]) -> None:
        records = [op.to_record() for op in operations if op.payload]
        try:
            await self.store.save_pending_operations(records)
        except StorageError as e:
            # Очередь в памяти продолжает работать, теряется только копия на диске
            self.stats.last_error = f"сохранение очереди: {e}"
            logger.error(f"❌ Не удалось сохранить очередь операций: {e}")

    async def _restore_pending_operations(self) -> int:
        if self._restored:
            return 0
        self._restored = True

        restored = 0
        for record in self.store.read_pending_operations():
            operation = self._operation_from_record(record)
            if operation is None:
                continue
            await self.queue.enqueue(operation)
            restored += 1
        if restored:
            logger.info(f"📂 Восстановлено операций из прошлого запуска: {restored}")
        return restored

    def _operation_from_record(self, record: Dict[str, Any]) -> Optional[PendingOperation]:
        try:
            kind = DataKind(record['kind'])
            payload = dict(record.get('payload') or {})
            action = self._replay_action(kind, payload)
            attempts = int(record.get('attempts', 0))
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"⚠️ Пропущена повреждённая операция очереди: {e}")
            return None

        operation = PendingOperation(
            kind=kind,
            action=action,
            ordered=kind in ORDERED_KINDS,
            description=str(record.get('description', '')),
            attempts=attempts,
            payload=payload
        )
        if record.get('created_at'):
            operation.created_at = str(record['created_at'])
        return operation

    def _replay_action(self, kind: DataKind, payload: Dict[str, Any]) -> Callable[[], Awaitable[Any]]:
        """Повтор по описанию операции"""
        if kind != DataKind.TASK_HISTORY:
            return self._scalar_replays[kind]
        if payload.get('action') == 'clear':
            return self._push_clear_history
        entry = TaskHistoryEntry.from_dict(payload['entry'])
        return partial(self._push_task_history, entry, payload.get('goal_id'), int(payload.get('goal_progress', 0)))

    # ===== SAVE PIPELINE =====

    async def _push_or_enqueue(self, kind: DataKind, push: Callable[[], Awaitable[Any]],
                               description: str, payload: Dict[str, Any]) -> Optional[Any]:
        """
        Отправить на сервер; при сбое сети поставить повтор в очередь.

        Возвращает подтверждённое сервером значение или None, если отправка
        не удалась. Повтор скалярного вида отправляет локальное значение на
        момент повтора, поэтому в очереди достаточно одной операции этого вида,
        а успешная прямая отправка делает её ненужной.
        """
        scalar = kind not in ORDERED_KINDS
        try:
            confirmed = await push()
        except ApiError as e:
            self.stats.failed_pushes += 1
            self._handle_sync_error(e, description)
            if scalar and self.queue.has_pending(kind):
                logger.debug(f"📥 Повтор {kind.value} уже в очереди")
                return None
            await self.queue.enqueue(PendingOperation(
                kind=kind,
                action=self._replay_action(kind, payload),
                ordered=not scalar,
                description=description,
                payload=payload
            ))
            self.stats.queued_operations += 1
            return None

        if scalar:
            await self.queue.discard(kind)
        self.stats.last_sync = datetime.now().isoformat()
        logger.debug(f"☁️ Отправлено: {description}")
        return confirmed

    async def process_pending_operations(self) -> int:
        """Проход по очереди отложенных операций"""
        if not len(self.queue):
            return 0
        succeeded = await self.queue.drain(on_error=self._on_replay_error)
        self.stats.replayed_operations += succeeded
        if succeeded:
            self.stats.last_sync = datetime.now().isoformat()
        return succeeded

    async def refresh(self) -> bool:
        """Полная сверка всех видов данных с сервером"""
        if not self.is_online:
            logger.info("📴 Нет сети, сверка пропущена")
            return False
        await self.process_pending_operations()
        await self._reconcile_progress()
        await self._reconcile_seed()
        await self._reconcile_reject_info()
        await self._reconcile_theme()
        await self.get_task_history()
        logger.info("✅ Данные сверены с сервером")
        return True

    # ===== PROGRESS =====

    async def save_progress(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        await self.store.save_progress(snapshot)
        confirmed = await self._push_or_enqueue(
            DataKind.PROGRESS,
            partial(self._push_progress, snapshot),
            f"progress {snapshot.points}/{snapshot.streak}/{snapshot.last_day}",
            {'action': 'push'}
        )
        return confirmed if confirmed is not None else self.store.read_progress()

    async def _push_progress(self, snapshot: ProgressSnapshot) -> Optional[ProgressSnapshot]:
        response = await self.api.save_progress(progress_to_request(snapshot))
        remote = self._to_domain(progress_from_response, response, "progress")
        if remote is not None:
            await self._adopt_progress(remote)
        return remote

    async def _replay_progress(self) -> None:
        await self._push_progress(self.store.read_progress())

    async def _adopt_progress(self, remote: ProgressSnapshot) -> None:
        local = self.store.read_progress()
        if remote.is_newer_than(local):
            logger.info(f"🔄 Прогресс с сервера новее: {local.to_dict()} -> {remote.to_dict()}")
            await self.store.save_progress(remote)
            self.stats.remote_overwrites += 1

    def get_progress(self) -> ProgressSnapshot:
        return self.store.read_progress()

    async def observe_progress(self) -> AsyncIterator[ProgressSnapshot]:
        async for snapshot in self.store.observe_progress():
            if self.is_online:
                self._launch(self._reconcile_progress())
            yield snapshot

    async def _reconcile_progress(self) -> None:
        user = await self._fetch(self.api.get_current_user, "сверка прогресса")
        remote = self._to_domain(progress_from_user, user, "progress") if user else None
        if remote is None:
            return
        self.stats.reconciliations += 1
        await self._adopt_progress(remote)

    # ===== SEED =====

    async def save_seed(self, record: SeedRecord) -> SeedRecord:
        async with self._push_locks[DataKind.SEED]:
            await self.store.save_seed(record)
            confirmed = await self._push_or_enqueue(
                DataKind.SEED,
                partial(self._push_seed, record),
                f"seed day {record.day}",
                {'action': 'push'}
            )
        return confirmed if confirmed is not None else self.store.read_seed()

    async def _push_seed(self, record: SeedRecord) -> Optional[SeedRecord]:
        response = await self.api.save_seed(SeedRequest(seed=record.seed, day=record.day))
        remote = self._to_domain(seed_from_response, response, "seed")
        if remote is not None and remote != record and self.store.read_seed() == record:
            await self.store.save_seed(remote)
            self.stats.remote_overwrites += 1
        return remote

    async def _replay_seed(self) -> None:
        async with self._push_locks[DataKind.SEED]:
            await self._push_seed(self.store.read_seed())

    async def get_current_seed(self, today: int) -> int:
        """Seed на сегодня; при смене дня создаётся новый"""
        async with self._seed_lock:
            record = self.store.read_seed()
            if record.is_valid_for(today):
                return record.seed

            new_record = SeedRecord(seed=self.clock(), day=today)
            logger.info(f"🎲 Новый seed на день {today} (был день {record.day})")
            saved = await self.save_seed(new_record)
            return saved.seed

    async def observe_seed(self, today: int) -> AsyncIterator[int]:
        async for record in self.store.observe_seed():
            if not record.is_valid_for(today):
                # Новый seed придёт следующим значением канала
                await self.get_current_seed(today)
                continue
            if self.is_online:
                self._launch(self._reconcile_seed())
            yield record.seed

    async def _reconcile_seed(self) -> None:
        if self.queue.has_pending(DataKind.SEED):
            return

        async with self._push_locks[DataKind.SEED]:
            if self.queue.has_pending(DataKind.SEED):
                return
            response = await self._fetch(self.api.fetch_seed, "сверка seed")
            remote = self._to_domain(seed_from_response, response, "seed") if response else None
            if remote is None:
                return

            local = self.store.read_seed()
            self.stats.reconciliations += 1
            same_day = local.day == UNSET_DAY or remote.day == local.day
            if remote != local and same_day:
                logger.info(f"🔄 Seed с сервера для дня {remote.day}")
                await self.store.save_seed(remote)
                self.stats.remote_overwrites += 1

    # ===== REJECT INFO =====

    async def save_reject_info(self, info: RejectInfo) -> RejectInfo:
        async with self._push_locks[DataKind.REJECT_INFO]:
            await self.store.save_reject_info(info)
            confirmed = await self._push_or_enqueue(
                DataKind.REJECT_INFO,
                partial(self._push_reject_info, info),
                f"reject {info.count} day {info.day}",
                {'action': 'push'}
            )
        return confirmed if confirmed is not None else self.store.read_reject_info()

    async def _push_reject_info(self, info: RejectInfo) -> Optional[RejectInfo]:
        response = await self.api.update_reject_info(RejectInfoRequest(count=info.count, day=info.day))
        remote = self._to_domain(reject_info_from_response, response, "reject info")
        if remote is not None and remote != info and self.store.read_reject_info() == info:
            await self.store.save_reject_info(remote)
            self.stats.remote_overwrites += 1
        return remote

    async def _replay_reject_info(self) -> None:
        async with self._push_locks[DataKind.REJECT_INFO]:
            await self._push_reject_info(self.store.read_reject_info())

    def get_reject_info(self, today: int) -> RejectInfo:
        """Счётчик отказов на сегодня (обнулён, если день сменился)"""
        return self.store.read_reject_info().for_day(today)

    async def observe_reject_info(self) -> AsyncIterator[RejectInfo]:
        async for info in self.store.observe_reject_info():
            if self.is_online:
                self._launch(self._reconcile_reject_info())
            yield info

    async def _reconcile_reject_info(self) -> None:
        if self.queue.has_pending(DataKind.REJECT_INFO):
            return

        async with self._push_locks[DataKind.REJECT_INFO]:
            if self.queue.has_pending(DataKind.REJECT_INFO):
                return
            response = await self._fetch(self.api.fetch_reject_info, "сверка отказов")
            remote = self._to_domain(reject_info_from_response, response, "reject info") if response else None
            if remote is None:
                return

            self.stats.reconciliations += 1
            local = self.store.read_reject_info()
            if remote != local:
                await self.store.save_reject_info(remote)
                self.stats.remote_overwrites += 1

    # ===== THEME =====

    async def save_theme_preference(self, mode: ThemeMode) -> ThemeMode:
        async with self._theme_lock:
            await self.store.save_theme(mode)
            self._pending_theme_operation = True
            try:
                confirmed = await self._push_or_enqueue(
                    DataKind.THEME,
                    partial(self._push_theme, mode),
                    f"theme {mode.name}",
                    {'action': 'push'}
                )
            finally:
                self._pending_theme_operation = False
            return confirmed if confirmed is not None else self.store.read_theme()

    async def _push_theme(self, mode: ThemeMode) -> Optional[ThemeMode]:
        response = await self.api.save_theme_preference(ThemePreferenceRequest(theme_mode=mode.value))
        remote = self._to_domain(theme_from_response, response, "theme")
        if remote is not None and remote != mode and self.store.read_theme() == mode:
            await self.store.save_theme(remote)
            self.stats.remote_overwrites += 1
        return remote

    async def _replay_theme(self) -> None:
        async with self._theme_lock:
            self._pending_theme_operation = True
            try:
                await self._push_theme(self.store.read_theme())
            finally:
                self._pending_theme_operation = False

    def get_theme_preference(self) -> ThemeMode:
        return self.store.read_theme()

    async def observe_theme_preference(self) -> AsyncIterator[ThemeMode]:
        async for mode in self.store.observe_theme():
            if self.is_online:
                self._launch(self._reconcile_theme())
            yield mode

    async def _reconcile_theme(self) -> None:
        if self._pending_theme_operation or self.queue.has_pending(DataKind.THEME):
            return

        async with self._theme_lock:
            if self.queue.has_pending(DataKind.THEME):
                return
            local = self.store.read_theme()
            response = await self._fetch(self.api.get_theme_preference, "сверка темы")
            remote = self._to_domain(theme_from_response, response, "theme") if response else None
            if remote is None:
                return

            self.stats.reconciliations += 1
            if remote != local:
                logger.info(f"🎨 Тема с сервера: {local.name} -> {remote.name}")
                await self.store.save_theme(remote)
                self.stats.remote_overwrites += 1

    # ===== TASK HISTORY =====

    async def save_task_history(self, quest: str, points: int, status: TaskStatus,
                                goal_id: Optional[str] = None,
                                goal_progress: int = 0) -> TaskHistoryEntry:
        """Записать квест в журнал; при выполнении продвинуть связанную цель"""
        now = now_local(self.timezone)
        entry = TaskHistoryEntry(
            quest=quest,
            points=points,
            status=status,
            date=format_date(now),
            time=format_time(now)
        )
        await self.store.append_task_history(entry)
        await self._push_or_enqueue(
            DataKind.TASK_HISTORY,
            partial(self._push_task_history, entry, goal_id, goal_progress),
            f"history {status.value} '{quest}'",
            {'action': 'append', 'entry': entry.to_dict(), 'goal_id': goal_id, 'goal_progress': goal_progress}
        )
        return entry

    async def _push_task_history(self, entry: TaskHistoryEntry, goal_id: Optional[str],
                                 goal_progress: int) -> None:
        await self.api.save_task_history(task_history_to_request(entry, goal_id, goal_progress))

        if entry.status != TaskStatus.COMPLETED or not goal_id or goal_progress <= 0:
            return
        try:
            await self.api.update_goal_progress(goal_id, GoalProgressRequest(
                progress_increment=goal_progress,
                quest_id=entry.quest
            ))
            logger.info(f"🎯 Прогресс цели {goal_id} увеличен на {goal_progress}")
        except ApiError as e:
            logger.warning(f"⚠️ Не удалось обновить прогресс цели {goal_id}: {e}")

    async def get_task_history(self) -> List[TaskHistoryEntry]:
        """
        Журнал с сервера (полная замена локального) или локальная копия.

        Неотправленные записи сначала отправляются; если это не удалось,
        возвращается локальный журнал, чтобы замена не стёрла их.
        """
        if not self.is_online:
            return self.store.read_task_history()
        if self.queue.has_undelivered(DataKind.TASK_HISTORY):
            await self.process_pending_operations()
        if self.queue.has_undelivered(DataKind.TASK_HISTORY):
            logger.info("📋 Есть неотправленные записи журнала, показываем локальный журнал")
            return self.store.read_task_history()

        dtos = await self._fetch(self.api.get_task_history, "загрузка журнала")
        if dtos is None:
            return self.store.read_task_history()

        try:
            entries = [task_history_from_dto(dto, self.timezone) for dto in _newest_first(dtos)]
        except ValidationError as e:
            self._handle_sync_error(MalformedResponseError(str(e)), "загрузка журнала")
            return self.store.read_task_history()

        await self.store.replace_task_history(entries)
        self.stats.reconciliations += 1
        logger.debug(f"📋 Журнал обновлён с сервера: {len(entries)} записей")
        return entries

    async def clear_task_history(self) -> None:
        await self.store.clear_task_history()
        await self._push_or_enqueue(
            DataKind.TASK_HISTORY,
            self._push_clear_history,
            "history clear",
            {'action': 'clear'}
        )

    async def _push_clear_history(self) -> None:
        await self.api.clear_task_history()

    # ===== QUEST FLOW =====

    async def claim_quest(self, quest: str, points: int, today: int,
                          goal_id: Optional[str] = None, goal_progress: int = 0) -> ProgressSnapshot:
        """Выполнение квеста: очки, стрик и запись в журнал"""
        progress = self.store.read_progress().after_claim(points, today)
        saved = await self.save_progress(progress)
        await self.save_task_history(quest, points, TaskStatus.COMPLETED, goal_id, goal_progress)
        logger.info(f"🏆 Квест выполнен: +{points} очков, стрик {saved.streak}")
        return saved

    def remaining_rejects(self, today: int) -> int:
        return max(0, self.max_rejects_per_day - self.get_reject_info(today).count)

    async def reject_quest(self, quest: str, points: int, today: int) -> RejectInfo:
        """Отказ от квеста дня в пределах дневного лимита"""
        current = self.get_reject_info(today)
        if current.count >= self.max_rejects_per_day:
            raise RejectLimitReachedError(self.max_rejects_per_day)

        info = await self.save_reject_info(RejectInfo(count=current.count + 1, day=today))
        await self.save_task_history(quest, points, TaskStatus.REJECTED)
        logger.info(f"🔁 Квест отклонён, осталось отказов: {self.remaining_rejects(today)}")
        return info

    # ===== HELPERS =====

    async def _fetch(self, fetch: Callable[[], Awaitable[Any]], context: str) -> Any:
        """Запрос для сверки; None если сервер недоступен или данных нет"""
        try:
            return await fetch()
        except HttpStatusError as e:
            if e.status == 404:
                logger.debug(f"🔍 Нет данных на сервере ({context})")
                return None
            self._handle_sync_error(e, context)
            return None
        except ApiError as e:
            self._handle_sync_error(e, context)
            return None

    def _to_domain(self, mapper: Callable[[Any], Any], dto: Any, context: str) -> Any:
        """Ответ сервера, нарушающий доменные правила, считается некорректным"""
        try:
            return mapper(dto)
        except ValidationError as e:
            self._handle_sync_error(MalformedResponseError(str(e)), context)
            return None

    # ===== STATS =====

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats.update({
            'online': self.is_online,
            'pending_operations': len(self.queue),
            'background_tasks': len(self._tasks),
            'auth_error_detected': self.auth_error_detected,
            'queue': self.queue.get_stats()
        })
        return stats

    def health_check(self) -> Dict[str, Any]:
        if self.auth_error_detected:
            status = "degraded"
        elif len(self.queue):
            status = "pending"
        else:
            status = "healthy"
        return {
            'status': status,
            'online': self.is_online,
            'connectivity': self.connectivity.current_status().value,
            'pending_operations': len(self.queue),
            'last_error': self.stats.last_error,
            'last_sync': self.stats.last_sync
        }

def _newest_first(dtos: List[Any]) -> List[Any]:
    """Сервер отдаёт журнал от старых к новым; записи без даты идут в конец"""
    def key(dto):
        parsed = parse_server_timestamp(dto.timestamp)
        return (parsed is not None, parsed.timestamp() if parsed else 0.0)
    return sorted(dtos, key=key, reverse=True)

__all__ = [
    'SyncService',
    'SyncErrorKind',
    'RejectLimitReachedError',
    'current_millis'
]
