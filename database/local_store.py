#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DailyQuest Sync v1.0 - Local Durable Store
Локальное хранилище прогресса пользователя

Каждый вид данных хранится под стабильными ключами одного JSON-документа
и доступен как живой канал (LiveValue) плюс метод записи. Никакой бизнес-логики:
значения не проверяются и не преобразуются, этим занимается SyncService.

Версия: 1.0.0
Дата: 2025-06-20
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from core.models import (
    ProgressSnapshot, SeedRecord, RejectInfo, ThemeMode, TaskHistoryEntry,
    ValidationError, UNSET_DAY
)
from core.streams import LiveValue
from database.history import encode_history, decode_history, prepend_entry
from database.manager import JsonFileStore

logger = logging.getLogger(__name__)

# ===== KEYS =====

TOTAL_POINTS = "total_points"
CURRENT_STREAK = "current_streak"
LAST_CLAIMED_DAY = "last_claimed_day"
CURRENT_SEED = "current_seed"
SEED_DAY = "seed_day"
TASK_HISTORY = "task_history"
REJECT_COUNT = "reject_count"
LAST_REJECT_DAY = "last_reject_day"
THEME_MODE = "theme_mode"
PENDING_OPERATIONS = "pending_operations"

DEFAULT_THEME = ThemeMode.SYSTEM

class LocalDataStore:
    """Долговременное хранилище с живыми каналами по видам данных"""

    def __init__(self, path: Path, backup_dir: Optional[Path] = None):
        self.file = JsonFileStore(path, backup_dir)
        self._history_lock = asyncio.Lock()

        self.progress: LiveValue[ProgressSnapshot] = LiveValue(self._decode_progress(), "progress")
        self.seed: LiveValue[SeedRecord] = LiveValue(self._decode_seed(), "seed")
        self.reject_info: LiveValue[RejectInfo] = LiveValue(self._decode_reject_info(), "reject_info")
        self.theme: LiveValue[ThemeMode] = LiveValue(self._decode_theme(), "theme")
        self.task_history: LiveValue[Tuple[TaskHistoryEntry, ...]] = LiveValue(
            tuple(decode_history(self.file.get(TASK_HISTORY))), "task_history"
        )

        logger.info(f"✅ LocalDataStore открыт: {self.file.path}")

    # ===== DECODING =====

    def _decode(self, factory, default, **fields):
        try:
            values = {name: self.file.get(key, fallback) for name, (key, fallback) in fields.items()}
            return factory(**values)
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ Повреждённое значение {factory.__name__}, используем значение по умолчанию: {e}")
            return default

    def _decode_progress(self) -> ProgressSnapshot:
        return self._decode(
            ProgressSnapshot, ProgressSnapshot(),
            points=(TOTAL_POINTS, 0),
            streak=(CURRENT_STREAK, 0),
            last_day=(LAST_CLAIMED_DAY, UNSET_DAY)
        )

    def _decode_seed(self) -> SeedRecord:
        return self._decode(
            SeedRecord, SeedRecord(),
            seed=(CURRENT_SEED, 0),
            day=(SEED_DAY, UNSET_DAY)
        )

    def _decode_reject_info(self) -> RejectInfo:
        return self._decode(
            RejectInfo, RejectInfo(),
            count=(REJECT_COUNT, 0),
            day=(LAST_REJECT_DAY, UNSET_DAY)
        )

    def _decode_theme(self) -> ThemeMode:
        raw = self.file.get(THEME_MODE, DEFAULT_THEME.value)
        try:
            return ThemeMode(raw)
        except ValueError:
            logger.warning(f"⚠️ Неизвестный режим темы {raw}, используем {DEFAULT_THEME.name}")
            return DEFAULT_THEME

    # ===== PROGRESS =====

    async def save_progress(self, snapshot: ProgressSnapshot) -> None:
        await self.file.update({
            TOTAL_POINTS: snapshot.points,
            CURRENT_STREAK: snapshot.streak,
            LAST_CLAIMED_DAY: snapshot.last_day
        })
        self.progress.set(snapshot)

    def read_progress(self) -> ProgressSnapshot:
        return self.progress.value

    def observe_progress(self) -> AsyncIterator[ProgressSnapshot]:
        return self.progress.subscribe()

    # ===== SEED =====

    async def save_seed(self, record: SeedRecord) -> None:
        await self.file.update({CURRENT_SEED: record.seed, SEED_DAY: record.day})
        self.seed.set(record)

    def read_seed(self) -> SeedRecord:
        return self.seed.value

    def observe_seed(self) -> AsyncIterator[SeedRecord]:
        return self.seed.subscribe()

    # ===== REJECT INFO =====

    async def save_reject_info(self, info: RejectInfo) -> None:
        await self.file.update({REJECT_COUNT: info.count, LAST_REJECT_DAY: info.day})
        self.reject_info.set(info)

    def read_reject_info(self) -> RejectInfo:
        return self.reject_info.value

    def observe_reject_info(self) -> AsyncIterator[RejectInfo]:
        return self.reject_info.subscribe()

    # ===== THEME =====

    async def save_theme(self, mode: ThemeMode) -> None:
        await self.file.update({THEME_MODE: mode.value})
        self.theme.set(mode)

    def read_theme(self) -> ThemeMode:
        return self.theme.value

    def observe_theme(self) -> AsyncIterator[ThemeMode]:
        return self.theme.subscribe()

    # ===== TASK HISTORY =====

    async def append_task_history(self, entry: TaskHistoryEntry) -> None:
        """Добавить запись в начало журнала"""
        async with self._history_lock:
            history = prepend_entry(self.task_history.value, entry)
            await self._write_history(history)

    async def replace_task_history(self, entries: Sequence[TaskHistoryEntry]) -> None:
        """Полная замена журнала (данные сервера)"""
        async with self._history_lock:
            await self._write_history(list(entries))

    async def clear_task_history(self) -> None:
        async with self._history_lock:
            await self.file.update({}, removals=(TASK_HISTORY,))
            self.task_history.set(())
        logger.info("🗑️ Локальный журнал задач очищен")

    async def _write_history(self, history: List[TaskHistoryEntry]) -> None:
        await self.file.update({TASK_HISTORY: encode_history(history)})
        self.task_history.set(tuple(history))

    def read_task_history(self) -> List[TaskHistoryEntry]:
        return list(self.task_history.value)

    def observe_task_history(self) -> AsyncIterator[Tuple[TaskHistoryEntry, ...]]:
        return self.task_history.subscribe()

    # ===== PENDING OPERATIONS =====

    async def save_pending_operations(self, records: List[Dict[str, Any]]) -> None:
        """Описания неотправленных операций; пустой список удаляет ключ"""
        if records:
            await self.file.update({PENDING_OPERATIONS: records})
        else:
            await self.file.update({}, removals=(PENDING_OPERATIONS,))

    def read_pending_operations(self) -> List[Dict[str, Any]]:
        raw = self.file.get(PENDING_OPERATIONS)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning(f"⚠️ Очередь операций имеет неверный формат: {type(raw).__name__}")
            return []
        return [record for record in raw if isinstance(record, dict)]

    # ===== STATS =====

    def get_stats(self) -> Dict[str, Any]:
        stats = self.file.get_stats()
        stats['task_history_size'] = len(self.task_history.value)
        return stats
