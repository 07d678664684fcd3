#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DailyQuest Sync v1.0 - Core Data Models
Модели локального состояния пользователя с валидацией

Версия: 1.0.0
Дата: 2025-06-20
"""

from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Dict, Optional, Any
import logging

from utils.datetime_utils import is_next_day

logger = logging.getLogger(__name__)

# Диапазон signed 64-bit, как у seed на сервере
SEED_MIN = -(2 ** 63)
SEED_MAX = 2 ** 63 - 1

UNSET_DAY = -1

# ===== ENUMS =====

class TaskStatus(Enum):
    """Статусы записи в истории квестов"""
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"

class ThemeMode(Enum):
    """Режим темы оформления (значения совпадают с API)"""
    LIGHT = 0
    DARK = 1
    SYSTEM = 2

class ConnectivityStatus(Enum):
    """Состояние сети"""
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"
    LOSING = "Losing"
    LOST = "Lost"

class DataKind(Enum):
    """Виды синхронизируемых данных"""
    PROGRESS = "progress"
    SEED = "seed"
    TASK_HISTORY = "task_history"
    REJECT_INFO = "reject_info"
    THEME = "theme"

# ===== VALIDATION HELPERS =====

class ValidationError(Exception):
    """Ошибка валидации данных"""
    pass

def validate_non_negative(value: int, field_name: str) -> int:
    """Проверка неотрицательного целого"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} должен быть целым числом")
    if value < 0:
        raise ValidationError(f"{field_name} не может быть отрицательным: {value}")
    return value

def validate_day(value: int, field_name: str = "day") -> int:
    """Номер дня в году (1-366) или -1 если не задан"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} должен быть целым числом")
    if value != UNSET_DAY and not 0 <= value <= 366:
        raise ValidationError(f"{field_name} вне диапазона: {value}")
    return value

def parse_task_status(value: Any) -> TaskStatus:
    """Статус из строки API; неизвестные значения считаются отклонением"""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).upper())
    except ValueError:
        logger.warning(f"⚠️ Неизвестный статус задачи '{value}', используем REJECTED")
        return TaskStatus.REJECTED

def parse_theme_mode(value: Any) -> ThemeMode:
    """Режим темы из числа или enum"""
    if isinstance(value, ThemeMode):
        return value
    try:
        return ThemeMode(int(value))
    except (TypeError, ValueError):
        valid_values = [m.value for m in ThemeMode]
        raise ValidationError(f"themeMode должен быть одним из: {valid_values}")

# ===== CORE MODELS =====

@dataclass(frozen=True)
class ProgressSnapshot:
    """Очки, стрик и день последнего получения награды"""
    points: int = 0
    streak: int = 0
    last_day: int = UNSET_DAY

    def __post_init__(self):
        validate_non_negative(self.points, "points")
        validate_non_negative(self.streak, "streak")
        validate_day(self.last_day, "last_day")

    def after_claim(self, earned_points: int, today: int) -> "ProgressSnapshot":
        """
        Состояние после выполнения квеста в день today.

        Стрик растёт только если today ровно следующий день после last_day,
        любой другой переход (тот же день, пропуск, первый раз) сбрасывает стрик в 1.
        """
        validate_non_negative(earned_points, "earned_points")
        validate_day(today, "today")
        if self.last_day != today and is_next_day(self.last_day, today):
            streak = self.streak + 1
        else:
            streak = 1
        return ProgressSnapshot(points=self.points + earned_points, streak=streak, last_day=today)

    def is_newer_than(self, other: "ProgressSnapshot") -> bool:
        """Эвристика монотонного роста: очки и стрик только увеличиваются"""
        return self != other and (self.points > other.points or self.streak > other.streak)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

@dataclass(frozen=True)
class SeedRecord:
    """Seed для детерминированного выбора квеста дня"""
    seed: int = 0
    day: int = UNSET_DAY

    def __post_init__(self):
        if isinstance(self.seed, bool) or not isinstance(self.seed, int):
            raise ValidationError("seed должен быть целым числом")
        if not SEED_MIN <= self.seed <= SEED_MAX:
            raise ValidationError(f"seed вне диапазона 64-bit: {self.seed}")
        validate_day(self.day, "seed day")

    def is_valid_for(self, today: int) -> bool:
        return self.day == today

@dataclass(frozen=True)
class GoalInfo:
    """Цель, к которой привязан квест"""
    goal_id: str
    title: str = ""
    category: str = ""

@dataclass(frozen=True)
class TaskHistoryEntry:
    """Запись журнала выполненных и отклонённых квестов"""
    quest: str
    points: int
    status: TaskStatus
    date: str
    time: str
    goal_info: Optional[GoalInfo] = None

    def __post_init__(self):
        if not isinstance(self.quest, str):
            raise ValidationError("quest должен быть строкой")
        if isinstance(self.points, bool) or not isinstance(self.points, int):
            raise ValidationError("points должен быть целым числом")
        if not isinstance(self.status, TaskStatus):
            raise ValidationError(f"Неверный статус: {self.status}")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "quest": self.quest,
            "points": self.points,
            "status": self.status.value,
            "date": self.date,
            "time": self.time,
        }
        if self.goal_info:
            data["goalInfo"] = asdict(self.goal_info)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskHistoryEntry":
        goal_data = data.get("goalInfo")
        goal_info = GoalInfo(**goal_data) if goal_data else None
        return cls(
            quest=data["quest"],
            points=int(data["points"]),
            status=parse_task_status(data["status"]),
            date=data.get("date", ""),
            time=data.get("time", ""),
            goal_info=goal_info,
        )

@dataclass(frozen=True)
class RejectInfo:
    """Счётчик отказов от квеста за день"""
    count: int = 0
    day: int = UNSET_DAY

    def __post_init__(self):
        validate_non_negative(self.count, "count")
        validate_day(self.day, "reject day")

    def for_day(self, today: int) -> "RejectInfo":
        """Счётчик обнуляется, когда день сменился"""
        if self.day == today:
            return self
        return replace(self, count=0, day=today)

@dataclass
class SyncStats:
    """Статистика синхронизации"""
    queued_operations: int = 0
    replayed_operations: int = 0
    failed_pushes: int = 0
    auth_errors: int = 0
    reconciliations: int = 0
    remote_overwrites: int = 0
    last_error: Optional[str] = None
    last_sync: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'queued_operations': self.queued_operations,
            'replayed_operations': self.replayed_operations,
            'failed_pushes': self.failed_pushes,
            'auth_errors': self.auth_errors,
            'reconciliations': self.reconciliations,
            'remote_overwrites': self.remote_overwrites,
            'last_error': self.last_error,
            'last_sync': self.last_sync
        }

__all__ = [
    'TaskStatus',
    'ThemeMode',
    'ConnectivityStatus',
    'DataKind',
    'ValidationError',
    'ProgressSnapshot',
    'SeedRecord',
    'GoalInfo',
    'TaskHistoryEntry',
    'RejectInfo',
    'SyncStats',
    'parse_task_status',
    'parse_theme_mode',
    'UNSET_DAY',
]
