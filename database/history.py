# database/history.py

import logging
from typing import Any, Dict, List, Sequence

from core.models import TaskHistoryEntry, ValidationError

logger = logging.getLogger(__name__)

def encode_history(entries: Sequence[TaskHistoryEntry]) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in entries]

def decode_history(raw: Any) -> List[TaskHistoryEntry]:
    """Разбор сохранённого журнала; битые записи пропускаются"""
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning(f"⚠️ Журнал задач имеет неверный формат: {type(raw).__name__}")
        return []

    history = []
    for item in raw:
        try:
            history.append(TaskHistoryEntry.from_dict(item))
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"⚠️ Пропущена повреждённая запись журнала: {e}")
    return history

def prepend_entry(history: Sequence[TaskHistoryEntry], entry: TaskHistoryEntry) -> List[TaskHistoryEntry]:
    """Новые записи идут первыми"""
    return [entry, *history]
