# database/manager.py

"""
Атомарное JSON-хранилище ключ-значение.

Файл переписывается целиком через временный файл, запись идёт в пуле потоков,
писатели сериализуются asyncio.Lock. Ошибки диска поднимаются как StorageError:
локальная запись либо прошла, либо операция завершилась ошибкой.
"""

import asyncio
import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# ===== EXCEPTIONS =====

class StorageError(Exception):
    """Базовое исключение для ошибок локального хранилища"""
    pass

class StorageWriteError(StorageError):
    """Не удалось записать данные на диск"""
    pass

class StorageReadError(StorageError):
    """Не удалось прочитать данные с диска"""
    pass

# ===== FILE STORE =====

class JsonFileStore:
    """Документ JSON на диске с кэшем в памяти"""

    def __init__(self, path: Path, backup_dir: Optional[Path] = None):
        self.path = Path(path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.path.parent
        self.file_lock = threading.RLock()
        self.write_lock = asyncio.Lock()
        self.save_count = 0
        self.last_save: Optional[str] = None
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Синхронная загрузка при старте"""
        if not self.path.exists():
            logger.info(f"📂 Файл {self.path} не найден, начинаем с пустого хранилища")
            return {}

        try:
            with self.file_lock:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"❌ Файл {self.path} повреждён: {e}")
            self._move_corrupted()
            return {}
        except OSError as e:
            raise StorageReadError(f"Не удалось прочитать {self.path}: {e}") from e

        if not isinstance(data, dict):
            logger.warning(f"⚠️ Неверный формат файла {self.path}")
            self._move_corrupted()
            return {}

        logger.debug(f"📂 Загружено {len(data)} ключей из {self.path}")
        return data

    def _move_corrupted(self) -> None:
        """Перенести повреждённый файл в бэкап и начать с чистого листа"""
        backup_name = f"corrupted_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.json"
        backup_path = self.backup_dir / backup_name
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            self.path.replace(backup_path)
            logger.warning(f"🔄 Повреждённый файл перемещён в {backup_path}")
        except OSError as e:
            raise StorageError(f"Не удалось убрать повреждённый файл {self.path}: {e}") from e

    def _write_sync(self, data: Dict[str, Any]) -> None:
        """Атомарная запись через временный файл"""
        with self.file_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.path.with_suffix('.tmp')
            try:
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                temp_file.replace(self.path)
            except (OSError, TypeError, ValueError):
                if temp_file.exists():
                    temp_file.unlink()
                raise

    def snapshot(self) -> Dict[str, Any]:
        """Копия текущих данных"""
        return dict(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def update(self, changes: Dict[str, Any], removals: tuple = ()) -> Dict[str, Any]:
        """
        Применить изменения и дождаться записи на диск.

        Кэш в памяти обновляется только после успешной записи файла.
        """
        async with self.write_lock:
            new_data = dict(self._data)
            new_data.update(changes)
            for key in removals:
                new_data.pop(key, None)

            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write_sync, new_data)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"❌ Ошибка записи {self.path}: {e}")
                raise StorageWriteError(f"Не удалось сохранить {self.path}: {e}") from e

            self._data = new_data
            self.save_count += 1
            self.last_save = datetime.now().isoformat()
            return self.snapshot()

    def get_stats(self) -> Dict[str, Any]:
        return {
            'path': str(self.path),
            'keys': len(self._data),
            'save_count': self.save_count,
            'last_save': self.last_save,
            'size_kb': round(self.path.stat().st_size / 1024, 2) if self.path.exists() else 0.0
        }

__all__ = [
    'StorageError',
    'StorageWriteError',
    'StorageReadError',
    'JsonFileStore'
]
