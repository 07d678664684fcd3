#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DailyQuest Sync v1.0 - Configuration
Централизованная конфигурация с валидацией

Версия: 1.0.0
Дата: 2025-06-20
"""

import os
import sys
from pathlib import Path
from typing import Dict, Any
from dataclasses import dataclass
from enum import Enum

import pytz

class Environment(Enum):
    """Среды выполнения"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

class LogLevel(Enum):
    """Уровни логирования"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

@dataclass
class ApiConfig:
    """Конфигурация REST API"""
    base_url: str
    request_timeout: float = 5.0
    connect_timeout: float = 3.0

@dataclass
class StorageConfig:
    """Конфигурация локального хранилища"""
    data_dir: Path
    backup_dir: Path
    progress_file: str = "user_progress.json"
    token_file: str = "auth_token.json"

    @property
    def progress_path(self) -> Path:
        return self.data_dir / self.progress_file

    @property
    def token_path(self) -> Path:
        return self.data_dir / self.token_file

@dataclass
class ConnectivityConfig:
    """Конфигурация мониторинга сети"""
    check_url: str
    check_interval_seconds: int = 15
    lost_after_failures: int = 3

@dataclass
class SyncConfig:
    """Конфигурация синхронизации"""
    max_rejects_per_day: int = 5
    ordered_history_queue: bool = True
    timezone: str = "UTC"

class AppConfig:
    """Главный класс конфигурации"""

    def __init__(self):
        self.environment = Environment(os.getenv('ENVIRONMENT', 'development'))
        self._load_config()
        self._validate_config()

    def _load_config(self):
        """Загрузка конфигурации из переменных окружения"""

        # API
        base_url = os.getenv('API_BASE_URL', 'http://localhost:5000/api/')
        self.api = ApiConfig(
            base_url=base_url,
            request_timeout=float(os.getenv('API_TIMEOUT', 5)),
            connect_timeout=float(os.getenv('API_CONNECT_TIMEOUT', 3))
        )

        # Директории
        self.data_dir = Path(os.getenv('DATA_DIR', 'data'))
        self.backup_dir = Path(os.getenv('BACKUP_DIR', 'backups'))
        self.log_dir = Path(os.getenv('LOG_DIR', 'logs'))

        # Хранилище
        self.storage = StorageConfig(
            data_dir=self.data_dir,
            backup_dir=self.backup_dir
        )

        # Сеть
        self.connectivity = ConnectivityConfig(
            check_url=os.getenv('CHECK_URL', base_url),
            check_interval_seconds=int(os.getenv('CHECK_INTERVAL', 15)),
            lost_after_failures=int(os.getenv('LOST_AFTER_FAILURES', 3))
        )

        # Синхронизация
        self.sync = SyncConfig(
            max_rejects_per_day=int(os.getenv('MAX_REJECTS_PER_DAY', 5)),
            ordered_history_queue=os.getenv('ORDERED_HISTORY_QUEUE', 'true').lower() == 'true',
            timezone=os.getenv('TIMEZONE', 'UTC')
        )

        # Логирование
        self.log_level = LogLevel(os.getenv('LOG_LEVEL', 'INFO'))
        self.log_to_file = os.getenv('LOG_TO_FILE', 'false').lower() == 'true'
        self.log_format = os.getenv(
            'LOG_FORMAT',
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )

    def _validate_config(self):
        """Валидация конфигурации"""
        errors = []

        if not self.api.base_url.startswith(('http://', 'https://')):
            errors.append("API_BASE_URL должен начинаться с http:// или https://")

        if self.api.request_timeout <= 0:
            errors.append("API_TIMEOUT должен быть положительным")

        if self.connectivity.check_interval_seconds <= 0:
            errors.append("CHECK_INTERVAL должен быть положительным")

        if self.connectivity.lost_after_failures < 1:
            errors.append("LOST_AFTER_FAILURES должен быть не меньше 1")

        if self.sync.max_rejects_per_day < 0:
            errors.append("MAX_REJECTS_PER_DAY не может быть отрицательным")

        if self.sync.timezone not in pytz.all_timezones_set:
            errors.append(f"Неизвестная временная зона: {self.sync.timezone}")

        if errors:
            raise ValueError("Ошибки конфигурации:\n" + "\n".join(f"• {error}" for error in errors))

    def ensure_directories(self):
        """Создание необходимых директорий"""
        directories = [self.data_dir, self.backup_dir]
        if self.log_to_file:
            directories.append(self.log_dir)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def get_logging_config(self) -> Dict[str, Any]:
        """Получение конфигурации логирования"""
        handlers = ['console']
        if self.log_to_file:
            handlers.append('file')

        logging_config = {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {
                    'format': self.log_format,
                    'datefmt': '%Y-%m-%d %H:%M:%S'
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'level': self.log_level.value,
                    'formatter': 'default',
                    'stream': sys.stdout
                }
            },
            'loggers': {
                '': {
                    'level': self.log_level.value,
                    'handlers': handlers,
                    'propagate': False
                },
                'aiohttp': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'apscheduler': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                }
            }
        }

        if self.log_to_file:
            logging_config['handlers']['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'level': self.log_level.value,
                'formatter': 'default',
                'filename': str(self.log_dir / f"sync_{self.environment.value}.log"),
                'maxBytes': 10485760,  # 10MB
                'backupCount': 5,
                'encoding': 'utf-8'
            }

        return logging_config

    def is_development(self) -> bool:
        """Проверка режима разработки"""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Проверка продакшн режима"""
        return self.environment == Environment.PRODUCTION

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация конфигурации в словарь"""
        return {
            'environment': self.environment.value,
            'api': {
                'base_url': self.api.base_url,
                'request_timeout': self.api.request_timeout
            },
            'storage': {
                'progress_path': str(self.storage.progress_path),
                'token_path': str(self.storage.token_path)
            },
            'connectivity': {
                'check_url': self.connectivity.check_url,
                'check_interval_seconds': self.connectivity.check_interval_seconds
            },
            'sync': {
                'max_rejects_per_day': self.sync.max_rejects_per_day,
                'ordered_history_queue': self.sync.ordered_history_queue,
                'timezone': self.sync.timezone
            },
            'log_level': self.log_level.value
        }

# Глобальный экземпляр конфигурации
config = AppConfig()

__all__ = [
    'config',
    'AppConfig',
    'Environment',
    'LogLevel',
    'ApiConfig',
    'StorageConfig',
    'ConnectivityConfig',
    'SyncConfig'
]
