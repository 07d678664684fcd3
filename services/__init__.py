# services/__init__.py

"""
Модуль сервисов DailyQuest Sync v1.0

Этот модуль собирает хранилище, клиент API, монитор сети и движок синхронизации
в один управляемый объект.
"""

import logging
from typing import Optional

from config import AppConfig
from database.local_store import LocalDataStore
from database.token_store import TokenStore
from .api_client import RemoteApiClient
from .connectivity import ConnectivityObserver, NetworkConnectivityObserver
from .sync_service import SyncService
from .user_service import UserService

logger = logging.getLogger(__name__)

class ServiceManager:
    """
    Менеджер для управления всеми сервисами приложения

    Обеспечивает:
    - Создание сервисов в нужном порядке
    - Передачу зависимостей через конструкторы
    - Корректное закрытие всех сервисов
    """

    def __init__(self, app_config: AppConfig,
                 connectivity: Optional[ConnectivityObserver] = None):
        self.config = app_config
        self.store: Optional[LocalDataStore] = None
        self.token_store: Optional[TokenStore] = None
        self.api: Optional[RemoteApiClient] = None
        self.connectivity = connectivity
        self.sync_service: Optional[SyncService] = None
        self.user_service: Optional[UserService] = None
        self.initialized = False

    async def initialize(self) -> None:
        """Инициализация всех сервисов"""
        if self.initialized:
            return

        logger.info("🔧 Инициализация сервисов DailyQuest Sync...")
        self.config.ensure_directories()
        storage = self.config.storage

        try:
            # 1. Локальные хранилища
            logger.info("📂 Инициализация хранилищ...")
            self.store = LocalDataStore(storage.progress_path, storage.backup_dir)
            self.token_store = TokenStore(storage.token_path, storage.backup_dir)

            # 2. Клиент API (читает токен из хранилища)
            self.api = RemoteApiClient(
                self.config.api.base_url,
                self.token_store,
                request_timeout=self.config.api.request_timeout,
                connect_timeout=self.config.api.connect_timeout
            )

            # 3. Монитор сети
            if self.connectivity is None:
                self.connectivity = NetworkConnectivityObserver(
                    self.config.connectivity.check_url,
                    interval_seconds=self.config.connectivity.check_interval_seconds,
                    lost_after_failures=self.config.connectivity.lost_after_failures,
                    timeout=self.config.api.connect_timeout
                )
            await self.connectivity.start()

            # 4. Движок синхронизации (зависит от всего выше)
            logger.info("🔄 Инициализация SyncService...")
            self.sync_service = SyncService(
                self.store,
                self.api,
                self.connectivity,
                max_rejects_per_day=self.config.sync.max_rejects_per_day,
                ordered_history_queue=self.config.sync.ordered_history_queue,
                timezone=self.config.sync.timezone
            )
            await self.sync_service.start()

            self.user_service = UserService(self.api, self.token_store, self.sync_service)
        except Exception as e:
            logger.error(f"❌ Ошибка инициализации сервисов: {e}")
            await self.close()
            raise

        self.initialized = True
        logger.info("✅ Все сервисы инициализированы успешно!")

    async def close(self) -> None:
        """Закрытие всех сервисов"""
        logger.info("🔒 Закрытие сервисов...")
        if self.sync_service:
            await self.sync_service.close()
        if self.connectivity:
            await self.connectivity.stop()
        if self.api:
            await self.api.close()
        self.initialized = False
        logger.info("✅ Все сервисы закрыты")

    def health_check(self) -> dict:
        """Проверка состояния всех сервисов"""
        health = {
            "status": "healthy" if self.initialized else "stopped",
            "services": {}
        }
        if self.store:
            health["services"]["local_store"] = self.store.get_stats()
        if self.token_store:
            health["services"]["auth"] = {"logged_in": self.token_store.is_logged_in()}
        if self.api:
            health["services"]["api"] = self.api.get_stats()
        if self.sync_service:
            sync_health = self.sync_service.health_check()
            health["services"]["sync"] = sync_health
            if sync_health["status"] != "healthy" and health["status"] == "healthy":
                health["status"] = sync_health["status"]
        return health

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

__all__ = [
    'ServiceManager',
    'SyncService',
    'UserService',
    'RemoteApiClient'
]
