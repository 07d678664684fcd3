# services/user_service.py

import logging
from typing import Optional

from core.models import ProgressSnapshot
from database.token_store import TokenStore
from services.api_client import RemoteApiClient
from services.sync_service import SyncService
from shared.models import RegisterRequest, LoginRequest, AuthResponse, progress_from_user

logger = logging.getLogger(__name__)

class UserService:
    """Регистрация, вход и выход; ошибки API доходят до вызывающего кода"""

    def __init__(self, api: RemoteApiClient, token_store: TokenStore,
                 sync_service: Optional[SyncService] = None):
        self.api = api
        self.token_store = token_store
        self.sync_service = sync_service

    async def register(self, username: str, email: str, password: str) -> AuthResponse:
        response = await self.api.register(RegisterRequest(username=username, email=email, password=password))
        await self._on_authenticated(response)
        logger.info(f"👤 Зарегистрирован пользователь {response.username}")
        return response

    async def login(self, email: str, password: str) -> AuthResponse:
        response = await self.api.login(LoginRequest(email=email, password=password))
        await self._on_authenticated(response)
        logger.info(f"👤 Вход выполнен: {response.username}")
        return response

    async def _on_authenticated(self, response: AuthResponse) -> None:
        await self.token_store.save_token(response.token)
        if self.sync_service:
            self.sync_service.auth_error_detected = False
            if self.sync_service.is_online:
                await self.sync_service.process_pending_operations()

    async def logout(self) -> None:
        await self.token_store.delete_token()
        logger.info("🚪 Пользователь вышел")

    def is_logged_in(self) -> bool:
        return self.token_store.is_logged_in()

    async def get_current_user_progress(self) -> ProgressSnapshot:
        user = await self.api.get_current_user()
        return progress_from_user(user)

__all__ = ['UserService']
