# services/api_client.py

"""
HTTP клиент сервера DailyQuest на aiohttp.

Каждый вызов ограничен ClientTimeout, повторов нет: повтор - забота очереди
отложенных операций. Все сбои поднимаются как наследники ApiError.

Маршруты GET progress/seed и GET progress/reject-info - расширение API:
сервер DailyQuest в базовой поставке объявляет для этих ресурсов только POST.
Сервер без них отвечает 404, и SyncService тогда просто не сверяет seed
и счётчик отказов, оставляя локальные значения.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiohttp
import pydantic

from database.token_store import TokenStore
from shared.models import (
    ApiModel, RegisterRequest, LoginRequest, AuthResponse, UserResponse,
    ProgressRequest, ProgressResponse, SeedRequest, SeedResponse,
    TaskHistoryRequest, TaskHistoryDto, MessageResponse,
    RejectInfoRequest, RejectInfoResponse,
    ThemePreferenceRequest, ThemePreferenceResponse,
    GoalProgressRequest, GoalDto
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=ApiModel)

# ===== EXCEPTIONS =====

class ApiError(Exception):
    """Базовое исключение для ошибок обращения к серверу"""
    pass

class NetworkUnreachableError(ApiError):
    """Сервер недоступен"""
    pass

class RequestTimeoutError(NetworkUnreachableError):
    """Сервер не ответил вовремя"""
    pass

class HttpStatusError(ApiError):
    """Сервер ответил кодом ошибки"""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        self.message = message
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")

class AuthenticationError(HttpStatusError):
    """Токен отсутствует, истёк или отклонён (401/403)"""
    pass

class MalformedResponseError(ApiError):
    """Ответ не JSON или не совпадает с ожидаемой схемой"""
    pass

# ===== CLIENT =====

class RemoteApiClient:
    """Типизированный доступ к REST API"""

    def __init__(self, base_url: str, token_store: TokenStore,
                 request_timeout: float = 5.0, connect_timeout: float = 3.0):
        self.base_url = base_url.rstrip('/') + '/'
        self.token_store = token_store
        self.timeout = aiohttp.ClientTimeout(total=request_timeout, connect=connect_timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self.requests_count = 0
        self.errors_count = 0

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("🔒 HTTP сессия закрыта")
        self._session = None

    def _url(self, path: str) -> str:
        return self.base_url + path.lstrip('/')

    def _headers(self, authorized: bool) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if authorized:
            token = self.token_store.get_token()
            if token:
                headers['Authorization'] = f"Bearer {token}"
        return headers

    async def _request(self, method: str, path: str, payload: Optional[ApiModel] = None,
                       authorized: bool = True) -> Any:
        """Выполнить запрос и вернуть разобранный JSON"""
        url = self._url(path)
        body = payload.to_payload() if payload is not None else None
        self.requests_count += 1

        try:
            session = self._get_session()
            async with session.request(method, url, json=body, headers=self._headers(authorized)) as response:
                raw = await response.read()
                if response.status >= 400:
                    message = _error_message(raw.decode('utf-8', errors='replace'))
                    if response.status in (401, 403):
                        raise AuthenticationError(response.status, message)
                    raise HttpStatusError(response.status, message)
        except ApiError:
            self.errors_count += 1
            raise
        except asyncio.TimeoutError as e:
            self.errors_count += 1
            raise RequestTimeoutError(f"{method} {path}: превышено время ожидания") from e
        except aiohttp.ClientError as e:
            self.errors_count += 1
            raise NetworkUnreachableError(f"{method} {path}: {e}") from e

        try:
            return json.loads(raw.decode('utf-8')) if raw else None
        except UnicodeDecodeError as e:
            self.errors_count += 1
            raise MalformedResponseError(f"{method} {path}: ответ не в UTF-8") from e
        except json.JSONDecodeError as e:
            self.errors_count += 1
            raise MalformedResponseError(f"{method} {path}: ответ не JSON") from e

    async def _call(self, model: Type[ModelT], method: str, path: str,
                    payload: Optional[ApiModel] = None, authorized: bool = True) -> ModelT:
        data = await self._request(method, path, payload, authorized)
        return self._parse(model, data, f"{method} {path}")

    # ===== AUTH =====

    async def register(self, request: RegisterRequest) -> AuthResponse:
        return await self._call(AuthResponse, 'POST', 'auth/register', request, authorized=False)

    async def login(self, request: LoginRequest) -> AuthResponse:
        return await self._call(AuthResponse, 'POST', 'auth/login', request, authorized=False)

    async def get_current_user(self) -> UserResponse:
        return await self._call(UserResponse, 'GET', 'auth/me')

    # ===== PROGRESS =====

    async def save_progress(self, request: ProgressRequest) -> ProgressResponse:
        return await self._call(ProgressResponse, 'POST', 'progress', request)

    async def save_seed(self, request: SeedRequest) -> SeedResponse:
        return await self._call(SeedResponse, 'POST', 'progress/seed', request)

    async def fetch_seed(self) -> SeedResponse:
        """Расширение API; сервер без этого маршрута отвечает 404"""
        return await self._call(SeedResponse, 'GET', 'progress/seed')

    async def save_task_history(self, request: TaskHistoryRequest) -> MessageResponse:
        return await self._call(MessageResponse, 'POST', 'progress/task-history', request)

    async def get_task_history(self) -> List[TaskHistoryDto]:
        data = await self._request('GET', 'progress/task-history')
        if not isinstance(data, list):
            self.errors_count += 1
            raise MalformedResponseError("GET progress/task-history: ожидался список")
        return [self._parse(TaskHistoryDto, item, "GET progress/task-history") for item in data]

    async def clear_task_history(self) -> MessageResponse:
        return await self._call(MessageResponse, 'DELETE', 'progress/task-history')

    async def update_reject_info(self, request: RejectInfoRequest) -> RejectInfoResponse:
        return await self._call(RejectInfoResponse, 'POST', 'progress/reject-info', request)

    async def fetch_reject_info(self) -> RejectInfoResponse:
        """Расширение API; сервер без этого маршрута отвечает 404"""
        return await self._call(RejectInfoResponse, 'GET', 'progress/reject-info')

    async def save_theme_preference(self, request: ThemePreferenceRequest) -> ThemePreferenceResponse:
        return await self._call(ThemePreferenceResponse, 'POST', 'progress/theme', request)

    async def get_theme_preference(self) -> ThemePreferenceResponse:
        return await self._call(ThemePreferenceResponse, 'GET', 'progress/theme')

    # ===== GOALS =====

    async def update_goal_progress(self, goal_id: str, request: GoalProgressRequest) -> GoalDto:
        return await self._call(GoalDto, 'PATCH', f'goals/{goal_id}/progress', request)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'base_url': self.base_url,
            'requests': self.requests_count,
            'errors': self.errors_count,
            'session_open': self._session is not None and not self._session.closed
        }

    def _parse(self, model: Type[ModelT], data: Any, context: str) -> ModelT:
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            self.errors_count += 1
            raise MalformedResponseError(f"{context}: неожиданный формат ответа ({e.error_count()} ошибок)") from e

def _error_message(text: str) -> str:
    """Сервер кладёт описание ошибки в поле message"""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text[:200]
    if isinstance(data, dict):
        return str(data.get('message', ''))
    return ""

__all__ = [
    'ApiError',
    'NetworkUnreachableError',
    'RequestTimeoutError',
    'HttpStatusError',
    'AuthenticationError',
    'MalformedResponseError',
    'RemoteApiClient'
]
