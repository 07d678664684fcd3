import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from core.models import ConnectivityStatus
from database.local_store import LocalDataStore
from database.token_store import TokenStore
from services.api_client import HttpStatusError, NetworkUnreachableError
from services.connectivity import ManualConnectivityObserver
from services.sync_service import SyncService
from shared.models import (
    AuthResponse, UserResponse, ProgressResponse, SeedResponse, MessageResponse,
    RejectInfoResponse, ThemePreferenceResponse, TaskHistoryDto, GoalDto
)

class FakeApiClient:
    """Сервер в памяти с управляемыми сбоями"""

    def __init__(self):
        self.calls: List[Tuple[str, Any]] = []
        self.offline = False
        self.failures: Dict[str, Exception] = {}

        self.points = 0
        self.streak = 0
        self.last_day = -1
        self.seed: Optional[Tuple[int, int]] = None
        self.reject: Optional[Tuple[int, int]] = None
        self.theme = 2
        self.history: List[Dict[str, Any]] = []
        self.goal_updates: List[Tuple[str, int]] = []
        self.theme_gate: Optional[asyncio.Event] = None

    def _check(self, name: str, payload: Any = None) -> None:
        self.calls.append((name, payload))
        if name in self.failures:
            raise self.failures[name]
        if self.offline:
            raise NetworkUnreachableError(f"{name}: нет сети")

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _user(self) -> UserResponse:
        return UserResponse(
            id="u1", username="tester", email="t@example.com",
            total_points=self.points, current_streak=self.streak, last_claimed_day=self.last_day
        )

    async def register(self, request):
        self._check("register", request)
        return AuthResponse(id="u1", username=request.username, email=request.email, token="jwt-register")

    async def login(self, request):
        self._check("login", request)
        return AuthResponse(id="u1", username="tester", email=request.email, token="jwt-login")

    async def get_current_user(self):
        self._check("get_current_user")
        return self._user()

    async def save_progress(self, request):
        self._check("save_progress", request)
        self.points, self.streak, self.last_day = request.points, request.streak, request.last_day
        return ProgressResponse(
            total_points=self.points, current_streak=self.streak, last_claimed_day=self.last_day
        )

    async def save_seed(self, request):
        self._check("save_seed", request)
        self.seed = (request.seed, request.day)
        return SeedResponse(current_seed=request.seed, seed_day=request.day)

    async def fetch_seed(self):
        self._check("fetch_seed")
        if self.seed is None:
            raise HttpStatusError(404, "not found")
        return SeedResponse(current_seed=self.seed[0], seed_day=self.seed[1])

    async def save_task_history(self, request):
        self._check("save_task_history", request)
        item = {"quest": request.quest, "points": request.points, "status": request.status,
                "timestamp": f"2025-06-20T10:00:{len(self.history):02d}.000Z"}
        self.history.append(item)
        return MessageResponse(message="Task history saved")

    async def get_task_history(self):
        self._check("get_task_history")
        return [TaskHistoryDto.model_validate(item) for item in self.history]

    async def clear_task_history(self):
        self._check("clear_task_history")
        self.history = []
        return MessageResponse(message="Task history cleared")

    async def update_reject_info(self, request):
        self._check("update_reject_info", request)
        self.reject = (request.count, request.day)
        return RejectInfoResponse(reject_count=request.count, last_reject_day=request.day)

    async def fetch_reject_info(self):
        self._check("fetch_reject_info")
        if self.reject is None:
            raise HttpStatusError(404, "not found")
        return RejectInfoResponse(reject_count=self.reject[0], last_reject_day=self.reject[1])

    async def save_theme_preference(self, request):
        self._check("save_theme_preference", request)
        if self.theme_gate is not None:
            await self.theme_gate.wait()
        self.theme = request.theme_mode
        return ThemePreferenceResponse(theme_preference=self.theme)

    async def get_theme_preference(self):
        self._check("get_theme_preference")
        return ThemePreferenceResponse(theme_preference=self.theme)

    async def update_goal_progress(self, goal_id, request):
        self._check("update_goal_progress", (goal_id, request))
        self.goal_updates.append((goal_id, request.progress_increment))
        return GoalDto(id=goal_id, title="Goal", progress=request.progress_increment)

@pytest.fixture
def api():
    return FakeApiClient()

@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "user_progress.json"

@pytest.fixture
def make_store(store_path, tmp_path):
    """Хранилище создаётся внутри запущенного цикла событий"""
    def factory():
        return LocalDataStore(store_path, tmp_path / "backups")
    return factory

@pytest.fixture
def make_token_store(tmp_path):
    def factory():
        return TokenStore(tmp_path / "data" / "auth_token.json", tmp_path / "backups")
    return factory

@pytest.fixture
def make_service(make_store, api):
    def factory(online: bool = True, **kwargs):
        status = ConnectivityStatus.AVAILABLE if online else ConnectivityStatus.UNAVAILABLE
        observer = ManualConnectivityObserver(status)
        kwargs.setdefault("clock", lambda: 1718000000000)
        return SyncService(make_store(), api, observer, **kwargs)
    return factory
