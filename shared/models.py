from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any

from core.models import (
    ProgressSnapshot, SeedRecord, RejectInfo, ThemeMode, TaskHistoryEntry,
    GoalInfo, TaskStatus, parse_task_status, parse_theme_mode
)
from utils.datetime_utils import split_server_timestamp

class ApiModel(BaseModel):
    """Поля в snake_case, на проводе camelCase"""
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

# Модели авторизации
class RegisterRequest(ApiModel):
    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

class LoginRequest(ApiModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

class AuthResponse(ApiModel):
    id: str = Field(..., alias="_id")
    username: str
    email: str
    total_points: int = Field(0, alias="totalPoints")
    current_streak: int = Field(0, alias="currentStreak")
    token: str = Field(..., min_length=1)

class UserResponse(ApiModel):
    id: str = Field(..., alias="_id")
    username: str
    email: str
    total_points: int = Field(..., alias="totalPoints")
    current_streak: int = Field(..., alias="currentStreak")
    last_claimed_day: int = Field(-1, alias="lastClaimedDay")

# Модели прогресса
class ProgressRequest(ApiModel):
    points: int
    streak: int
    last_day: int = Field(..., alias="lastDay")

class ProgressResponse(ApiModel):
    total_points: int = Field(..., alias="totalPoints")
    current_streak: int = Field(..., alias="currentStreak")
    last_claimed_day: int = Field(..., alias="lastClaimedDay")

class SeedRequest(ApiModel):
    seed: int
    day: int

class SeedResponse(ApiModel):
    current_seed: int = Field(..., alias="currentSeed")
    seed_day: int = Field(..., alias="seedDay")

class RejectInfoRequest(ApiModel):
    count: int
    day: int

class RejectInfoResponse(ApiModel):
    reject_count: int = Field(..., alias="rejectCount")
    last_reject_day: int = Field(..., alias="lastRejectDay")

class ThemePreferenceRequest(ApiModel):
    theme_mode: int = Field(..., alias="themeMode", ge=0, le=2)

class ThemePreferenceResponse(ApiModel):
    theme_preference: int = Field(..., alias="themePreference", ge=0, le=2)

class MessageResponse(ApiModel):
    message: str = ""

# Модели журнала задач
class TaskHistoryRequest(ApiModel):
    quest: str
    points: int
    status: str
    goal_id: Optional[str] = Field(None, alias="goalId")
    goal_progress: Optional[int] = Field(None, alias="goalProgress")

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in (TaskStatus.COMPLETED.value, TaskStatus.REJECTED.value):
            raise ValueError(f'Неверный статус задачи: {v}')
        return v

class GoalInfoDto(ApiModel):
    goal_id: str = Field(..., alias="goalId")
    title: str = ""
    category: str = ""

class TaskHistoryDto(ApiModel):
    quest: str
    points: int
    status: str
    timestamp: str = ""
    goal_info: Optional[GoalInfoDto] = Field(None, alias="goalInfo")

# Модели целей
class GoalProgressRequest(ApiModel):
    progress_increment: int = Field(..., alias="progressIncrement", gt=0)
    quest_id: Optional[str] = Field(None, alias="questId")

class GoalDto(ApiModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., alias="_id")
    title: str = ""
    status: str = ""
    progress: int = 0

# ===== MAPPERS =====

def progress_to_request(snapshot: ProgressSnapshot) -> ProgressRequest:
    return ProgressRequest(points=snapshot.points, streak=snapshot.streak, last_day=snapshot.last_day)

def progress_from_response(response: ProgressResponse) -> ProgressSnapshot:
    return ProgressSnapshot(
        points=response.total_points,
        streak=response.current_streak,
        last_day=response.last_claimed_day
    )

def progress_from_user(response: UserResponse) -> ProgressSnapshot:
    return ProgressSnapshot(
        points=response.total_points,
        streak=response.current_streak,
        last_day=response.last_claimed_day
    )

def seed_from_response(response: SeedResponse) -> SeedRecord:
    return SeedRecord(seed=response.current_seed, day=response.seed_day)

def reject_info_from_response(response: RejectInfoResponse) -> RejectInfo:
    return RejectInfo(count=response.reject_count, day=response.last_reject_day)

def theme_from_response(response: ThemePreferenceResponse) -> ThemeMode:
    return parse_theme_mode(response.theme_preference)

def task_history_to_request(entry: TaskHistoryEntry, goal_id: Optional[str] = None,
                            goal_progress: int = 0) -> TaskHistoryRequest:
    """Данные цели передаются только вместе: id и положительный прирост"""
    with_goal = goal_id is not None and goal_progress > 0
    return TaskHistoryRequest(
        quest=entry.quest,
        points=entry.points,
        status=entry.status.value,
        goal_id=goal_id if with_goal else None,
        goal_progress=goal_progress if with_goal else None
    )

def task_history_from_dto(dto: TaskHistoryDto, tz_name: Optional[str] = None) -> TaskHistoryEntry:
    date_str, time_str = split_server_timestamp(dto.timestamp, tz_name)
    goal_info = None
    if dto.goal_info:
        goal_info = GoalInfo(
            goal_id=dto.goal_info.goal_id,
            title=dto.goal_info.title,
            category=dto.goal_info.category
        )
    return TaskHistoryEntry(
        quest=dto.quest,
        points=dto.points,
        status=parse_task_status(dto.status),
        date=date_str,
        time=time_str,
        goal_info=goal_info
    )

__all__ = [
    'ApiModel',
    'RegisterRequest', 'LoginRequest', 'AuthResponse', 'UserResponse',
    'ProgressRequest', 'ProgressResponse',
    'SeedRequest', 'SeedResponse',
    'RejectInfoRequest', 'RejectInfoResponse',
    'ThemePreferenceRequest', 'ThemePreferenceResponse',
    'MessageResponse',
    'TaskHistoryRequest', 'TaskHistoryDto', 'GoalInfoDto',
    'GoalProgressRequest', 'GoalDto',
    'progress_to_request', 'progress_from_response', 'progress_from_user',
    'seed_from_response', 'reject_info_from_response', 'theme_from_response',
    'task_history_to_request', 'task_history_from_dto',
]
