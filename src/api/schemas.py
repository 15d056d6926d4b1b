"""Pydantic-схемы для API чекера."""
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from src.models.submission import LinkInfo, Submission
from src.models.task import ScheduledTask, TaskExecution
from src.platforms.classifier import Platform


class LinkCheckRequest(BaseModel):
    """Запрос на проверку ссылок."""

    links: list[str] = Field(min_length=1, max_length=10000)
    selected_platforms: list[str] = []

    @field_validator("links", mode="before")
    @classmethod
    def split_text(cls, v: Any) -> Any:
        """Разрешить передать ссылки одним текстом, по строке на ссылку."""
        if isinstance(v, str):
            return v.splitlines()
        return v


class LinkCheckResponse(BaseModel):
    """Ответ на POST /api/links/check."""

    submission_id: int
    status: Literal["pending", "checked"]
    valid_links: list[str]
    invalid_links: list[str]
    pending_links: list[str]
    checked_now: list[str]
    deferred: list[str]
    duplicate_count: int
    invalid_format_count: int
    total_duration: int | None = None
    upstream_error: str | None = None
    unauthenticated: bool = False


class SubmissionDetail(Submission):
    """Отправка с поссылочными статусами."""

    links: list[LinkInfo] = []


class SubmissionListResponse(BaseModel):
    items: list[Submission]
    total: int
    page: int
    page_size: int


class RateLimitedLink(BaseModel):
    link: str
    platform: str = "unknown"
    failure_reason: str = ""
    submission_id: int | None = None
    created_at: datetime | None = None


class RateLimitedListResponse(BaseModel):
    items: list[RateLimitedLink]
    total: int
    page: int
    page_size: int


class ClearResponse(BaseModel):
    deleted: int


def _assume_utc(value: datetime | None) -> datetime | None:
    """Время без таймзоны считаем UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TaskCreateRequest(BaseModel):
    """Создание плановой задачи. По умолчанию задача создаётся остановленной."""

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    tags: list[str] = []
    fetch_spec: Any
    transform_spec: Any = None
    cron_expression: str = Field(min_length=1)
    auto_destroy_at: datetime | None = None
    status: Literal["active", "stopped"] = "stopped"

    @field_validator("auto_destroy_at")
    @classmethod
    def deadline_utc(cls, v: datetime | None) -> datetime | None:
        return _assume_utc(v)


class TaskUpdateRequest(BaseModel):
    """Частичное обновление: передаются только меняемые поля."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    tags: list[str] | None = None
    fetch_spec: Any = None
    transform_spec: Any = None
    cron_expression: str | None = None
    auto_destroy_at: datetime | None = None

    @field_validator("auto_destroy_at")
    @classmethod
    def deadline_utc(cls, v: datetime | None) -> datetime | None:
        return _assume_utc(v)


class TaskConfigTestRequest(BaseModel):
    """Пробный прогон пайплайна без сохранения задачи."""

    fetch_spec: Any
    transform_spec: Any = None


class PreviewLink(BaseModel):
    link: str
    platform: Platform


class TaskConfigTestResponse(BaseModel):
    """Ссылки, которые вернул бы пайплайн задачи."""

    links: list[PreviewLink]
    count: int
    raw_count: int
    duplicate_count: int
    invalid_format_count: int
    platforms: dict[str, int]  # Платформа → число ссылок


class TaskListResponse(BaseModel):
    """Пагинированный список задач."""

    items: list[ScheduledTask]
    total: int
    page: int
    page_size: int


class TagsResponse(BaseModel):
    tags: list[str]


class ExecutionListResponse(BaseModel):
    items: list[TaskExecution]
    total: int
    page: int
    page_size: int


class RunResponse(BaseModel):
    """Ответ на POST /api/scheduled-tasks/{id}/run."""

    task_id: int
    status: str  # "started"


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: str
    tasks_active: int
    executions_running: int
