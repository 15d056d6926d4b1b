"""Pydantic-модели плановой задачи и её выполнения."""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

TaskStatus = Literal["active", "stopped", "expired"]
ExecutionStatus = Literal["running", "success", "failed"]
ExecutionTrigger = Literal["scheduled", "manual"]


class ScheduledTask(BaseModel):
    """Задача из таблицы scheduled_tasks."""

    id: int
    name: str
    description: str = ""
    tags: list[str] = []
    # Непрозрачные спецификации — передаются во внешний пайплайн как есть
    fetch_spec: Any = None
    transform_spec: Any = None
    cron_expression: str
    auto_destroy_at: datetime | None = None
    status: TaskStatus = "stopped"
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_past_deadline(self, now: datetime) -> bool:
        """auto_destroy_at задан и уже наступил."""
        return self.auto_destroy_at is not None and self.auto_destroy_at <= now


class TaskExecution(BaseModel):
    """Одно выполнение задачи из таблицы task_executions."""

    id: int | None = None
    task_id: int
    trigger: ExecutionTrigger = "scheduled"
    status: ExecutionStatus = "running"
    links_count: int = 0
    checked_count: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    submission_id: int | None = None
    error_message: str | None = None
    execution_duration: int | None = None  # миллисекунды
    started_at: datetime
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"
