"""Учёт выполнений плановых задач: running → success | failed, ровно один раз."""
from dataclasses import dataclass
from datetime import datetime

from src.database import sanitize_error
from src.exceptions import StateTransitionError, ValidationError
from src.models.task import ExecutionTrigger, TaskExecution


@dataclass(frozen=True)
class ExecutionCounts:
    """Счётчики успешного выполнения."""

    links_count: int = 0
    checked_count: int = 0
    valid_count: int = 0
    invalid_count: int = 0

    def validate(self) -> None:
        """valid + invalid ≤ checked ≤ links, все ≥ 0."""
        values = (self.links_count, self.checked_count, self.valid_count, self.invalid_count)
        if any(v < 0 for v in values):
            raise ValidationError(f"Execution counts must be non-negative: {values}")
        if self.valid_count + self.invalid_count > self.checked_count:
            raise ValidationError(
                f"valid ({self.valid_count}) + invalid ({self.invalid_count}) "
                f"exceeds checked ({self.checked_count})"
            )
        if self.checked_count > self.links_count:
            raise ValidationError(
                f"checked ({self.checked_count}) exceeds links ({self.links_count})"
            )


def _duration_ms(started_at: datetime, finished_at: datetime) -> int:
    return max(0, int((finished_at - started_at).total_seconds() * 1000))


def _ensure_running(execution: TaskExecution) -> None:
    if execution.is_terminal:
        raise StateTransitionError(
            f"Execution {execution.id} is already {execution.status}"
        )


def start_execution(
    task_id: int,
    now: datetime,
    trigger: ExecutionTrigger = "scheduled",
) -> TaskExecution:
    """Новая запись в running с started_at."""
    return TaskExecution(task_id=task_id, trigger=trigger, status="running", started_at=now)


def complete_success(
    execution: TaskExecution,
    counts: ExecutionCounts,
    now: datetime,
    submission_id: int | None = None,
) -> TaskExecution:
    """running → success со счётчиками и длительностью."""
    _ensure_running(execution)
    counts.validate()
    return execution.model_copy(update={
        "status": "success",
        "links_count": counts.links_count,
        "checked_count": counts.checked_count,
        "valid_count": counts.valid_count,
        "invalid_count": counts.invalid_count,
        "submission_id": submission_id if submission_id is not None else execution.submission_id,
        "error_message": None,
        "finished_at": now,
        "execution_duration": _duration_ms(execution.started_at, now),
    })


def complete_failure(
    execution: TaskExecution,
    error: str,
    now: datetime,
    links_count: int | None = None,
) -> TaskExecution:
    """running → failed. Пустое сообщение об ошибке недопустимо."""
    _ensure_running(execution)
    message = sanitize_error(error or "").strip()
    if not message:
        raise ValidationError("Failed execution requires a non-empty error_message")
    update: dict = {
        "status": "failed",
        "error_message": message,
        "finished_at": now,
        "execution_duration": _duration_ms(execution.started_at, now),
    }
    if links_count is not None:
        update["links_count"] = max(0, links_count)
    return execution.model_copy(update=update)


def terminal_patch(execution: TaskExecution) -> dict:
    """Поля терминальной записи для UPDATE ... WHERE status='running'."""
    if not execution.is_terminal:
        raise StateTransitionError(f"Execution {execution.id} is still running")
    return execution.model_dump(
        mode="json",
        include={
            "status",
            "links_count",
            "checked_count",
            "valid_count",
            "invalid_count",
            "submission_id",
            "error_message",
            "execution_duration",
            "finished_at",
        },
    )
