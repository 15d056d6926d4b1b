"""
Жизненный цикл плановой задачи: active / stopped / expired.

Все переходы — чистые функции: принимают текущую задачу и время,
возвращают patch для одной атомарной записи в БД. status и next_run_at
всегда меняются в одном patch, поэтому читатель никогда не увидит
active без next_run_at или stopped с next_run_at.
"""
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from src.exceptions import StateTransitionError, ValidationError
from src.models.task import ExecutionTrigger, ScheduledTask, TaskStatus
from src.tasks.cron import NextRunOracle

# Поля, которые можно менять через update (status — только enable/disable)
UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "tags",
    "fetch_spec",
    "transform_spec",
    "cron_expression",
    "auto_destroy_at",
})
_SCHEDULE_FIELDS = frozenset({"cron_expression", "auto_destroy_at"})


def _clean_tags(tags: Any) -> list[str]:
    """Теги: строки без пробелов по краям, без пустых и дублей."""
    if tags is None:
        return []
    if isinstance(tags, str) or not isinstance(tags, (list, tuple, set)):
        raise ValidationError("tags must be a list of strings")
    result: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError("tags must be a list of strings")
        tag = tag.strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def build_new_task(
    data: Mapping[str, Any],
    now: datetime,
    oracle: NextRunOracle,
) -> dict[str, Any]:
    """
    Поля новой задачи. По умолчанию stopped, active — только явно.
    Дедлайн в прошлом: active → StateTransitionError, stopped → ValidationError.
    """
    status: TaskStatus = data.get("status") or "stopped"
    if status not in ("active", "stopped"):
        raise ValidationError(f"Task can be created as 'active' or 'stopped', got {status!r}")

    name = _require_text(data.get("name"), "name")
    cron_expression = _require_text(data.get("cron_expression"), "cron_expression")
    if data.get("fetch_spec") in (None, "", {}):
        raise ValidationError("fetch_spec is required")

    # Проверяем выражение сразу, даже для stopped
    next_run = oracle(cron_expression, now)

    auto_destroy_at = data.get("auto_destroy_at")
    if auto_destroy_at is not None and auto_destroy_at <= now:
        if status == "active":
            raise StateTransitionError("Task cannot be created active: auto_destroy_at has passed")
        raise ValidationError("auto_destroy_at must be in the future")

    return {
        "name": name,
        "description": data.get("description") or "",
        "tags": _clean_tags(data.get("tags")),
        "fetch_spec": data.get("fetch_spec"),
        "transform_spec": data.get("transform_spec"),
        "cron_expression": cron_expression,
        "auto_destroy_at": auto_destroy_at,
        "status": status,
        "next_run_at": next_run if status == "active" else None,
        "last_run_at": None,
        "created_at": now,
        "updated_at": now,
    }


def enable(task: ScheduledTask, now: datetime, oracle: NextRunOracle) -> dict[str, Any]:
    """stopped → active. Прошедший дедлайн или expired → StateTransitionError."""
    if task.is_past_deadline(now):
        raise StateTransitionError(
            f"Task {task.id} auto_destroy_at {task.auto_destroy_at} has passed, "
            "it cannot be enabled"
        )
    if task.status == "expired":
        raise StateTransitionError(f"Task {task.id} is expired and cannot be enabled")

    return {
        "status": "active",
        "next_run_at": oracle(task.cron_expression, now),
        "updated_at": now,
    }


def disable(task: ScheduledTask, now: datetime) -> dict[str, Any]:
    """Любое состояние → stopped, next_run_at сбрасывается."""
    return {"status": "stopped", "next_run_at": None, "updated_at": now}


def expire(task: ScheduledTask, now: datetime) -> dict[str, Any]:
    """Дедлайн наступил → expired. Вызывается триггером по времени."""
    if not task.is_past_deadline(now):
        raise StateTransitionError(f"Task {task.id} has not reached auto_destroy_at yet")
    if task.status == "expired":
        raise StateTransitionError(f"Task {task.id} is already expired")
    return {"status": "expired", "next_run_at": None, "updated_at": now}


def apply_update(
    task: ScheduledTask,
    changes: Mapping[str, Any],
    now: datetime,
    oracle: NextRunOracle,
) -> dict[str, Any]:
    """
    Обновить поля не-expired задачи.
    Смена cron/дедлайна у active задачи сразу пересчитывает next_run_at.
    Дедлайн, перенесённый в прошлое, переводит задачу в expired той же записью.
    """
    if task.status == "expired":
        raise StateTransitionError(f"Task {task.id} is expired and cannot be updated")

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    patch: dict[str, Any] = {}
    for field, value in changes.items():
        if field in ("name", "cron_expression"):
            patch[field] = _require_text(value, field)
        elif field == "tags":
            patch[field] = _clean_tags(value)
        elif field == "description":
            patch[field] = value or ""
        elif field == "fetch_spec" and value in (None, "", {}):
            raise ValidationError("fetch_spec is required")
        else:
            patch[field] = value

    cron_expression = patch.get("cron_expression", task.cron_expression)
    if "cron_expression" in patch:
        oracle(cron_expression, now)  # ValidationError при кривом выражении

    if _SCHEDULE_FIELDS & set(patch):
        candidate = task.model_copy(update=patch)
        if candidate.is_past_deadline(now):
            patch["status"] = "expired"
            patch["next_run_at"] = None
        elif task.status == "active":
            patch["next_run_at"] = oracle(cron_expression, now)

    patch["updated_at"] = now
    return patch


def ensure_manual_run_allowed(task: ScheduledTask, now: datetime) -> None:
    """Ручной запуск: только active/stopped и до дедлайна."""
    if task.status == "expired" or task.is_past_deadline(now):
        raise StateTransitionError(f"Task {task.id} is expired and cannot be run")


def record_firing(
    task: ScheduledTask,
    fired_at: datetime,
    now: datetime,
    oracle: NextRunOracle,
    trigger: ExecutionTrigger,
) -> dict[str, Any]:
    """
    Учёт после запуска: last_run_at всегда.
    Плановый запуск active задачи ещё и сдвигает next_run_at;
    ручной запуск не трогает ни статус, ни расписание.
    """
    patch: dict[str, Any] = {"last_run_at": fired_at}
    if trigger == "scheduled" and task.status == "active":
        if task.is_past_deadline(now):
            patch.update({"status": "expired", "next_run_at": None, "updated_at": now})
        else:
            patch.update({"next_run_at": oracle(task.cron_expression, now), "updated_at": now})
    return patch


def is_due(task: ScheduledTask, now: datetime) -> bool:
    """Задачу пора запускать по расписанию."""
    return (
        task.status == "active"
        and task.next_run_at is not None
        and task.next_run_at <= now
        and not task.is_past_deadline(now)
    )
