"""CRUD-операции с Supabase: отправки, плановые задачи, выполнения, настройки."""
import asyncio
import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

import httpx
from loguru import logger
from postgrest.types import CountMethod
from supabase import Client

from src.exceptions import NotFoundError, StateTransitionError, UpstreamError
from src.models.submission import LinkFailure, Submission
from src.models.task import ScheduledTask, TaskExecution

SUBMISSIONS = "submissions"
INVALID_LINKS = "invalid_links"
SCHEDULED_TASKS = "scheduled_tasks"
TASK_EXECUTIONS = "task_executions"
SETTINGS = "settings"


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов Supabase в отдельном потоке."""
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except httpx.TransportError as e:
        raise UpstreamError(f"Store unreachable: {sanitize_error(str(e))}") from e


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    return re.sub(r"://[^@\s]+@", "://***:***@", error)


def serialize(data: Mapping[str, Any]) -> dict[str, Any]:
    """datetime → ISO-строки для PostgREST."""
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in data.items()
    }


def page_range(page: int, page_size: int) -> tuple[int, int]:
    """Пагинация page/page_size (с 1) → включительный range для PostgREST."""
    offset = (max(page, 1) - 1) * page_size
    return offset, offset + page_size - 1


# --- Отправки ---------------------------------------------------------------


async def insert_submission(db: Client, row: Mapping[str, Any]) -> Submission:
    """Создать запись отправки."""
    result = await run_in_thread(
        db.table(SUBMISSIONS).insert(serialize(row)).execute
    )
    return Submission.model_validate(result.data[0])


async def update_submission(db: Client, submission_id: int, data: Mapping[str, Any]) -> Submission:
    """Обновить отправку результатами проверки."""
    result = await run_in_thread(
        db.table(SUBMISSIONS).update(serialize(data)).eq("id", submission_id).execute
    )
    if not result.data:
        raise NotFoundError("Submission", submission_id)
    return Submission.model_validate(result.data[0])


async def get_submission(db: Client, submission_id: int) -> Submission:
    """Получить отправку по ID."""
    result = await run_in_thread(
        db.table(SUBMISSIONS).select("*").eq("id", submission_id).limit(1).execute
    )
    if not result.data:
        raise NotFoundError("Submission", submission_id)
    return Submission.model_validate(result.data[0])


async def list_submissions(
    db: Client, page: int, page_size: int
) -> tuple[list[Submission], int]:
    """Отправки, новые первыми."""
    start, end = page_range(page, page_size)
    result = await run_in_thread(
        db.table(SUBMISSIONS)
        .select("*", count=CountMethod.exact)
        .order("created_at", desc=True)
        .range(start, end)
        .execute
    )
    return [Submission.model_validate(r) for r in result.data], result.count or 0


# --- Невалидные ссылки --------------------------------------------------------


async def upsert_invalid_links(
    db: Client, failures: Iterable[LinkFailure], submission_id: int | None
) -> None:
    """Upsert деталей невалидных ссылок. ON CONFLICT (link) DO UPDATE."""
    rows = [
        {**failure.model_dump(), "submission_id": submission_id}
        for failure in failures
    ]
    if not rows:
        return
    await run_in_thread(
        db.table(INVALID_LINKS).upsert(rows, on_conflict="link").execute
    )


async def list_rate_limited_links(
    db: Client, page: int, page_size: int, platform: str | None = None
) -> tuple[list[dict], int]:
    """Ссылки, которые валидатор не смог проверить из-за лимитов платформы."""
    start, end = page_range(page, page_size)
    query = (
        db.table(INVALID_LINKS)
        .select("*", count=CountMethod.exact)
        .eq("is_rate_limited", True)
    )
    if platform:
        query = query.eq("platform", platform)
    result = await run_in_thread(
        query.order("created_at", desc=True).range(start, end).execute
    )
    return result.data, result.count or 0


async def clear_rate_limited_links(db: Client) -> int:
    """Удалить все rate-limited записи. Вернуть количество удалённых."""
    result = await run_in_thread(
        db.table(INVALID_LINKS).delete().eq("is_rate_limited", True).execute
    )
    deleted = len(result.data or [])
    logger.info(f"Cleared {deleted} rate-limited links")
    return deleted


# --- Плановые задачи ------------------------------------------------------------


async def insert_task(db: Client, row: Mapping[str, Any]) -> ScheduledTask:
    """Создать плановую задачу."""
    result = await run_in_thread(
        db.table(SCHEDULED_TASKS).insert(serialize(row)).execute
    )
    return ScheduledTask.model_validate(result.data[0])


async def get_task(db: Client, task_id: int) -> ScheduledTask:
    """Получить задачу по ID."""
    result = await run_in_thread(
        db.table(SCHEDULED_TASKS).select("*").eq("id", task_id).limit(1).execute
    )
    if not result.data:
        raise NotFoundError("Task", task_id)
    return ScheduledTask.model_validate(result.data[0])


async def task_name_exists(db: Client, name: str, exclude_id: int | None = None) -> bool:
    """Проверить занятость имени (при обновлении исключая саму задачу)."""
    query = db.table(SCHEDULED_TASKS).select("id").eq("name", name)
    if exclude_id is not None:
        query = query.neq("id", exclude_id)
    result = await run_in_thread(query.limit(1).execute)
    return bool(result.data)


async def update_task_guarded(
    db: Client,
    task_id: int,
    expected_status: str,
    patch: Mapping[str, Any],
) -> ScheduledTask:
    """
    Атомарно применить patch, только если статус не изменился с момента чтения.
    Одна запись UPDATE ... WHERE id=? AND status=? — status и next_run_at
    всегда меняются вместе.
    """
    result = await run_in_thread(
        db.table(SCHEDULED_TASKS)
        .update(serialize(patch))
        .eq("id", task_id)
        .eq("status", expected_status)
        .execute
    )
    if not result.data:
        raise StateTransitionError(
            f"Task {task_id} was modified concurrently (expected status '{expected_status}')"
        )
    return ScheduledTask.model_validate(result.data[0])


async def delete_task(db: Client, task_id: int, purge_executions: bool = False) -> None:
    """Удалить задачу. Выполнения остаются для аудита, если не purge."""
    result = await run_in_thread(
        db.table(SCHEDULED_TASKS).delete().eq("id", task_id).execute
    )
    if not result.data:
        raise NotFoundError("Task", task_id)
    if purge_executions:
        await run_in_thread(
            db.table(TASK_EXECUTIONS).delete().eq("task_id", task_id).execute
        )
        logger.info(f"Task {task_id} deleted with its executions")
    else:
        logger.info(f"Task {task_id} deleted, executions retained")


async def list_tasks(
    db: Client,
    page: int,
    page_size: int,
    tags: list[str] | None = None,
    status: str | None = None,
) -> tuple[list[ScheduledTask], int]:
    """Задачи с фильтрами: tags — пересечение (OR), status — точное совпадение."""
    start, end = page_range(page, page_size)
    query = db.table(SCHEDULED_TASKS).select("*", count=CountMethod.exact)
    if tags:
        query = query.overlaps("tags", tags)
    if status:
        query = query.eq("status", status)
    result = await run_in_thread(
        query.order("created_at", desc=True).range(start, end).execute
    )
    return [ScheduledTask.model_validate(r) for r in result.data], result.count or 0


async def list_all_tags(db: Client) -> list[str]:
    """Все уникальные теги задач, отсортированные."""
    result = await run_in_thread(db.table(SCHEDULED_TASKS).select("tags").execute)
    tags: set[str] = set()
    for row in result.data:
        tags.update(tag for tag in row.get("tags") or [] if tag)
    return sorted(tags)


async def fetch_due_tasks(db: Client, now: datetime, limit: int = 50) -> list[ScheduledTask]:
    """Active задачи, у которых next_run_at уже наступил."""
    result = await run_in_thread(
        db.table(SCHEDULED_TASKS)
        .select("*")
        .eq("status", "active")
        .lte("next_run_at", now.isoformat())
        .order("next_run_at", desc=False)
        .limit(limit)
        .execute
    )
    return [ScheduledTask.model_validate(r) for r in result.data]


async def fetch_expirable_tasks(db: Client, now: datetime) -> list[ScheduledTask]:
    """Не-expired задачи с наступившим auto_destroy_at."""
    result = await run_in_thread(
        db.table(SCHEDULED_TASKS)
        .select("*")
        .in_("status", ["active", "stopped"])
        .not_.is_("auto_destroy_at", "null")
        .lte("auto_destroy_at", now.isoformat())
        .execute
    )
    return [ScheduledTask.model_validate(r) for r in result.data]


async def update_task_run(db: Client, task: ScheduledTask, patch: Mapping[str, Any]) -> None:
    """
    Записать учёт запуска. Если patch трогает расписание — только при том же
    статусе и next_run_at, что были прочитаны перед запуском; иначе (задачу
    выключили, перевключили или сменили cron/дедлайн) пишем только last_run_at.
    """
    if "next_run_at" in patch or "status" in patch:
        query = (
            db.table(SCHEDULED_TASKS)
            .update(serialize(patch))
            .eq("id", task.id)
            .eq("status", task.status)
        )
        if task.next_run_at is None:
            query = query.is_("next_run_at", "null")
        else:
            query = query.eq("next_run_at", task.next_run_at.isoformat())
        result = await run_in_thread(query.execute)
        if result.data:
            return
        logger.info(f"Task {task.id} changed during run, keeping its new schedule")
        patch = {"last_run_at": patch["last_run_at"]}
    await run_in_thread(
        db.table(SCHEDULED_TASKS).update(serialize(patch)).eq("id", task.id).execute
    )


# --- Выполнения ---------------------------------------------------------------


async def insert_execution(db: Client, execution: TaskExecution) -> TaskExecution:
    """Создать запись выполнения в running."""
    row = execution.model_dump(mode="json", exclude={"id"})
    result = await run_in_thread(db.table(TASK_EXECUTIONS).insert(row).execute)
    return TaskExecution.model_validate(result.data[0])


async def finish_execution(db: Client, execution_id: int, patch: Mapping[str, Any]) -> TaskExecution:
    """Терминальная запись — только из running, ровно один раз."""
    result = await run_in_thread(
        db.table(TASK_EXECUTIONS)
        .update(dict(patch))
        .eq("id", execution_id)
        .eq("status", "running")
        .execute
    )
    if not result.data:
        raise StateTransitionError(f"Execution {execution_id} is not running")
    return TaskExecution.model_validate(result.data[0])


async def list_executions(
    db: Client, task_id: int, page: int, page_size: int
) -> tuple[list[TaskExecution], int]:
    """История выполнений задачи, новые первыми."""
    start, end = page_range(page, page_size)
    result = await run_in_thread(
        db.table(TASK_EXECUTIONS)
        .select("*", count=CountMethod.exact)
        .eq("task_id", task_id)
        .order("started_at", desc=True)
        .range(start, end)
        .execute
    )
    return [TaskExecution.model_validate(r) for r in result.data], result.count or 0


# --- Настройки ------------------------------------------------------------------


async def get_setting(db: Client, key: str) -> Any:
    """Значение настройки или None."""
    result = await run_in_thread(
        db.table(SETTINGS).select("value").eq("key", key).limit(1).execute
    )
    if not result.data:
        return None
    return result.data[0]["value"]


async def put_setting(db: Client, key: str, value: Any) -> None:
    """Upsert настройки. ON CONFLICT (key) DO UPDATE."""
    await run_in_thread(
        db.table(SETTINGS).upsert({"key": key, "value": value}, on_conflict="key").execute
    )
