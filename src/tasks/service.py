"""Операции над плановыми задачами: чистый переход + одна guarded-запись в БД."""
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from supabase import Client

from src.database import (
    delete_task as db_delete_task,
    fetch_expirable_tasks,
    get_task,
    insert_task,
    task_name_exists,
    update_task_guarded,
)
from src.exceptions import StateTransitionError, ValidationError
from src.links.normalizer import NormalizedLinks, normalize_links
from src.models.task import ScheduledTask
from src.platforms.base import LinkSource
from src.tasks import state_machine
from src.tasks.cron import NextRunOracle


async def create_task(
    db: Client,
    data: Mapping[str, Any],
    oracle: NextRunOracle,
) -> ScheduledTask:
    """Создать задачу (stopped по умолчанию). Имя должно быть уникальным."""
    row = state_machine.build_new_task(data, datetime.now(UTC), oracle)
    if await task_name_exists(db, row["name"]):
        raise ValidationError(f"Task name '{row['name']}' already exists")
    task = await insert_task(db, row)
    logger.info(f"Created task {task.id} '{task.name}' ({task.status}, next_run_at={task.next_run_at})")
    return task


async def enable_task(db: Client, task_id: int, oracle: NextRunOracle) -> ScheduledTask:
    """stopped → active с пересчётом next_run_at."""
    task = await get_task(db, task_id)
    patch = state_machine.enable(task, datetime.now(UTC), oracle)
    updated = await update_task_guarded(db, task.id, task.status, patch)
    logger.info(f"Task {task_id} enabled, next run at {updated.next_run_at}")
    return updated


async def disable_task(db: Client, task_id: int) -> ScheduledTask:
    """Любое состояние → stopped, next_run_at = None."""
    task = await get_task(db, task_id)
    patch = state_machine.disable(task, datetime.now(UTC))
    updated = await update_task_guarded(db, task.id, task.status, patch)
    logger.info(f"Task {task_id} disabled (was {task.status})")
    return updated


async def update_task(
    db: Client,
    task_id: int,
    changes: Mapping[str, Any],
    oracle: NextRunOracle,
) -> ScheduledTask:
    """Обновить не-expired задачу; расписание пересчитывается той же записью."""
    task = await get_task(db, task_id)
    patch = state_machine.apply_update(task, changes, datetime.now(UTC), oracle)
    if "name" in patch and patch["name"] != task.name:
        if await task_name_exists(db, patch["name"], exclude_id=task.id):
            raise ValidationError(f"Task name '{patch['name']}' already exists")
    updated = await update_task_guarded(db, task.id, task.status, patch)
    if updated.status != task.status:
        logger.info(f"Task {task_id}: {task.status} → {updated.status} after update")
    return updated


async def delete_task(db: Client, task_id: int, purge_executions: bool = False) -> None:
    """Удалить задачу в любом состоянии."""
    await db_delete_task(db, task_id, purge_executions=purge_executions)


async def get_runnable_task(db: Client, task_id: int) -> ScheduledTask:
    """Задача для ручного запуска: active или stopped."""
    task = await get_task(db, task_id)
    state_machine.ensure_manual_run_allowed(task, datetime.now(UTC))
    return task


async def expire_due_tasks(db: Client) -> int:
    """Перевести в expired все задачи с наступившим auto_destroy_at."""
    now = datetime.now(UTC)
    expired = 0
    for task in await fetch_expirable_tasks(db, now):
        try:
            patch = state_machine.expire(task, now)
            await update_task_guarded(db, task.id, task.status, patch)
            expired += 1
        except StateTransitionError as e:
            logger.debug(f"Task {task.id} not expired: {e}")
    if expired:
        logger.info(f"Expired {expired} tasks past auto_destroy_at")
    return expired


@dataclass
class ConfigPreview:
    """Пробный прогон пайплайна задачи. В БД ничего не пишется."""

    raw_count: int
    normalized: NormalizedLinks


async def preview_task_config(source: LinkSource, fetch_spec: Any, transform_spec: Any) -> ConfigPreview:
    """Выполнить fetch + transform и вернуть нормализованные ссылки без проверки."""
    if fetch_spec in (None, "", {}):
        raise ValidationError("fetch_spec is required")
    raw_links = await source.fetch_links(fetch_spec, transform_spec)
    normalized = normalize_links(raw_links)
    logger.info(
        f"[preview] Pipeline returned {len(raw_links)} links, {len(normalized.links)} distinct"
    )
    return ConfigPreview(raw_count=len(raw_links), normalized=normalized)


async def preview_task(db: Client, source: LinkSource, task_id: int) -> ConfigPreview:
    """Пробный прогон пайплайна сохранённой задачи в любом статусе."""
    task = await get_task(db, task_id)
    return await preview_task_config(source, task.fetch_spec, task.transform_spec)
