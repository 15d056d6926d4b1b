"""Обработчик запуска плановой задачи: пайплайн → проверка → учёт выполнения."""
from datetime import UTC, datetime

from loguru import logger
from supabase import Client

from src.database import finish_execution, insert_execution, sanitize_error, update_task_run
from src.exceptions import CheckerError, StateTransitionError
from src.links.submission import submit_links
from src.models.task import ExecutionTrigger, ScheduledTask, TaskExecution
from src.platforms.base import LinkSource, LinkValidator
from src.tasks.cron import NextRunOracle
from src.tasks.recorder import (
    ExecutionCounts,
    complete_failure,
    complete_success,
    start_execution,
    terminal_patch,
)
from src.tasks.state_machine import record_firing


async def fire_task(
    db: Client,
    task: ScheduledTask,
    source: LinkSource,
    validator: LinkValidator,
    oracle: NextRunOracle,
    trigger: ExecutionTrigger = "scheduled",
) -> TaskExecution:
    """
    Один запуск задачи. Всегда завершает выполнение success или failed.
    Ошибка выполнения не выключает задачу и не пробрасывается наружу.
    """
    fired_at = datetime.now(UTC)
    execution = await insert_execution(db, start_execution(task.id, fired_at, trigger))
    logger.info(f"Task {task.id} ({task.name}): {trigger} run started, execution {execution.id}")

    links: list[str] = []
    try:
        links = await source.fetch_links(task.fetch_spec, task.transform_spec)
        logger.debug(f"Task {task.id}: pipeline returned {len(links)} links")

        if not links:
            finished = complete_success(execution, ExecutionCounts(), datetime.now(UTC))
        else:
            # Плановая проверка не выбирает платформы — проверяется всё
            result = await submit_links(db, validator, links, None, task_id=task.id)
            if result.upstream_error:
                finished = complete_failure(
                    execution,
                    f"Validator failed: {result.upstream_error}",
                    datetime.now(UTC),
                    links_count=len(links),
                )
            else:
                counts = ExecutionCounts(
                    links_count=len(links),
                    checked_count=result.checked_count,
                    valid_count=len(result.valid_links),
                    invalid_count=len(result.invalid_links),
                )
                finished = complete_success(
                    execution, counts, datetime.now(UTC), submission_id=result.submission_id,
                )
    except CheckerError as e:
        finished = complete_failure(execution, str(e), datetime.now(UTC), links_count=len(links))
    except Exception as e:
        logger.exception(f"Unhandled error in task {task.id}: {e}")
        finished = complete_failure(
            execution, f"{type(e).__name__}: {e}", datetime.now(UTC), links_count=len(links),
        )

    if execution.id is not None:
        try:
            finished = await finish_execution(db, execution.id, terminal_patch(finished))
        except StateTransitionError as e:
            # Запись уже терминальная; учёт запуска задачи всё равно пишем ниже
            logger.error(f"Task {task.id}: {e}")

    if finished.status == "failed":
        logger.warning(f"Task {task.id}: execution {finished.id} failed: {sanitize_error(finished.error_message or '')}")
    else:
        logger.info(
            f"Task {task.id}: execution {finished.id} done: links={finished.links_count}, "
            f"checked={finished.checked_count}, valid={finished.valid_count}, "
            f"invalid={finished.invalid_count}, {finished.execution_duration}ms"
        )

    try:
        await update_task_run(db, task, record_firing(task, fired_at, datetime.now(UTC), oracle, trigger))
    except CheckerError as e:
        logger.error(f"Task {task.id}: failed to update run bookkeeping: {e}")

    return finished
