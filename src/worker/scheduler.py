"""Триггер плановых задач на APScheduler."""
import asyncio
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from supabase import Client

from src.config import Settings
from src.database import fetch_due_tasks
from src.models.task import ExecutionTrigger, ScheduledTask
from src.platforms.base import LinkSource, LinkValidator
from src.tasks.cron import NextRunOracle
from src.tasks.service import expire_due_tasks
from src.tasks.state_machine import is_due
from src.worker.handlers import fire_task


class TaskRunner:
    """
    Запускает выполнения задач в фоне.
    Плановый запуск пропускается, пока та же задача ещё выполняется
    в этом процессе; ручной запуск не ограничен.
    """

    def __init__(
        self,
        db: Client,
        source: LinkSource,
        validator: LinkValidator,
        oracle: NextRunOracle,
        batch_limit: int = 50,
    ) -> None:
        self.db = db
        self.source = source
        self.validator = validator
        self.oracle = oracle
        self.batch_limit = batch_limit
        self.active_tasks: set[asyncio.Task[None]] = set()
        # Задачи с незавершённым плановым запуском
        self.in_flight: set[int] = set()

    def start(self, task: ScheduledTask, trigger: ExecutionTrigger) -> asyncio.Task[None]:
        """Запустить выполнение в фоне и вернуть asyncio.Task."""
        if trigger == "scheduled":
            self.in_flight.add(task.id)

        t = asyncio.create_task(self._run(task, trigger))
        self.active_tasks.add(t)
        t.add_done_callback(lambda done_t, tid=task.id: self._on_done(tid, trigger, done_t))
        return t

    async def _run(self, task: ScheduledTask, trigger: ExecutionTrigger) -> None:
        try:
            await fire_task(self.db, task, self.source, self.validator, self.oracle, trigger)
        except Exception as e:
            # Сюда попадают только сбои записи самого выполнения в БД
            logger.exception(f"Task {task.id}: {trigger} run aborted: {e}")

    def _on_done(self, task_id: int, trigger: ExecutionTrigger, t: asyncio.Task[None]) -> None:
        self.active_tasks.discard(t)
        if trigger == "scheduled":
            self.in_flight.discard(task_id)

    async def fire_due_tasks(self) -> int:
        """Запустить все active задачи с наступившим next_run_at."""
        now = datetime.now(UTC)
        tasks = await fetch_due_tasks(self.db, now, limit=self.batch_limit)

        started = 0
        for task in tasks:
            if task.id in self.in_flight:
                logger.debug(f"Task {task.id} still running, skipping this firing")
                continue
            if not is_due(task, now):
                # Истёкшие задачи переводит expire_due_tasks
                continue
            self.start(task, "scheduled")
            started += 1

        if started:
            logger.info(f"Fired {started} due tasks")
        return started

    async def shutdown(self, timeout: float = 30) -> None:
        """Дождаться активных выполнений, остальные отменить."""
        if not self.active_tasks:
            return
        logger.info(f"Waiting for {len(self.active_tasks)} active executions to finish...")
        done, pending = await asyncio.wait(self.active_tasks, timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} executions that didn't finish in {timeout:.0f}s")
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


async def expire_tasks(db: Client) -> None:
    """Ежеминутный перевод задач с наступившим auto_destroy_at в expired."""
    try:
        await expire_due_tasks(db)
    except Exception as e:
        logger.error(f"[expire_tasks] {e}")


async def fire_tasks(runner: TaskRunner) -> None:
    try:
        await runner.fire_due_tasks()
    except Exception as e:
        logger.error(f"[fire_tasks] {e}")


def create_scheduler(
    db: Client,
    settings: Settings,
    runner: TaskRunner,
) -> AsyncIOScheduler:
    """Создать и настроить APScheduler."""
    scheduler = AsyncIOScheduler(
        job_defaults={
            # misfire_grace_time=1с по умолчанию тихо пропускает async job'ы
            # при задержке event loop; None — выполнить при любом опоздании.
            "misfire_grace_time": None,
            "coalesce": True,
        }
    )

    # Каждую минуту — истечение auto_destroy_at
    scheduler.add_job(
        expire_tasks,
        "interval",
        minutes=1,
        kwargs={"db": db},
        id="expire_tasks",
    )

    # Каждые trigger_poll_seconds — запуск задач с наступившим next_run_at
    scheduler.add_job(
        fire_tasks,
        "interval",
        seconds=settings.trigger_poll_seconds,
        kwargs={"runner": runner},
        id="fire_tasks",
    )

    return scheduler
