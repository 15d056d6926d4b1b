"""Точка входа чекера — инициализация и запуск API + триггера задач."""
import asyncio
import sys

import uvicorn
from loguru import logger
from supabase import create_client

from src.api.app import create_app
from src.config import load_settings
from src.log_sink import create_supabase_sink
from src.platforms.link_source import HttpLinkSource
from src.platforms.validator import HttpLinkValidator
from src.tasks.cron import next_fire_time
from src.worker.scheduler import TaskRunner, create_scheduler


async def main() -> None:
    """Инициализация и запуск API + планировщика."""
    settings = load_settings()

    # Логирование
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/checker.log", rotation="100 MB", retention="7 days")

    logger.info("Starting link checker")

    # Supabase
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    # Персистить WARNING+ логи в Supabase
    logger.add(
        create_supabase_sink(db),
        level="WARNING",
        enqueue=True,
        serialize=False,
    )

    # Внешние сервисы: валидатор с длинным таймаутом, пайплайн — с обычным
    validator = HttpLinkValidator(
        settings.validator_url,
        timeout=settings.validator_timeout_seconds,
        token=settings.validator_token.get_secret_value() if settings.validator_token else None,
    )
    source = HttpLinkSource(
        settings.link_source_url,
        timeout=settings.request_timeout_seconds,
        token=settings.link_source_token.get_secret_value() if settings.link_source_token else None,
    )
    runner = TaskRunner(db, source, validator, next_fire_time, batch_limit=settings.trigger_batch_limit)

    # FastAPI
    app = create_app(db, validator, source, runner, settings)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.checker_port, log_level="warning")
    server = uvicorn.Server(config)

    # APScheduler — истечение задач и запуск по cron
    scheduler = create_scheduler(db, settings, runner)
    scheduler.start()
    logger.info(f"Scheduler started (poll={settings.trigger_poll_seconds}s)")

    logger.info(f"API server starting on port {settings.checker_port}")

    try:
        # uvicorn сам обрабатывает SIGTERM/SIGINT и завершает serve()
        await server.serve()
    finally:
        scheduler.shutdown(wait=False)
        await runner.shutdown()
        await validator.aclose()
        await source.aclose()
        logger.info("Link checker stopped gracefully")


if __name__ == "__main__":
    asyncio.run(main())
