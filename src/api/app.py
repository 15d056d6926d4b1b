"""FastAPI-приложение чекера."""
import hmac
import time
from collections import defaultdict
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from postgrest.types import CountMethod
from supabase import Client

from src.api.schemas import (
    ClearResponse,
    ExecutionListResponse,
    HealthResponse,
    LinkCheckRequest,
    LinkCheckResponse,
    RateLimitedListResponse,
    RunResponse,
    SubmissionDetail,
    SubmissionListResponse,
    TagsResponse,
    TaskConfigTestRequest,
    TaskConfigTestResponse,
    TaskCreateRequest,
    TaskListResponse,
    TaskUpdateRequest,
)
from src.config import Settings
from src.database import (
    SCHEDULED_TASKS,
    TASK_EXECUTIONS,
    clear_rate_limited_links,
    get_submission,
    get_task,
    list_all_tags,
    list_executions,
    list_rate_limited_links,
    list_submissions,
    list_tasks,
    run_in_thread,
)
from src.exceptions import (
    NotFoundError,
    StateTransitionError,
    UnauthenticatedError,
    UpstreamError,
    ValidationError,
)
from src.links.submission import submit_links
from src.models.task import ScheduledTask, TaskStatus
from src.platforms.base import LinkSource, LinkValidator
from src.platforms.classifier import Platform, classify_link
from src.tasks.cron import NextRunOracle, next_fire_time
from src.tasks.service import (
    ConfigPreview,
    create_task,
    delete_task,
    disable_task,
    enable_task,
    get_runnable_task,
    preview_task,
    preview_task_config,
    update_task,
)
from src.validator_settings import (
    CacheConfig,
    PlatformRateConfig,
    get_cache_config,
    get_rate_configs,
    put_cache_config,
    put_rate_configs,
)
from src.worker.scheduler import TaskRunner

security = HTTPBearer(auto_error=False)

RATE_LIMIT_WINDOW_SECONDS = 60


def _split_tags(values: list[str] | None) -> list[str]:
    """?tags=a&tags=b и ?tags=a,b → ['a', 'b']."""
    result: list[str] = []
    for value in values or []:
        for tag in value.split(","):
            tag = tag.strip()
            if tag and tag not in result:
                result.append(tag)
    return result


def _preview_response(preview: ConfigPreview) -> TaskConfigTestResponse:
    links = [{"link": link, "platform": classify_link(link)} for link in preview.normalized.links]
    platforms: dict[str, int] = defaultdict(int)
    for item in links:
        platforms[item["platform"]] += 1
    return TaskConfigTestResponse(
        links=links,
        count=len(links),
        raw_count=preview.raw_count,
        duplicate_count=preview.normalized.duplicate_count,
        invalid_format_count=preview.normalized.invalid_format_count,
        platforms=dict(platforms),
    )


def _register_error_handlers(app: FastAPI) -> None:
    """Доменные исключения → HTTP-коды."""

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StateTransitionError)
    async def on_state_error(request: Request, exc: StateTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def on_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(UnauthenticatedError)
    async def on_unauthenticated(request: Request, exc: UnauthenticatedError) -> JSONResponse:
        logger.warning(f"[api] {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc), "unauthenticated": True})

    @app.exception_handler(UpstreamError)
    async def on_upstream(request: Request, exc: UpstreamError) -> JSONResponse:
        logger.error(f"[api] Upstream failure on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app(
    db: Client,
    validator: LinkValidator,
    source: LinkSource,
    runner: TaskRunner,
    settings: Settings,
    oracle: NextRunOracle = next_fire_time,
) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="Link Checker API", version="0.1.0")

    # Сохраняем зависимости в app.state
    app.state.db = db
    app.state.validator = validator
    app.state.source = source
    app.state.runner = runner
    app.state.settings = settings

    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _register_error_handlers(app)

    # Rate limiting: sliding window per IP, своё хранилище на приложение
    rate_limit_store: dict[str, list[float]] = defaultdict(list)

    async def check_rate_limit(request: Request) -> None:
        """Простой in-memory rate limiter: sliding window per IP."""
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - RATE_LIMIT_WINDOW_SECONDS

        recent = [t for t in rate_limit_store[client_ip] if t > window_start]
        if len(recent) >= settings.rate_limit_per_minute:
            rate_limit_store[client_ip] = recent
            raise HTTPException(status_code=429, detail="Rate limit exceeded")
        recent.append(now)
        rate_limit_store[client_ip] = recent

        # Чистим стухшие IP, когда хранилище разрослось
        if len(rate_limit_store) > 100:
            for ip in [ip for ip, ts in rate_limit_store.items() if not ts or ts[-1] <= window_start]:
                del rate_limit_store[ip]

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа."""
        expected = settings.checker_api_key.get_secret_value()
        if credentials is None or not hmac.compare_digest(
            credentials.credentials, expected
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    protected = [Depends(check_rate_limit), Depends(verify_api_key)]

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck — без авторизации."""
        try:
            active = await run_in_thread(
                db.table(SCHEDULED_TASKS)
                .select("id", count=CountMethod.exact)
                .eq("status", "active")
                .execute
            )
            running = await run_in_thread(
                db.table(TASK_EXECUTIONS)
                .select("id", count=CountMethod.exact)
                .eq("status", "running")
                .execute
            )
            tasks_active = active.count or 0
            executions_running = running.count or 0
        except Exception as e:
            logger.warning(f"[health] Database check failed: {e}")
            response.status_code = 503
            return HealthResponse(status="degraded", tasks_active=-1, executions_running=-1)

        return HealthResponse(
            status="ok", tasks_active=tasks_active, executions_running=executions_running,
        )

    # --- Ссылки ---------------------------------------------------------------

    @app.post(
        "/api/links/check", response_model=LinkCheckResponse,
        dependencies=[Depends(check_rate_limit)],
    )
    async def check_links(body: LinkCheckRequest) -> LinkCheckResponse:
        """Проверить ссылки. Публичный: без API-ключа, но с rate limit."""
        result = await submit_links(db, validator, body.links, body.selected_platforms)
        return LinkCheckResponse(
            submission_id=result.submission_id,
            status=result.status,
            valid_links=result.valid_links,
            invalid_links=result.invalid_links,
            pending_links=result.pending_links,
            checked_now=result.partition.checked_now,
            deferred=result.partition.deferred,
            duplicate_count=result.duplicate_count,
            invalid_format_count=result.invalid_format_count,
            total_duration=result.total_duration,
            upstream_error=result.upstream_error,
            unauthenticated=result.unauthenticated,
        )

    @app.get("/api/submissions", response_model=SubmissionListResponse, dependencies=protected)
    async def get_submissions(
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
    ) -> SubmissionListResponse:
        items, total = await list_submissions(db, page, page_size)
        return SubmissionListResponse(items=items, total=total, page=page, page_size=page_size)

    @app.get("/api/submissions/{submission_id}", response_model=SubmissionDetail, dependencies=protected)
    async def get_submission_detail(submission_id: int = Path(ge=1)) -> SubmissionDetail:
        """Отправка с поссылочными статусами."""
        submission = await get_submission(db, submission_id)
        return SubmissionDetail(**submission.model_dump(), links=submission.link_infos())

    @app.get("/api/links/rate-limited", response_model=RateLimitedListResponse, dependencies=protected)
    async def get_rate_limited(
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
        platform: Platform | None = None,
    ) -> dict[str, Any]:
        items, total = await list_rate_limited_links(db, page, page_size, platform)
        return {"items": items, "total": total, "page": page, "page_size": page_size}

    @app.delete("/api/links/rate-limited", response_model=ClearResponse, dependencies=protected)
    async def clear_rate_limited() -> ClearResponse:
        return ClearResponse(deleted=await clear_rate_limited_links(db))

    # --- Плановые задачи --------------------------------------------------------

    @app.get("/api/scheduled-tasks", response_model=TaskListResponse, dependencies=protected)
    async def get_scheduled_tasks(
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
        tags: list[str] | None = Query(default=None),
        status: TaskStatus | None = None,
    ) -> TaskListResponse:
        """Список задач: tags — любой из (OR), status — точное совпадение."""
        items, total = await list_tasks(db, page, page_size, _split_tags(tags), status)
        return TaskListResponse(items=items, total=total, page=page, page_size=page_size)

    @app.post(
        "/api/scheduled-tasks", status_code=201,
        response_model=ScheduledTask, dependencies=protected,
    )
    async def create_scheduled_task(body: TaskCreateRequest) -> ScheduledTask:
        return await create_task(db, body.model_dump(), oracle)

    @app.post(
        "/api/scheduled-tasks/test",
        response_model=TaskConfigTestResponse, dependencies=protected,
    )
    async def dry_run_task_config(body: TaskConfigTestRequest) -> TaskConfigTestResponse:
        """Пробный прогон fetch + transform. Ничего не сохраняет и не проверяет."""
        preview = await preview_task_config(source, body.fetch_spec, body.transform_spec)
        return _preview_response(preview)

    @app.post(
        "/api/scheduled-tasks/{task_id}/test",
        response_model=TaskConfigTestResponse, dependencies=protected,
    )
    async def dry_run_saved_task(task_id: int = Path(ge=1)) -> TaskConfigTestResponse:
        preview = await preview_task(db, source, task_id)
        return _preview_response(preview)

    @app.get("/api/scheduled-tasks/tags", response_model=TagsResponse, dependencies=protected)
    async def get_task_tags() -> TagsResponse:
        return TagsResponse(tags=await list_all_tags(db))

    @app.get("/api/scheduled-tasks/{task_id}", response_model=ScheduledTask, dependencies=protected)
    async def get_scheduled_task(task_id: int = Path(ge=1)) -> ScheduledTask:
        return await get_task(db, task_id)

    @app.put("/api/scheduled-tasks/{task_id}", response_model=ScheduledTask, dependencies=protected)
    async def update_scheduled_task(
        body: TaskUpdateRequest, task_id: int = Path(ge=1),
    ) -> ScheduledTask:
        """Частичное обновление: меняются только переданные поля."""
        changes = body.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("Nothing to update")
        return await update_task(db, task_id, changes, oracle)

    @app.delete("/api/scheduled-tasks/{task_id}", status_code=204, dependencies=protected)
    async def delete_scheduled_task(
        task_id: int = Path(ge=1),
        purge_executions: bool = False,
    ) -> Response:
        await delete_task(db, task_id, purge_executions=purge_executions)
        return Response(status_code=204)

    @app.post("/api/scheduled-tasks/{task_id}/enable", response_model=ScheduledTask, dependencies=protected)
    async def enable_scheduled_task(task_id: int = Path(ge=1)) -> ScheduledTask:
        return await enable_task(db, task_id, oracle)

    @app.post("/api/scheduled-tasks/{task_id}/disable", response_model=ScheduledTask, dependencies=protected)
    async def disable_scheduled_task(task_id: int = Path(ge=1)) -> ScheduledTask:
        return await disable_task(db, task_id)

    @app.post(
        "/api/scheduled-tasks/{task_id}/run", status_code=202,
        response_model=RunResponse, dependencies=protected,
    )
    async def run_scheduled_task(task_id: int = Path(ge=1)) -> RunResponse:
        """Ручной запуск в фоне. Статус и расписание задачи не меняются."""
        task = await get_runnable_task(db, task_id)
        runner.start(task, "manual")
        logger.info(f"Task {task_id}: manual run requested")
        return RunResponse(task_id=task_id, status="started")

    @app.get(
        "/api/scheduled-tasks/{task_id}/executions",
        response_model=ExecutionListResponse, dependencies=protected,
    )
    async def get_task_executions(
        task_id: int = Path(ge=1),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
    ) -> ExecutionListResponse:
        await get_task(db, task_id)  # 404 для несуществующей задачи
        items, total = await list_executions(db, task_id, page, page_size)
        return ExecutionListResponse(items=items, total=total, page=page, page_size=page_size)

    # --- Настройки валидатора -----------------------------------------------------

    @app.get(
        "/api/settings/rate-limits",
        response_model=dict[str, PlatformRateConfig], dependencies=protected,
    )
    async def get_rate_limits() -> dict[str, PlatformRateConfig]:
        return await get_rate_configs(db, settings)

    @app.put(
        "/api/settings/rate-limits",
        response_model=dict[str, PlatformRateConfig], dependencies=protected,
    )
    async def put_rate_limits(
        body: dict[str, dict[str, Any]] = Body(...),
    ) -> dict[str, PlatformRateConfig]:
        return await put_rate_configs(db, settings, body)

    @app.get("/api/settings/cache", response_model=CacheConfig, dependencies=protected)
    async def get_cache() -> CacheConfig:
        return await get_cache_config(db, settings)

    @app.put("/api/settings/cache", response_model=CacheConfig, dependencies=protected)
    async def put_cache(body: dict[str, Any] = Body(...)) -> CacheConfig:
        return await put_cache_config(db, body)

    return app
