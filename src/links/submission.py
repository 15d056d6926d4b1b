"""Приём отправки: нормализация → разбиение → мгновенная проверка → запись."""
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from loguru import logger
from supabase import Client

from src.database import (
    insert_submission,
    sanitize_error,
    update_submission,
    upsert_invalid_links,
)
from src.exceptions import UnauthenticatedError, UpstreamError, ValidationError
from src.links.normalizer import normalize_links
from src.links.partitioner import Partition, parse_selected_platforms, partition_links
from src.platforms.base import LinkValidator
from src.platforms.classifier import Platform


@dataclass
class SubmissionResult:
    """Итог отправки для ответа API и учёта выполнения задачи."""

    submission_id: int
    partition: Partition
    valid_links: list[str] = field(default_factory=list)
    invalid_links: list[str] = field(default_factory=list)
    pending_links: list[str] = field(default_factory=list)
    duplicate_count: int = 0
    invalid_format_count: int = 0
    total_duration: int | None = None
    status: Literal["pending", "checked"] = "pending"
    upstream_error: str | None = None
    unauthenticated: bool = False  # Валидатор отверг креды (HTTP 401)

    @property
    def checked_count(self) -> int:
        """Сколько ссылок реально ушло в валидатор и вернулось."""
        return 0 if self.upstream_error else len(self.partition.checked_now)


async def submit_links(
    db: Client,
    validator: LinkValidator,
    raw_links: Iterable[str],
    selected_platforms: Collection[str] | None = None,
    *,
    task_id: int | None = None,
) -> SubmissionResult:
    """
    Принять отправку.
    ValidationError — до записи в БД. UpstreamError валидатора не теряет
    отправку: ссылки остаются pending, дедуп и классификация сохраняются.
    """
    selection: list[Platform] = parse_selected_platforms(selected_platforms)
    normalized = normalize_links(raw_links)
    if not normalized.links:
        raise ValidationError("Submission is empty: no links after normalization")

    partition = partition_links(normalized.links, selection)
    now = datetime.now(UTC)

    submission = await insert_submission(db, {
        "original_links": normalized.links,
        "selected_platforms": selection,
        "valid_links": [],
        "invalid_links": [],
        "pending_links": normalized.links,
        "duplicate_count": normalized.duplicate_count,
        "invalid_format_count": normalized.invalid_format_count,
        "total_links": len(normalized.links),
        "status": "pending",
        "source": "task" if task_id is not None else "user",
        "task_id": task_id,
        "created_at": now,
        "updated_at": now,
    })
    logger.info(
        f"Submission {submission.id}: {len(normalized.links)} links "
        f"(dup={normalized.duplicate_count}, bad_format={normalized.invalid_format_count}), "
        f"now={len(partition.checked_now)}, deferred={len(partition.deferred)}"
    )

    result = SubmissionResult(
        submission_id=submission.id,
        partition=partition,
        pending_links=list(normalized.links),
        duplicate_count=normalized.duplicate_count,
        invalid_format_count=normalized.invalid_format_count,
    )

    if not partition.checked_now:
        # Всё отложено — ждём плановую проверку
        return result

    try:
        outcome = await validator.check_links(partition.checked_now, selection or None)
    except UpstreamError as e:
        result.upstream_error = sanitize_error(str(e))
        result.unauthenticated = isinstance(e, UnauthenticatedError)
        logger.warning(
            f"Submission {submission.id}: validator failed, "
            f"{len(partition.checked_now)} links stay pending: {result.upstream_error}"
        )
        return result

    checked_at = datetime.now(UTC)
    sent = set(partition.checked_now)
    valid = set(outcome.valid_links)
    invalid = set(outcome.invalid_links)
    # Ссылки, по которым валидатор ничего не сказал, остаются pending
    unresolved = [link for link in partition.checked_now if link not in valid and link not in invalid]

    result.valid_links = [link for link in partition.checked_now if link in valid]
    result.invalid_links = [link for link in partition.checked_now if link in invalid]
    result.pending_links = unresolved + partition.deferred
    result.total_duration = outcome.total_duration
    result.status = "checked"

    await update_submission(db, submission.id, {
        "valid_links": result.valid_links,
        "invalid_links": result.invalid_links,
        "pending_links": result.pending_links,
        "total_duration": outcome.total_duration,
        "status": "checked",
        "checked_at": checked_at,
        "updated_at": checked_at,
    })

    try:
        await upsert_invalid_links(db, [f for f in outcome.failures if f.link in sent], submission.id)
    except Exception as e:
        # Детали невалидных ссылок вторичны — основная запись уже сохранена
        logger.error(f"Submission {submission.id}: failed to save invalid link details: {e}")

    return result
