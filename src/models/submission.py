"""Pydantic-модели отправки ссылок и результатов проверки."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from src.platforms.classifier import Platform, classify_link

LinkStatus = Literal["valid", "invalid", "pending"]


class LinkFailure(BaseModel):
    """Причина невалидности одной ссылки по данным валидатора."""

    link: str
    platform: Platform = "unknown"
    failure_reason: str = ""
    is_rate_limited: bool = False


class LinkInfo(BaseModel):
    """Ссылка с платформой и статусом в рамках отправки."""

    link: str
    platform: Platform
    status: LinkStatus


class Submission(BaseModel):
    """Запись из таблицы submissions."""

    id: int
    original_links: list[str] = []
    selected_platforms: list[Platform] = []
    valid_links: list[str] = []
    invalid_links: list[str] = []
    pending_links: list[str] = []
    duplicate_count: int = 0
    invalid_format_count: int = 0
    total_links: int = 0
    total_duration: int | None = None  # миллисекунды
    status: Literal["pending", "checked"] = "pending"
    source: Literal["user", "task"] = "user"
    task_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    checked_at: datetime | None = None

    def link_infos(self) -> list[LinkInfo]:
        """Развернуть списки в поссылочный статус (в исходном порядке)."""
        valid = set(self.valid_links)
        invalid = set(self.invalid_links)
        result: list[LinkInfo] = []
        for link in self.original_links:
            if link in valid:
                status: LinkStatus = "valid"
            elif link in invalid:
                status = "invalid"
            else:
                status = "pending"
            result.append(LinkInfo(link=link, platform=classify_link(link), status=status))
        return result
