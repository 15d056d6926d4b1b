"""Контракты внешних сервисов: валидатор ссылок и источник ссылок задачи."""
from dataclasses import dataclass, field
from typing import Any, Protocol

from src.models.submission import LinkFailure
from src.platforms.classifier import Platform


@dataclass
class ValidationOutcome:
    """Ответ валидатора на один батч."""

    valid_links: list[str]
    invalid_links: list[str]
    failures: list[LinkFailure] = field(default_factory=list)
    total_duration: int | None = None  # миллисекунды

    @property
    def rate_limited(self) -> list[str]:
        return [f.link for f in self.failures if f.is_rate_limited]


class LinkValidator(Protocol):
    """Внешний валидатор — один синхронный батч на отправку."""

    async def check_links(
        self,
        links: list[str],
        selected_platforms: list[Platform] | None = None,
    ) -> ValidationOutcome:
        """Проверить батч ссылок."""
        ...


class LinkSource(Protocol):
    """Внешний пайплайн fetch + transform плановой задачи."""

    async def fetch_links(self, fetch_spec: Any, transform_spec: Any) -> list[str]:
        """Выполнить пайплайн и вернуть сырые ссылки."""
        ...
