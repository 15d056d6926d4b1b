"""HTTP-клиент внешнего валидатора ссылок."""
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from src.exceptions import UnauthenticatedError, UpstreamError
from src.models.submission import LinkFailure
from src.platforms.base import ValidationOutcome
from src.platforms.classifier import Platform

CHECK_PATH = "/api/v1/links/check"


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    *,
    service: str,
    timeout: float,
    token: str | None = None,
) -> Any:
    """
    POST JSON во внешний сервис.
    Креды передаются явно на каждый вызов; 401 → UnauthenticatedError,
    сеть/таймаут/5xx → UpstreamError.
    """
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    try:
        response = await client.post(url, json=payload, headers=headers, timeout=timeout)
    except httpx.TimeoutException as e:
        raise UpstreamError(f"{service} timed out after {timeout:.0f}s") from e
    except httpx.HTTPError as e:
        raise UpstreamError(f"{service} unreachable: {e}") from e

    if response.status_code == 401:
        raise UnauthenticatedError(service)
    if response.status_code >= 400:
        detail = response.text[:200]
        raise UpstreamError(f"{service} HTTP {response.status_code}: {detail}")

    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(f"{service} returned invalid JSON") from e


def parse_outcome(data: Any) -> ValidationOutcome:
    """Ответ валидатора → ValidationOutcome. Кривой формат → UpstreamError."""
    if not isinstance(data, dict):
        raise UpstreamError("validator returned unexpected payload")
    try:
        failures = [LinkFailure.model_validate(f) for f in data.get("failures") or []]
    except PydanticValidationError as e:
        raise UpstreamError(f"validator returned malformed failures: {e.error_count()} errors") from e

    invalid = list(data.get("invalid_links") or [])
    # Ссылки из failures без явного invalid_links тоже невалидны
    for failure in failures:
        if failure.link not in invalid:
            invalid.append(failure.link)

    duration = data.get("total_duration")
    return ValidationOutcome(
        valid_links=list(data.get("valid_links") or []),
        invalid_links=invalid,
        failures=failures,
        total_duration=int(duration) if duration is not None else None,
    )


class HttpLinkValidator:
    """Клиент валидатора: один батч на отправку с увеличенным таймаутом."""

    def __init__(
        self,
        base_url: str,
        timeout: float,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self._client = client or httpx.AsyncClient()

    async def check_links(
        self,
        links: list[str],
        selected_platforms: list[Platform] | None = None,
        token: str | None = None,
    ) -> ValidationOutcome:
        """Отправить батч ссылок. token переопределяет креды по умолчанию."""
        if not links:
            return ValidationOutcome(valid_links=[], invalid_links=[])

        logger.debug(f"[validator] Checking {len(links)} links (platforms={selected_platforms or 'all'})")
        data = await post_json(
            self._client,
            f"{self.base_url}{CHECK_PATH}",
            {"links": links, "selected_platforms": selected_platforms or []},
            service="validator",
            timeout=self.timeout,
            token=token or self.token,
        )
        outcome = parse_outcome(data)

        # Валидатор не должен возвращать чужие ссылки
        sent = set(links)
        outcome.valid_links = [link for link in outcome.valid_links if link in sent]
        outcome.invalid_links = [
            link for link in outcome.invalid_links
            if link in sent and link not in outcome.valid_links
        ]

        if outcome.rate_limited:
            logger.warning(f"[validator] {len(outcome.rate_limited)} links hit platform rate limits")
        logger.info(
            f"[validator] Checked {len(links)} links: valid={len(outcome.valid_links)}, "
            f"invalid={len(outcome.invalid_links)}, duration={outcome.total_duration}ms"
        )
        return outcome

    async def aclose(self) -> None:
        await self._client.aclose()
