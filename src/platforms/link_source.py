"""HTTP-клиент внешнего пайплайна fetch + transform плановых задач."""
from typing import Any

import httpx
from loguru import logger

from src.exceptions import UpstreamError
from src.platforms.validator import post_json

RUN_PATH = "/api/v1/pipeline/run"


class HttpLinkSource:
    """Передаёт спецификации задачи во внешний пайплайн без интерпретации."""

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

    async def fetch_links(self, fetch_spec: Any, transform_spec: Any) -> list[str]:
        data = await post_json(
            self._client,
            f"{self.base_url}{RUN_PATH}",
            {"fetch_spec": fetch_spec, "transform_spec": transform_spec},
            service="link source",
            timeout=self.timeout,
            token=self.token,
        )
        links = data.get("links") if isinstance(data, dict) else None
        if not isinstance(links, list):
            raise UpstreamError("link source did not return a links array")

        result = [str(link) for link in links if link is not None]
        logger.debug(f"[link_source] Pipeline returned {len(result)} links")
        return result

    async def aclose(self) -> None:
        await self._client.aclose()
