"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import AsyncMock, MagicMock


def make_settings(rate_limit: int = 1000):
    """Создать мок Settings с API-ключом."""
    settings = MagicMock()
    settings.checker_api_key.get_secret_value.return_value = "sk-test-key"
    settings.cors_origins_list = []
    settings.rate_limit_per_minute = rate_limit
    return settings


def make_app(settings=None, validator=None, runner=None, db=None, source=None):
    """Создать FastAPI app с моками."""
    from src.api.app import create_app

    return create_app(
        db=db or MagicMock(),
        validator=validator or AsyncMock(),
        source=source or AsyncMock(),
        runner=runner or MagicMock(),
        settings=settings or make_settings(),
    )


TASK_ROW = {
    "id": 1,
    "name": "nightly",
    "tags": ["news"],
    "fetch_spec": {"curl": "curl https://example.com/feed"},
    "transform_spec": "jq .links",
    "cron_expression": "*/5 * * * *",
    "status": "stopped",
}

# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}
