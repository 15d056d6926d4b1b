"""Конфигурация чекера из переменных окружения."""
from collections.abc import Mapping
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger
from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.platforms.classifier import ALL_PLATFORMS


def _split_comma(value: str) -> list[str]:
    """Парсит строку 'a,b,c' → ['a', 'b', 'c']."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class RateOverride:
    """Переопределение лимитов одной платформы из .env (None — не задано)."""

    platform: str
    concurrency: int | None = None
    request_delay_ms: int | None = None
    max_requests_per_second: int | None = None
    cache_ttl_hours: int | None = None


def _int_or_none(env: Mapping[str, str | None], key: str) -> int | None:
    """Целое из .env; пустое или кривое значение пропускается с предупреждением."""
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(f"[config] Ignoring {key}={raw!r}: not an integer")
        return None


def _parse_rate_overrides(env_file: str = ".env") -> dict[str, RateOverride]:
    """Парсит RATE_<PLATFORM>_CONCURRENCY/DELAY_MS/RPS/CACHE_TTL_HOURS из .env.

    Pydantic Settings игнорирует динамические переменные (extra='ignore'),
    поэтому читаем .env напрямую через dotenv_values.
    """
    path = Path(env_file)
    if not path.exists():
        return {}

    env = dotenv_values(path)
    result: dict[str, RateOverride] = {}
    for platform in ALL_PLATFORMS:
        upper = platform.upper()
        override = RateOverride(
            platform=platform,
            concurrency=_int_or_none(env, f"RATE_{upper}_CONCURRENCY"),
            request_delay_ms=_int_or_none(env, f"RATE_{upper}_DELAY_MS"),
            max_requests_per_second=_int_or_none(env, f"RATE_{upper}_RPS"),
            cache_ttl_hours=_int_or_none(env, f"RATE_{upper}_CACHE_TTL_HOURS"),
        )
        if any(v is not None for v in (
            override.concurrency, override.request_delay_ms,
            override.max_requests_per_second, override.cache_ttl_hours,
        )):
            result[platform] = override

    return result


class Settings(BaseSettings):
    """Настройки сервиса — парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: str
    supabase_service_key: SecretStr

    # Внешний валидатор ссылок
    validator_url: str = "http://localhost:8080"
    validator_token: SecretStr | None = None
    validator_timeout_seconds: float = 300.0  # Батч проверяется минутами

    # Пайплайн fetch + transform плановых задач
    link_source_url: str = "http://localhost:8090"
    link_source_token: SecretStr | None = None
    request_timeout_seconds: float = 30.0

    # Дефолты лимитов валидатора
    default_concurrency: int = 5
    cache_enabled: bool = False
    cache_host: str = "localhost"
    cache_port: int = 6379
    cache_invalid_ttl_hours: int = 168  # 7 дней

    # Триггер плановых задач
    trigger_poll_seconds: int = 30
    trigger_batch_limit: int = 50
    log_level: str = "INFO"

    # API
    checker_api_key: SecretStr
    checker_port: int = Field(
        default=8001,
        validation_alias=AliasChoices("CHECKER_PORT", "PORT"),
    )
    cors_origins: str = ""  # Через запятую, пусто — CORS выключен
    rate_limit_per_minute: int = 60

    @cached_property
    def cors_origins_list(self) -> list[str]:
        """Парсит CORS_ORIGINS='a,b' → ['a', 'b']."""
        return _split_comma(self.cors_origins)

    @cached_property
    def rate_overrides(self) -> dict[str, RateOverride]:
        """Переопределения лимитов по платформам из .env файла."""
        return _parse_rate_overrides()


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция: pyright не знает, что pydantic-settings
    заполняет обязательные поля из окружения.
    """
    return Settings.model_validate({})
