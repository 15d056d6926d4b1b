"""Настройки валидатора: лимиты по платформам и кеш результатов.

Хранятся в таблице settings как JSON и отдаются валидатору как есть.
Диапазоны проверяются до записи: кривой ввод не трогает БД.
"""
from collections.abc import Mapping
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from supabase import Client

from src.config import Settings
from src.database import get_setting, put_setting
from src.exceptions import ValidationError
from src.platforms.classifier import ALL_PLATFORMS, is_known_platform

RATE_CONFIG_KEY = "platform_rate_config"
CACHE_CONFIG_KEY = "cache_config"


class PlatformRateConfig(BaseModel):
    """Лимиты запросов валидатора к одной платформе."""

    concurrency: int = Field(default=5, ge=1, le=100)
    request_delay_ms: int = Field(default=0, ge=0, le=10000)
    max_requests_per_second: int = Field(default=0, ge=0, le=100)  # 0 — без ограничения
    cache_ttl_hours: int = Field(default=0, ge=0, le=720)  # 0 — дефолт валидатора


class CacheConfig(BaseModel):
    """Кеш результатов проверки на стороне валидатора."""

    enabled: bool = False
    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    username: str = ""
    password: str = ""
    invalid_ttl: int = Field(default=168, ge=1, le=720)  # Часы


def _first_error(e: PydanticValidationError) -> str:
    err = e.errors()[0]
    field = ".".join(str(p) for p in err["loc"]) or "value"
    return f"{field}: {err['msg']}"


def _validate_rate(platform: str, data: Any) -> PlatformRateConfig:
    if not isinstance(data, Mapping):
        raise ValidationError(f"Rate config for '{platform}' must be an object")
    try:
        return PlatformRateConfig.model_validate(dict(data))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid rate config for '{platform}': {_first_error(e)}") from e


def default_rate_configs(settings: Settings) -> dict[str, PlatformRateConfig]:
    """Дефолты: общий concurrency + RATE_<PLATFORM>_* из .env."""
    result: dict[str, PlatformRateConfig] = {}
    for platform in ALL_PLATFORMS:
        values: dict[str, int] = {"concurrency": settings.default_concurrency}
        override = settings.rate_overrides.get(platform)
        if override is not None:
            for name in ("concurrency", "request_delay_ms", "max_requests_per_second", "cache_ttl_hours"):
                value = getattr(override, name)
                if value is not None:
                    values[name] = value
        try:
            result[platform] = _validate_rate(platform, values)
        except ValidationError as e:
            logger.warning(f"[settings] Ignoring .env rate override: {e}")
            result[platform] = PlatformRateConfig()
    return result


async def get_rate_configs(db: Client, settings: Settings) -> dict[str, PlatformRateConfig]:
    """Сохранённые лимиты поверх дефолтов, по всем платформам."""
    result = default_rate_configs(settings)
    stored = await get_setting(db, RATE_CONFIG_KEY) or {}
    if not isinstance(stored, Mapping):
        logger.warning(f"[settings] Stored rate config is not an object, using defaults: {type(stored).__name__}")
        return result
    for platform, data in stored.items():
        if not is_known_platform(platform):
            logger.warning(f"[settings] Ignoring stored rate config for unknown platform '{platform}'")
            continue
        try:
            result[platform] = _validate_rate(platform, data)
        except ValidationError as e:
            logger.warning(f"[settings] Stored rate config is invalid, using default: {e}")
    return result


async def put_rate_configs(
    db: Client,
    settings: Settings,
    changes: Mapping[str, Any],
) -> dict[str, PlatformRateConfig]:
    """Обновить лимиты части платформ. Всё валидируется до записи."""
    if not changes:
        raise ValidationError("Rate config update is empty")

    validated: dict[str, PlatformRateConfig] = {}
    for platform, data in changes.items():
        if not is_known_platform(platform):
            raise ValidationError(f"Unknown platform '{platform}'")
        validated[platform] = _validate_rate(platform, data)

    merged = await get_rate_configs(db, settings)
    merged.update(validated)
    await put_setting(db, RATE_CONFIG_KEY, {p: c.model_dump() for p, c in merged.items()})
    logger.info(f"[settings] Rate config updated for {sorted(validated)}")
    return merged


def default_cache_config(settings: Settings) -> CacheConfig:
    return CacheConfig(
        enabled=settings.cache_enabled,
        host=settings.cache_host,
        port=settings.cache_port,
        invalid_ttl=settings.cache_invalid_ttl_hours,
    )


async def get_cache_config(db: Client, settings: Settings) -> CacheConfig:
    stored = await get_setting(db, CACHE_CONFIG_KEY)
    if not stored:
        return default_cache_config(settings)
    try:
        return CacheConfig.model_validate(stored)
    except PydanticValidationError as e:
        logger.warning(f"[settings] Stored cache config is invalid, using default: {_first_error(e)}")
        return default_cache_config(settings)


async def put_cache_config(db: Client, data: Mapping[str, Any]) -> CacheConfig:
    """Заменить конфиг кеша целиком."""
    try:
        config = CacheConfig.model_validate(dict(data))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid cache config: {_first_error(e)}") from e

    await put_setting(db, CACHE_CONFIG_KEY, config.model_dump())
    logger.info(f"[settings] Cache config updated (enabled={config.enabled}, {config.host}:{config.port})")
    return config
