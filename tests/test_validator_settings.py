"""Тесты настроек валидатора: лимиты платформ и кеш."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.config import RateOverride
from src.exceptions import ValidationError


def _settings(overrides: dict | None = None) -> MagicMock:
    settings = MagicMock()
    settings.default_concurrency = 5
    settings.rate_overrides = overrides or {}
    settings.cache_enabled = False
    settings.cache_host = "localhost"
    settings.cache_port = 6379
    settings.cache_invalid_ttl_hours = 168
    return settings


class TestRateConfigs:
    """Тесты лимитов по платформам."""

    def test_defaults_cover_all_platforms(self) -> None:
        from src.platforms.classifier import ALL_PLATFORMS
        from src.validator_settings import default_rate_configs

        configs = default_rate_configs(_settings())

        assert set(configs) == set(ALL_PLATFORMS)
        assert configs["quark"].concurrency == 5
        assert configs["quark"].request_delay_ms == 0

    def test_env_override_applied(self) -> None:
        from src.validator_settings import default_rate_configs

        settings = _settings({"baidu": RateOverride(platform="baidu", concurrency=2, request_delay_ms=300)})
        configs = default_rate_configs(settings)

        assert configs["baidu"].concurrency == 2
        assert configs["baidu"].request_delay_ms == 300
        assert configs["quark"].concurrency == 5

    def test_out_of_range_env_override_ignored(self) -> None:
        """Кривой RATE_* в .env не ломает чтение лимитов."""
        from src.validator_settings import default_rate_configs

        settings = _settings({"baidu": RateOverride(platform="baidu", concurrency=500)})
        configs = default_rate_configs(settings)

        assert configs["baidu"].concurrency == 5
        assert configs["quark"].concurrency == 5

    @pytest.mark.parametrize("stored", [["quark"], "quark", 42])
    async def test_stored_not_object_falls_back(self, stored) -> None:
        from src.validator_settings import get_rate_configs

        with patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=stored):
            configs = await get_rate_configs(MagicMock(), _settings())

        assert configs["quark"].concurrency == 5

    async def test_put_over_corrupt_stored_value(self) -> None:
        from src.validator_settings import put_rate_configs

        with (
            patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=[1, 2]),
            patch("src.validator_settings.put_setting", new_callable=AsyncMock) as mock_put,
        ):
            result = await put_rate_configs(MagicMock(), _settings(), {"quark": {"concurrency": 7}})

        assert result["quark"].concurrency == 7
        mock_put.assert_awaited_once()

    async def test_stored_values_win(self) -> None:
        from src.validator_settings import get_rate_configs

        stored = {"quark": {"concurrency": 20, "request_delay_ms": 100}, "dropbox": {"concurrency": 1}}
        with patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=stored):
            configs = await get_rate_configs(MagicMock(), _settings())

        assert configs["quark"].concurrency == 20
        assert "dropbox" not in configs

    async def test_invalid_stored_falls_back(self) -> None:
        from src.validator_settings import get_rate_configs

        stored = {"quark": {"concurrency": 0}}
        with patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=stored):
            configs = await get_rate_configs(MagicMock(), _settings())

        assert configs["quark"].concurrency == 5

    @pytest.mark.parametrize(
        "data",
        [
            {"concurrency": 0},
            {"concurrency": 101},
            {"request_delay_ms": 10001},
            {"max_requests_per_second": -1},
            {"cache_ttl_hours": 721},
        ],
    )
    async def test_put_out_of_range_never_writes(self, data: dict) -> None:
        from src.validator_settings import put_rate_configs

        with (
            patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=None),
            patch("src.validator_settings.put_setting", new_callable=AsyncMock) as mock_put,
        ):
            with pytest.raises(ValidationError):
                await put_rate_configs(MagicMock(), _settings(), {"quark": data})

        mock_put.assert_not_called()

    async def test_put_unknown_platform(self) -> None:
        from src.validator_settings import put_rate_configs

        with patch("src.validator_settings.put_setting", new_callable=AsyncMock) as mock_put:
            with pytest.raises(ValidationError, match="dropbox"):
                await put_rate_configs(MagicMock(), _settings(), {"dropbox": {"concurrency": 1}})

        mock_put.assert_not_called()

    async def test_put_merges_with_existing(self) -> None:
        from src.validator_settings import RATE_CONFIG_KEY, put_rate_configs

        with (
            patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=None),
            patch("src.validator_settings.put_setting", new_callable=AsyncMock) as mock_put,
        ):
            result = await put_rate_configs(
                MagicMock(), _settings(), {"pan115": {"concurrency": 1, "max_requests_per_second": 2}},
            )

        assert result["pan115"].max_requests_per_second == 2
        _, key, value = mock_put.call_args[0]
        assert key == RATE_CONFIG_KEY
        assert value["pan115"] == {
            "concurrency": 1, "request_delay_ms": 0, "max_requests_per_second": 2, "cache_ttl_hours": 0,
        }
        assert value["quark"]["concurrency"] == 5

    async def test_put_empty_rejected(self) -> None:
        from src.validator_settings import put_rate_configs

        with pytest.raises(ValidationError):
            await put_rate_configs(MagicMock(), _settings(), {})


class TestCacheConfig:
    """Тесты конфига кеша."""

    async def test_default_from_settings(self) -> None:
        from src.validator_settings import get_cache_config

        with patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=None):
            config = await get_cache_config(MagicMock(), _settings())

        assert config.enabled is False
        assert config.port == 6379
        assert config.invalid_ttl == 168

    async def test_stored(self) -> None:
        from src.validator_settings import get_cache_config

        stored = {"enabled": True, "host": "redis", "port": 6380, "invalid_ttl": 24}
        with patch("src.validator_settings.get_setting", new_callable=AsyncMock, return_value=stored):
            config = await get_cache_config(MagicMock(), _settings())

        assert config.host == "redis"
        assert config.invalid_ttl == 24

    @pytest.mark.parametrize("data", [{"port": 0}, {"port": 65536}, {"invalid_ttl": 0}, {"invalid_ttl": 721}])
    async def test_put_out_of_range(self, data: dict) -> None:
        from src.validator_settings import put_cache_config

        with patch("src.validator_settings.put_setting", new_callable=AsyncMock) as mock_put:
            with pytest.raises(ValidationError):
                await put_cache_config(MagicMock(), data)

        mock_put.assert_not_called()

    async def test_put_valid(self) -> None:
        from src.validator_settings import CACHE_CONFIG_KEY, put_cache_config

        with patch("src.validator_settings.put_setting", new_callable=AsyncMock) as mock_put:
            config = await put_cache_config(MagicMock(), {"enabled": True, "host": "redis", "port": 6379})

        assert config.enabled is True
        _, key, value = mock_put.call_args[0]
        assert key == CACHE_CONFIG_KEY
        assert value["host"] == "redis"
        assert value["invalid_ttl"] == 168
