"""Тесты Pydantic-схем API."""
from datetime import UTC, datetime, timedelta, timezone

import pytest


class TestLinkCheckRequest:
    """Валидация запроса на проверку ссылок."""

    def test_valid_request(self) -> None:
        from src.api.schemas import LinkCheckRequest

        req = LinkCheckRequest(links=["https://pan.quark.cn/s/abc"])
        assert req.selected_platforms == []

    def test_text_split_into_lines(self) -> None:
        from src.api.schemas import LinkCheckRequest

        req = LinkCheckRequest(links="a\nb\r\nc")
        assert req.links == ["a", "b", "c"]

    def test_empty_rejected(self) -> None:
        from pydantic import ValidationError

        from src.api.schemas import LinkCheckRequest

        with pytest.raises(ValidationError):
            LinkCheckRequest(links=[])

    def test_over_limit_rejected(self) -> None:
        from pydantic import ValidationError

        from src.api.schemas import LinkCheckRequest

        with pytest.raises(ValidationError):
            LinkCheckRequest(links=["x"] * 10001)


class TestTaskCreateRequest:
    """Валидация создания задачи."""

    def test_defaults(self) -> None:
        from src.api.schemas import TaskCreateRequest

        req = TaskCreateRequest(name="t", fetch_spec="curl", cron_expression="* * * * *")
        assert req.status == "stopped"
        assert req.tags == []
        assert req.transform_spec is None

    def test_empty_name_rejected(self) -> None:
        from pydantic import ValidationError

        from src.api.schemas import TaskCreateRequest

        with pytest.raises(ValidationError):
            TaskCreateRequest(name="", fetch_spec="curl", cron_expression="* * * * *")

    def test_naive_deadline_is_utc(self) -> None:
        from src.api.schemas import TaskCreateRequest

        req = TaskCreateRequest(
            name="t", fetch_spec="curl", cron_expression="* * * * *",
            auto_destroy_at=datetime(2030, 5, 1, 12, 0),
        )
        assert req.auto_destroy_at == datetime(2030, 5, 1, 12, 0, tzinfo=UTC)

    def test_aware_deadline_kept(self) -> None:
        from src.api.schemas import TaskCreateRequest

        msk = timezone(timedelta(hours=3))
        req = TaskCreateRequest(
            name="t", fetch_spec="curl", cron_expression="* * * * *",
            auto_destroy_at=datetime(2030, 5, 1, 12, 0, tzinfo=msk),
        )
        assert req.auto_destroy_at.utcoffset() == timedelta(hours=3)


class TestTaskUpdateRequest:
    """Частичное обновление."""

    def test_only_set_fields_dumped(self) -> None:
        from src.api.schemas import TaskUpdateRequest

        req = TaskUpdateRequest(name="renamed")
        assert req.model_dump(exclude_unset=True) == {"name": "renamed"}

    def test_status_not_updatable(self) -> None:
        """Статус меняется только через enable/disable."""
        from src.api.schemas import TaskUpdateRequest

        req = TaskUpdateRequest.model_validate({"status": "active"})
        assert req.model_dump(exclude_unset=True) == {}
