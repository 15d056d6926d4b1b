"""Тесты приёма отправки ссылок."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.exceptions import UnauthenticatedError, UpstreamError, ValidationError
from src.models.submission import LinkFailure, Submission
from src.platforms.base import ValidationOutcome

QUARK = "https://pan.quark.cn/s/xyz"
BAIDU = "https://pan.baidu.com/s/abc"


def _validator(outcome: ValidationOutcome | None = None, error: Exception | None = None) -> AsyncMock:
    validator = AsyncMock()
    if error is not None:
        validator.check_links.side_effect = error
    else:
        validator.check_links.return_value = outcome
    return validator


@pytest.fixture
def store():
    """Замоканные функции БД, которые вызывает submit_links."""
    with (
        patch(
            "src.links.submission.insert_submission",
            new_callable=AsyncMock,
            return_value=Submission(id=77),
        ) as mock_insert,
        patch("src.links.submission.update_submission", new_callable=AsyncMock) as mock_update,
        patch("src.links.submission.upsert_invalid_links", new_callable=AsyncMock) as mock_upsert,
    ):
        yield MagicMock(insert=mock_insert, update=mock_update, upsert=mock_upsert)


class TestSubmitLinks:
    """Тесты submit_links."""

    async def test_empty_submission_rejected(self, store) -> None:
        from src.links.submission import submit_links

        with pytest.raises(ValidationError, match="empty"):
            await submit_links(MagicMock(), _validator(), ["  ", "\n"])
        store.insert.assert_not_called()

    async def test_unknown_platform_rejected_before_write(self, store) -> None:
        from src.links.submission import submit_links

        with pytest.raises(ValidationError):
            await submit_links(MagicMock(), _validator(), [QUARK], ["dropbox"])
        store.insert.assert_not_called()

    async def test_full_instant_check(self, store) -> None:
        """Пустой выбор: дубль отброшен, обе ссылки уходят в валидатор."""
        from src.links.submission import submit_links

        outcome = ValidationOutcome(
            valid_links=["https://pan.baidu.com/s/abc"],
            invalid_links=["https://not-a-link"],
            failures=[LinkFailure(link="https://not-a-link", failure_reason="not found")],
            total_duration=1200,
        )
        validator = _validator(outcome)

        result = await submit_links(
            MagicMock(), validator, ["pan.baidu.com/s/abc", "pan.baidu.com/s/abc", "not-a-link"], [],
        )

        assert result.submission_id == 77
        assert result.duplicate_count == 1
        assert result.partition.checked_now == ["https://pan.baidu.com/s/abc", "https://not-a-link"]
        assert result.partition.deferred == []
        assert result.status == "checked"
        assert result.valid_links == ["https://pan.baidu.com/s/abc"]
        assert result.invalid_links == ["https://not-a-link"]
        assert result.pending_links == []
        assert result.checked_count == 2

        validator.check_links.assert_awaited_once_with(
            ["https://pan.baidu.com/s/abc", "https://not-a-link"], None,
        )
        inserted = store.insert.call_args[0][1]
        assert inserted["status"] == "pending"
        assert inserted["pending_links"] == inserted["original_links"]
        assert inserted["source"] == "user"
        updated = store.update.call_args[0][2]
        assert updated["status"] == "checked"
        assert updated["total_duration"] == 1200
        store.upsert.assert_awaited_once()

    async def test_partial_selection_defers_rest(self, store) -> None:
        from src.links.submission import submit_links

        validator = _validator(ValidationOutcome(valid_links=[QUARK], invalid_links=[]))

        result = await submit_links(MagicMock(), validator, [QUARK, BAIDU], ["quark"])

        validator.check_links.assert_awaited_once_with([QUARK], ["quark"])
        assert result.valid_links == [QUARK]
        assert result.pending_links == [BAIDU]
        assert result.status == "checked"

    async def test_failures_only_for_sent_links(self, store) -> None:
        """Детали неудач по ссылкам, которые не отправлялись, не сохраняются."""
        from src.links.submission import submit_links

        outcome = ValidationOutcome(
            valid_links=[],
            invalid_links=[QUARK],
            failures=[
                LinkFailure(link=QUARK, platform="quark", failure_reason="share cancelled"),
                LinkFailure(link=BAIDU, platform="baidu", failure_reason="not found"),
            ],
        )

        await submit_links(MagicMock(), _validator(outcome), [QUARK, BAIDU], ["quark"])

        saved = store.upsert.call_args[0][1]
        assert [f.link for f in saved] == [QUARK]

    async def test_everything_deferred_skips_validator(self, store) -> None:
        from src.links.submission import submit_links

        validator = _validator()

        result = await submit_links(MagicMock(), validator, [BAIDU], ["quark"])

        validator.check_links.assert_not_called()
        store.update.assert_not_called()
        assert result.status == "pending"
        assert result.pending_links == [BAIDU]
        assert result.checked_count == 0

    async def test_upstream_error_keeps_links_pending(self, store) -> None:
        from src.links.submission import submit_links

        validator = _validator(error=UpstreamError("validator timed out after 300s"))

        result = await submit_links(MagicMock(), validator, [QUARK, BAIDU])

        assert result.status == "pending"
        assert result.upstream_error == "validator timed out after 300s"
        assert result.unauthenticated is False
        assert result.pending_links == [QUARK, BAIDU]
        assert result.checked_count == 0
        store.insert.assert_awaited_once()
        store.update.assert_not_called()

    async def test_unauthenticated_flag(self, store) -> None:
        from src.links.submission import submit_links

        validator = _validator(error=UnauthenticatedError("validator"))

        result = await submit_links(MagicMock(), validator, [QUARK])

        assert result.unauthenticated is True
        assert "HTTP 401" in result.upstream_error

    async def test_unresolved_links_stay_pending(self, store) -> None:
        """Ссылка, про которую валидатор промолчал, остаётся pending."""
        from src.links.submission import submit_links

        validator = _validator(ValidationOutcome(valid_links=[QUARK], invalid_links=[]))

        result = await submit_links(MagicMock(), validator, [QUARK, BAIDU])

        assert result.pending_links == [BAIDU]
        assert result.valid_links == [QUARK]

    async def test_failure_details_error_is_ignored(self, store) -> None:
        from src.links.submission import submit_links

        store.upsert.side_effect = Exception("db down")
        validator = _validator(ValidationOutcome(valid_links=[], invalid_links=[QUARK]))

        result = await submit_links(MagicMock(), validator, [QUARK])

        assert result.invalid_links == [QUARK]
        assert result.status == "checked"

    async def test_task_submission_source(self, store) -> None:
        from src.links.submission import submit_links

        validator = _validator(ValidationOutcome(valid_links=[QUARK], invalid_links=[]))

        await submit_links(MagicMock(), validator, [QUARK], task_id=5)

        inserted = store.insert.call_args[0][1]
        assert inserted["source"] == "task"
        assert inserted["task_id"] == 5
