"""Разбиение ссылок на «проверить сейчас» и «отложить»."""
from collections.abc import Collection, Sequence
from dataclasses import dataclass

from src.exceptions import ValidationError
from src.platforms.classifier import ALL_PLATFORMS, Platform, classify_link

# Имя из запроса → тег платформы
_PLATFORMS_BY_NAME: dict[str, Platform] = {p: p for p in ALL_PLATFORMS}


@dataclass(frozen=True)
class Partition:
    """Две непересекающиеся части одной отправки."""

    checked_now: list[str]
    deferred: list[str]

    @property
    def full_instant(self) -> bool:
        """Все ссылки уходят на мгновенную проверку."""
        return not self.deferred


def parse_selected_platforms(values: Collection[str] | None) -> list[Platform]:
    """Проверить выбор платформ. Неизвестные имена → ValidationError."""
    if not values:
        return []
    result: list[Platform] = []
    for value in values:
        platform = _PLATFORMS_BY_NAME.get(value.strip().lower())
        if platform is None:
            raise ValidationError(f"Unknown platform: {value!r}")
        if platform not in result:
            result.append(platform)
    return result


def partition_links(
    links: Sequence[str],
    selected_platforms: Collection[Platform] | None = None,
) -> Partition:
    """
    Пустой выбор → все ссылки проверяются сейчас.
    Иначе сейчас проверяются только ссылки выбранных платформ,
    остальные (включая unknown) откладываются до плановой проверки.
    """
    if not selected_platforms:
        return Partition(checked_now=list(links), deferred=[])

    selected = set(selected_platforms)
    checked_now: list[str] = []
    deferred: list[str] = []
    for link in links:
        if classify_link(link) in selected:
            checked_now.append(link)
        else:
            deferred.append(link)
    return Partition(checked_now=checked_now, deferred=deferred)
