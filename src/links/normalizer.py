"""Очистка и дедупликация ссылок из свободного текста."""
import re
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

from src.platforms.classifier import classify_link

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s")


@dataclass(frozen=True)
class NormalizedLinks:
    """Результат нормализации: уникальные ссылки + счётчики."""

    links: list[str]
    duplicate_count: int
    invalid_format_count: int


def normalize_link(link: str) -> str:
    """Обрезать пробелы и добавить https:// если схемы нет."""
    trimmed = link.strip()
    if not trimmed:
        return trimmed
    if not _SCHEME_RE.match(trimmed):
        return "https://" + trimmed
    return trimmed


def looks_like_url(link: str) -> bool:
    """Базовая проверка формы URL: http(s), хост с точкой, без пробелов."""
    if _WHITESPACE_RE.search(link):
        return False
    try:
        parts = urlsplit(link)
    except ValueError:
        return False
    if parts.scheme.lower() not in ("http", "https"):
        return False
    host = parts.hostname or ""
    return "." in host and not host.startswith(".") and not host.endswith(".")


def normalize_links(lines: Iterable[str]) -> NormalizedLinks:
    """
    Нормализовать последовательность строк.
    Каждая строка может содержать несколько ссылок через перевод строки.
    Порядок первого появления сохраняется.
    """
    seen: set[str] = set()
    unique: list[str] = []
    duplicates = 0

    for chunk in lines:
        for raw in chunk.splitlines():
            link = normalize_link(raw)
            if not link:
                continue
            if link in seen:
                duplicates += 1
                continue
            seen.add(link)
            unique.append(link)

    # Невалидные по форме не удаляются — только считаются
    invalid_format = sum(
        1 for link in unique
        if classify_link(link) == "unknown" and not looks_like_url(link)
    )

    return NormalizedLinks(
        links=unique,
        duplicate_count=duplicates,
        invalid_format_count=invalid_format,
    )


def normalize_text(text: str) -> NormalizedLinks:
    """Нормализовать многострочный текст из формы."""
    return normalize_links([text])
