"""Определение платформы облачного диска по ссылке."""
import re
from typing import Literal, get_args

Platform = Literal[
    "quark",
    "uc",
    "baidu",
    "tianyi",
    "pan123",
    "pan115",
    "aliyun",
    "xunlei",
    "cmcc",
    "unknown",
]

# Все известные платформы (без unknown), в порядке приоритета матчинга
ALL_PLATFORMS: tuple[Platform, ...] = tuple(
    p for p in get_args(Platform) if p != "unknown"
)

_SCHEME = r"(?:https?://)?"

# Порядок важен: первое совпадение выигрывает, unknown — fallback
_PLATFORM_PATTERNS: tuple[tuple[Platform, re.Pattern[str]], ...] = (
    ("quark", re.compile(
        _SCHEME + r"(?:pan\.quark\.cn|quark\.cn|pan\.qoark\.cn)/s/[a-zA-Z0-9]+", re.IGNORECASE,
    )),
    ("uc", re.compile(
        _SCHEME + r"(?:drive\.uc\.cn|yun\.uc\.cn|uc\.cn)/s/[a-zA-Z0-9]+", re.IGNORECASE,
    )),
    ("baidu", re.compile(
        _SCHEME + r"pan\.baidu\.com/s/[a-zA-Z0-9_-]+", re.IGNORECASE,
    )),
    ("tianyi", re.compile(
        _SCHEME + r"(?:cloud\.189\.cn|h5\.cloud\.189\.cn)/"
        r"(?:t/[a-zA-Z0-9]+|web/share\?code=[a-zA-Z0-9]+|share\.html#/t/[a-zA-Z0-9]+)",
        re.IGNORECASE,
    )),
    ("pan123", re.compile(
        _SCHEME + r"(?:123pan\.com|123pan\.cn|123684\.com|123685\.com|123912\.com"
        r"|123592\.com|123865\.com)/s/[a-zA-Z0-9-]+",
        re.IGNORECASE,
    )),
    ("pan115", re.compile(
        _SCHEME + r"(?:115\.com|115cdn\.com|anxia\.com)/s/[a-zA-Z0-9]+", re.IGNORECASE,
    )),
    ("aliyun", re.compile(
        _SCHEME + r"(?:www\.aliyundrive\.com|aliyundrive\.com|www\.alipan\.com)/s/[a-zA-Z0-9]+",
        re.IGNORECASE,
    )),
    ("xunlei", re.compile(
        _SCHEME + r"pan\.xunlei\.com/s/[a-zA-Z0-9_-]+", re.IGNORECASE,
    )),
    ("cmcc", re.compile(
        _SCHEME + r"(?:yun\.139\.com/shareweb/#/w/i/|caiyun\.139\.com/m/i\?)[a-zA-Z0-9]+",
        re.IGNORECASE,
    )),
)


def classify_link(link: str) -> Platform:
    """Вернуть тег платформы для ссылки. Никогда не бросает исключений."""
    if not isinstance(link, str):
        return "unknown"
    candidate = link.strip()
    if not candidate:
        return "unknown"
    for platform, pattern in _PLATFORM_PATTERNS:
        if pattern.search(candidate):
            return platform
    return "unknown"


def is_known_platform(value: str) -> bool:
    """Проверить, что строка — одна из поддерживаемых платформ (не unknown)."""
    return value in ALL_PLATFORMS
