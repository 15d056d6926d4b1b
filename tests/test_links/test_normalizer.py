"""Тесты нормализации и дедупликации ссылок."""
from src.links.normalizer import looks_like_url, normalize_link, normalize_links, normalize_text


class TestNormalizeLink:
    """Тесты normalize_link."""

    def test_adds_https(self) -> None:
        assert normalize_link("pan.baidu.com/s/abc") == "https://pan.baidu.com/s/abc"

    def test_keeps_http(self) -> None:
        assert normalize_link("http://pan.baidu.com/s/abc") == "http://pan.baidu.com/s/abc"

    def test_scheme_check_is_case_insensitive(self) -> None:
        assert normalize_link("HTTPS://pan.baidu.com/s/abc") == "HTTPS://pan.baidu.com/s/abc"

    def test_strips(self) -> None:
        assert normalize_link("  https://a.cn/s/x\t") == "https://a.cn/s/x"

    def test_blank(self) -> None:
        assert normalize_link("   ") == ""


class TestLooksLikeUrl:
    """Тесты базовой проверки формы URL."""

    def test_valid(self) -> None:
        assert looks_like_url("https://example.com/path") is True

    def test_no_dot_in_host(self) -> None:
        assert looks_like_url("https://not-a-link") is False

    def test_whitespace(self) -> None:
        assert looks_like_url("https://exa mple.com") is False

    def test_ftp_scheme(self) -> None:
        assert looks_like_url("ftp://example.com") is False

    def test_dot_at_edges(self) -> None:
        assert looks_like_url("https://.example.com") is False
        assert looks_like_url("https://example.com.") is False


class TestNormalizeLinks:
    """Тесты normalize_links / normalize_text."""

    def test_dedup_and_invalid_format(self) -> None:
        result = normalize_links(["pan.baidu.com/s/abc", "pan.baidu.com/s/abc", "not-a-link"])

        assert result.links == ["https://pan.baidu.com/s/abc", "https://not-a-link"]
        assert result.duplicate_count == 1
        assert result.invalid_format_count == 1

    def test_dedup_after_normalization(self) -> None:
        """С явной схемой и без — одна и та же ссылка."""
        result = normalize_links(["pan.quark.cn/s/x", "https://pan.quark.cn/s/x"])
        assert result.links == ["https://pan.quark.cn/s/x"]
        assert result.duplicate_count == 1

    def test_preserves_first_seen_order(self) -> None:
        result = normalize_links(["c.com/1", "a.com/2", "c.com/1", "b.com/3"])
        assert result.links == ["https://c.com/1", "https://a.com/2", "https://b.com/3"]

    def test_empty_lines_dropped(self) -> None:
        result = normalize_text("\n  \nhttps://a.com/x\n\n")
        assert result.links == ["https://a.com/x"]
        assert result.duplicate_count == 0

    def test_multiline_chunks(self) -> None:
        result = normalize_links(["a.com/1\nb.com/2", "a.com/1"])
        assert result.links == ["https://a.com/1", "https://b.com/2"]
        assert result.duplicate_count == 1

    def test_known_platform_never_invalid_format(self) -> None:
        result = normalize_links(["pan.quark.cn/s/abc"])
        assert result.invalid_format_count == 0

    def test_invalid_format_links_are_kept(self) -> None:
        result = normalize_links(["foo bar"])
        assert result.links == ["https://foo bar"]
        assert result.invalid_format_count == 1

    def test_idempotent(self) -> None:
        """Повторная нормализация не меняет ссылки и не находит дублей."""
        first = normalize_text("pan.baidu.com/s/abc\nhttp://x.cn/y\npan.baidu.com/s/abc\n")
        second = normalize_links(first.links)
        assert second.links == first.links
        assert second.duplicate_count == 0

    def test_empty_input(self) -> None:
        result = normalize_links([])
        assert result.links == []
        assert result.duplicate_count == 0
        assert result.invalid_format_count == 0
