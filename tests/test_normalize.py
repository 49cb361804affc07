from datetime import UTC, datetime, timedelta, timezone

from labwatch.normalize import (
    get_hostname,
    latest,
    merge_aliases,
    normalize_name,
    normalize_url,
    parse_date,
    parse_datetime,
)


def test_normalize_url_strips_tracking_params_fragment_and_trailing_slash():
    assert (
        normalize_url("https://www.example.com/path/?utm_source=foo&gclid=bar#section")
        == "https://example.com/path"
    )


def test_normalize_url_keeps_non_tracking_params():
    assert normalize_url("https://example.com/path/?ref=x&q=y") == "https://example.com/path?q=y"


def test_normalize_url_lowercases_host_and_drops_default_port():
    assert normalize_url("HTTPS://News.Example.COM:443/Story") == "https://news.example.com/Story"
    assert normalize_url("http://example.com:8080/a/") == "http://example.com:8080/a"


def test_normalize_url_root_path_keeps_slash():
    assert normalize_url("https://example.com") == "https://example.com/"
    assert normalize_url("https://example.com/") == "https://example.com/"


def test_normalize_url_rejects_non_http_values():
    assert normalize_url("mailto:team@example.com") is None
    assert normalize_url("/relative/path") is None
    assert normalize_url("") is None
    assert normalize_url(None) is None


def test_get_hostname_strips_www():
    assert get_hostname("https://www.Example.com/about") == "example.com"
    assert get_hostname("not a url") is None


def test_normalize_name_strips_punctuation_except_ampersand_and_hyphen():
    assert normalize_name("Neo-Lab AI, Inc.") == "neo-lab ai inc"
    assert normalize_name("  Research   & Co. ") == "research & co"
    assert normalize_name("!!!") == ""


def test_merge_aliases_is_order_preserving_union():
    merged = merge_aliases(["acme labs"], ["Acme Labs", "ACME", "acme"])
    assert merged == ["acme labs", "acme"]


def test_latest_prefers_present_and_later_values():
    earlier = datetime(2025, 1, 1, tzinfo=UTC)
    later = earlier + timedelta(days=3)
    assert latest(None, earlier) == earlier
    assert latest(earlier, None) == earlier
    assert latest(earlier, later) == later
    assert latest(later, earlier) == later
    assert latest(None, None) is None


def test_latest_compares_across_timezones():
    utc_value = datetime(2025, 1, 1, 12, tzinfo=UTC)
    offset_value = datetime(2025, 1, 1, 13, 30, tzinfo=timezone(timedelta(hours=2)))
    assert latest(utc_value, offset_value) == utc_value


def test_parse_datetime_accepts_iso_z_and_date_only_forms():
    assert parse_datetime("2025-03-04T10:00:00Z") == datetime(2025, 3, 4, 10, tzinfo=UTC)
    assert parse_datetime("2025-03-04") == datetime(2025, 3, 4, tzinfo=UTC)
    assert parse_datetime("2024") == datetime(2024, 1, 1, tzinfo=UTC)
    assert parse_datetime("yesterday") is None
    assert parse_datetime(42) is None


def test_parse_date_returns_calendar_date():
    parsed = parse_date("2025-06-30T23:00:00Z")
    assert parsed is not None
    assert parsed.isoformat() == "2025-06-30"
