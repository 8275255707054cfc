from datetime import datetime, timezone, timedelta

import pytest

from util import normalize_base_url, parse_time, redact_url, websocket_url


def test_parse_time_handles_z_suffix():
	result = parse_time("2023-01-01T12:34:56Z")
	assert result == datetime(2023, 1, 1, 12, 34, 56, tzinfo=timezone.utc)


def test_parse_time_preserves_timezone_offset():
	result = parse_time("2023-01-01T09:00:00+09:00")
	assert result.hour == 9
	assert result.utcoffset() == timedelta(hours=9)


def test_parse_time_rejects_empty_string():
	with pytest.raises(ValueError):
		parse_time("")


def test_normalize_base_url_strips_slashes_and_space():
	assert normalize_base_url(" https://example.test/// ") == "https://example.test"
	assert normalize_base_url(None) == ""


@pytest.mark.parametrize(
	"base, expected",
	[
		("https://example.test", "wss://example.test/api/v1/streaming"),
		("http://localhost:3000/", "ws://localhost:3000/api/v1/streaming"),
		("https://example.test/sub", "wss://example.test/sub/api/v1/streaming"),
	],
)
def test_websocket_url(base, expected):
	assert websocket_url(base, "/api/v1/streaming") == expected


def test_redact_url_drops_token():
	assert redact_url("wss://example.test/streaming?i=secret") == "wss://example.test/streaming"
