from datetime import datetime
from urllib.parse import urlsplit, urlunsplit


def parse_time(value: str) -> datetime:
	"""
	Parse an ISO8601 timestamp into a timezone-aware datetime.
	Supports trailing 'Z' (UTC) and offset-aware strings.
	"""
	if not value:
		raise ValueError("timestamp is empty")
	value = value.replace("Z", "+00:00")
	return datetime.fromisoformat(value)


def normalize_base_url(url: str) -> str:
	"""
	Strip whitespace and trailing slashes so paths can be appended with
	a plain f-string.
	"""
	return (url or "").strip().rstrip("/")


def websocket_url(base_url: str, path: str) -> str:
	"""Turn an http(s) base URL into the ws(s) URL of the given path."""
	parts = urlsplit(base_url)
	scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
	return urlunsplit((scheme, parts.netloc, parts.path.rstrip("/") + path, "", ""))


def redact_url(url: str) -> str:
	"""Drop the query string, which may carry an access token."""
	parts = urlsplit(url)
	return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
