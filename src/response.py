"""
Response envelope returned by every client operation.

The envelope keeps the decoded payload together with the status line and
headers, since Mastodon-style pagination lives in the Link header.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Mapping, Optional, TypeVar
from urllib.parse import urlparse, parse_qs

import httpx
from requests.utils import parse_header_links

from errors import DecodeError, TransportError

T = TypeVar("T")


@dataclass(frozen=True)
class Response(Generic[T]):
	"""
	Immutable record of a decoded payload plus transport metadata.

	Build one directly from a known payload, or with `from_transport` from a
	raw httpx response.
	"""

	json: T
	status: int = 200
	status_text: str = "OK"
	headers: Mapping[str, str] = field(default_factory=httpx.Headers)

	def __post_init__(self):
		# Own a private, case-insensitive copy of the headers.
		object.__setattr__(self, "headers", httpx.Headers(self.headers))

	@classmethod
	async def from_transport(
		cls,
		raw: httpx.Response,
		decode: Optional[Callable[[Any], T]] = None,
	) -> "Response[T]":
		"""
		Build an envelope from an httpx response.

		Status and headers are captured before the body is read, because
		reading a streamed body is one-shot. A body that is not JSON, or that
		`decode` rejects, raises DecodeError carrying that metadata. An empty
		body decodes as None.
		"""
		status = raw.status_code
		status_text = raw.reason_phrase
		headers = httpx.Headers(raw.headers)

		try:
			body = await raw.aread()
		except httpx.HTTPError as exc:
			raise TransportError(f"Failed to read response body: {exc}") from exc

		try:
			data = json.loads(body) if body.strip() else None
			payload = decode(data) if decode is not None else data
		except (ValueError, KeyError, TypeError, AttributeError) as exc:
			raise DecodeError(
				f"Unexpected response body (HTTP {status}): {exc}",
				status,
				status_text,
				headers,
				body=body.decode("utf-8", errors="replace"),
			) from exc

		return cls(payload, status, status_text, headers)

	@property
	def ok(self) -> bool:
		return 200 <= self.status <= 299

	def copy_json(self) -> T:
		"""Return an independent copy of the payload."""
		return copy.deepcopy(self.json)

	@property
	def links(self) -> Dict[str, Dict[str, str]]:
		"""
		Link header parsed into {rel: {"url": ..., "rel": ...}}, the same
		shape requests exposes as `Response.links`.
		"""
		header = self.headers.get("link")
		if not header:
			return {}

		links: Dict[str, Dict[str, str]] = {}
		for link in parse_header_links(header):
			key = link.get("rel") or link.get("url")
			links[key] = link
		return links

	@property
	def next_max_id(self) -> Optional[str]:
		"""
		The 'max_id' cursor of the next (older) page, or None when no
		further page is available.
		"""
		return _query_param(self.links, "next", "max_id")

	@property
	def prev_min_id(self) -> Optional[str]:
		"""The 'min_id' cursor of the previous (newer) page."""
		return _query_param(self.links, "prev", "min_id")


def _query_param(links: Dict[str, Any], rel: str, name: str) -> Optional[str]:
	link = links.get(rel)
	if not link:
		return None

	href = link.get("url") or ""
	qs = parse_qs(urlparse(href).query)
	vals = qs.get(name)
	if not vals:
		return None
	return vals[0]
