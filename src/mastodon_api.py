from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from backoff import BackoffPolicy
from config import DEFAULT_USER_AGENT
from entities import Account, Instance, Notification, Status
from errors import CredentialRequiredError, ProtocolError, UnsupportedOperationError
from flavor import Flavor
from response import Response
from streaming import EventKind, StreamEvent, StreamingSession
from transport import DEFAULT_TIMEOUT, build_client, send
from util import normalize_base_url, websocket_url

logger = logging.getLogger(__name__)


def _list_of(builder: Callable[[Dict[str, Any]], Any]) -> Callable[[Any], List[Any]]:
	def decode(data: Any) -> List[Any]:
		if not isinstance(data, list):
			raise TypeError(f"expected a list, got {type(data).__name__}")
		return [builder(item) for item in data]
	return decode


def _ignore(_data: Any) -> None:
	return None


class MastodonAPI:
	"""
	Mastodon REST and streaming client. Also the fallback adapter for any
	flavor without a dedicated implementation.
	"""

	flavor = Flavor.MASTODON

	def __init__(
		self,
		base_url: str,
		access_token: Optional[str] = None,
		user_agent: Optional[str] = None,
		*,
		timeout: float = DEFAULT_TIMEOUT,
		transport: Optional[httpx.AsyncBaseTransport] = None,
		streaming_policy: Optional[BackoffPolicy] = None,
		streaming_url: Optional[str] = None,
		connect: Optional[Callable[..., Any]] = None,
	):
		"""
		Create an API wrapper bound to a specific instance. Nothing is
		validated here; a bad URL or token surfaces on the first call.

		Args:
			base_url: Instance URL, e.g. "https://mastodon.social".
			access_token: Bearer token, or None for public reads only.
			user_agent: User-Agent header; defaults to DEFAULT_USER_AGENT.
			timeout: Per-request timeout in seconds.
			transport: httpx transport override (tests use MockTransport).
			streaming_policy: Reconnect schedule for streaming sessions.
			streaming_url: websocket endpoint when it differs from the base URL.
			connect: websocket connect callable override.
		"""
		self.base_url = normalize_base_url(base_url)
		self.access_token = access_token
		self.user_agent = user_agent or DEFAULT_USER_AGENT
		self.timeout = timeout
		self._transport = transport
		self._streaming_policy = streaming_policy
		self._streaming_url = streaming_url
		self._connect = connect

	def __repr__(self) -> str:
		return f"{type(self).__name__}(base_url={self.base_url!r}, authenticated={self.access_token is not None})"

	# --- plumbing -----------------------------------------------------

	def _require_token(self, operation: str) -> None:
		if not self.access_token:
			raise CredentialRequiredError(operation)

	async def _request(
		self,
		method: str,
		path: str,
		decode: Optional[Callable[[Any], Any]] = None,
		params: Optional[Dict[str, Any]] = None,
		json_body: Any = None,
	) -> Response:
		async with build_client(self.user_agent, self.access_token, self.timeout, self._transport) as client:
			return await send(
				client,
				method,
				f"{self.base_url}{path}",
				decode=decode,
				params=params,
				json_body=json_body,
			)

	# --- instance / accounts ------------------------------------------

	async def get_instance(self) -> Response[Instance]:
		return await self._request("GET", "/api/v1/instance", Instance.from_json)

	async def verify_account_credentials(self) -> Response[Account]:
		self._require_token("verify_account_credentials")
		return await self._request("GET", "/api/v1/accounts/verify_credentials", Account.from_json)

	async def get_account(self, account_id: str) -> Response[Account]:
		return await self._request("GET", f"/api/v1/accounts/{account_id}", Account.from_json)

	async def get_account_statuses(
		self,
		account_id: str,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Status]]:
		params = {"limit": limit, "max_id": max_id, "since_id": since_id}
		return await self._request(
			"GET", f"/api/v1/accounts/{account_id}/statuses", _list_of(Status.from_json), params=params,
		)

	# --- timelines ----------------------------------------------------

	async def get_home_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Status]]:
		self._require_token("get_home_timeline")
		params = {"limit": limit, "max_id": max_id, "since_id": since_id}
		return await self._request("GET", "/api/v1/timelines/home", _list_of(Status.from_json), params=params)

	async def get_public_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
		only_media: bool = False,
	) -> Response[List[Status]]:
		params = {
			"limit": limit,
			"max_id": max_id,
			"since_id": since_id,
			"only_media": "true" if only_media else None,
		}
		return await self._request("GET", "/api/v1/timelines/public", _list_of(Status.from_json), params=params)

	async def get_local_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
		only_media: bool = False,
	) -> Response[List[Status]]:
		params = {
			"local": "true",
			"limit": limit,
			"max_id": max_id,
			"since_id": since_id,
			"only_media": "true" if only_media else None,
		}
		return await self._request("GET", "/api/v1/timelines/public", _list_of(Status.from_json), params=params)

	# --- statuses -----------------------------------------------------

	async def get_status(self, status_id: str) -> Response[Status]:
		return await self._request("GET", f"/api/v1/statuses/{status_id}", Status.from_json)

	async def post_status(
		self,
		text: str,
		visibility: Optional[str] = None,
		spoiler_text: Optional[str] = None,
		in_reply_to_id: Optional[str] = None,
		sensitive: Optional[bool] = None,
	) -> Response[Status]:
		self._require_token("post_status")
		body: Dict[str, Any] = {"status": text}
		if visibility:
			body["visibility"] = visibility
		if spoiler_text:
			body["spoiler_text"] = spoiler_text
		if in_reply_to_id:
			body["in_reply_to_id"] = in_reply_to_id
		if sensitive is not None:
			body["sensitive"] = sensitive
		return await self._request("POST", "/api/v1/statuses", Status.from_json, json_body=body)

	async def delete_status(self, status_id: str) -> Response[None]:
		self._require_token("delete_status")
		return await self._request("DELETE", f"/api/v1/statuses/{status_id}", _ignore)

	async def favourite_status(self, status_id: str) -> Response[Optional[Status]]:
		self._require_token("favourite_status")
		return await self._request("POST", f"/api/v1/statuses/{status_id}/favourite", Status.from_json)

	async def unfavourite_status(self, status_id: str) -> Response[Optional[Status]]:
		self._require_token("unfavourite_status")
		return await self._request("POST", f"/api/v1/statuses/{status_id}/unfavourite", Status.from_json)

	async def bookmark_status(self, status_id: str) -> Response[Optional[Status]]:
		self._require_token("bookmark_status")
		return await self._request("POST", f"/api/v1/statuses/{status_id}/bookmark", Status.from_json)

	async def unbookmark_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Remove a bookmark for the given status ID."""
		self._require_token("unbookmark_status")
		return await self._request("POST", f"/api/v1/statuses/{status_id}/unbookmark", Status.from_json)

	# --- bookmarks ----------------------------------------------------

	async def get_bookmarks(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
	) -> Response[List[Status]]:
		"""
		Fetch a single bookmarks page. The cursor of the next page is
		available as `next_max_id` on the returned envelope.
		"""
		self._require_token("get_bookmarks")
		params = {"limit": limit, "max_id": max_id}
		return await self._request("GET", "/api/v1/bookmarks", _list_of(Status.from_json), params=params)

	async def iter_bookmarks(self, limit: int = 40) -> AsyncIterator[Status]:
		"""
		Iterate over all bookmarks for the configured account.
		Handles pagination transparently via the Link header.
		"""
		max_id: Optional[str] = None

		while True:
			res = await self.get_bookmarks(limit=limit, max_id=max_id)
			if not res.json:
				break

			for status in res.json:
				yield status

			max_id = res.next_max_id
			if not max_id:
				break

	# --- notifications ------------------------------------------------

	async def get_notifications(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Notification]]:
		self._require_token("get_notifications")
		params = {"limit": limit, "max_id": max_id, "since_id": since_id}
		return await self._request("GET", "/api/v1/notifications", _list_of(Notification.from_json), params=params)

	# --- reactions ----------------------------------------------------

	async def create_emoji_reaction(self, status_id: str, emoji: str) -> Response[Any]:
		raise UnsupportedOperationError(self.flavor, "create_emoji_reaction")

	async def delete_emoji_reaction(self, status_id: str, emoji: str) -> Response[Any]:
		raise UnsupportedOperationError(self.flavor, "delete_emoji_reaction")

	# --- streaming ----------------------------------------------------

	def user_streaming(self) -> StreamingSession:
		self._require_token("user_streaming")
		return self._streaming("user")

	def public_streaming(self) -> StreamingSession:
		return self._streaming("public")

	def local_streaming(self) -> StreamingSession:
		return self._streaming("public:local")

	def _streaming(self, stream: str) -> StreamingSession:
		"""
		Build a session for one named stream. No connection is opened until
		the session is iterated.
		"""
		base = self._streaming_url or websocket_url(self.base_url, "/api/v1/streaming")
		url = str(httpx.URL(base, params=self._streaming_params(stream)))
		return StreamingSession(
			url,
			MastodonFrameDecoder([stream]),
			user_agent=self.user_agent,
			policy=self._streaming_policy,
			connect=self._connect,
		)

	def _streaming_params(self, stream: str) -> Dict[str, str]:
		params = {"stream": stream}
		if self.access_token:
			params["access_token"] = self.access_token
		return params


class MastodonFrameDecoder:
	"""
	Decoder for Mastodon/Pleroma streaming frames:
	{"event": "update", "payload": "<json-encoded status>", "stream": [...]}
	"""

	def __init__(self, streams: Sequence[str] = ()):
		self.streams = tuple(streams)

	def subscribe_messages(self) -> List[Dict[str, Any]]:
		# The stream is selected by the URL query.
		return []

	def decode(self, raw: str | bytes) -> List[StreamEvent]:
		try:
			frame = json.loads(raw)
		except ValueError as exc:
			raise ProtocolError(f"frame is not JSON: {exc}") from exc
		if not isinstance(frame, dict) or "event" not in frame:
			raise ProtocolError("frame has no event field")

		event = frame["event"]
		payload = frame.get("payload")

		try:
			stream = self._stream_names(frame.get("stream"))
			if event == "update":
				return [StreamEvent(EventKind.UPDATE, Status.from_json(_payload_json(payload)), stream)]
			if event == "status.update":
				return [StreamEvent(EventKind.STATUS_UPDATE, Status.from_json(_payload_json(payload)), stream)]
			if event == "notification":
				return [StreamEvent(EventKind.NOTIFICATION, Notification.from_json(_payload_json(payload)), stream)]
			if event == "delete":
				if isinstance(payload, bool) or not isinstance(payload, (str, int)):
					raise ProtocolError(f"delete frame carries no status id: {payload!r}")
				return [StreamEvent(EventKind.DELETE, str(payload), stream)]
			if event == "conversation":
				return [StreamEvent(EventKind.CONVERSATION, _payload_json(payload), stream)]
			if event == "filters_changed":
				return [StreamEvent(EventKind.FILTERS_CHANGED, None, stream)]
		except (ValueError, KeyError, TypeError, AttributeError) as exc:
			raise ProtocolError(f"bad {event} payload: {exc}") from exc

		raise ProtocolError(f"unexpected event type {event!r}")

	def _stream_names(self, raw: Any) -> Tuple[str, ...]:
		if raw is None:
			return self.streams
		if not isinstance(raw, list) or not all(isinstance(name, str) for name in raw):
			raise ProtocolError(f"stream must be a list of names, got {raw!r}")
		return tuple(raw) or self.streams


def _payload_json(payload: Any) -> Any:
	# Mastodon encodes the payload as a JSON string; some servers send the object.
	if isinstance(payload, (str, bytes)):
		return json.loads(payload)
	if payload is None:
		raise ValueError("payload is missing")
	return payload
