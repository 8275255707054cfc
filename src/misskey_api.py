"""
Misskey client.

Misskey's API is RPC-style: every endpoint is a POST to /api/<name> with a
JSON body, and the token travels in the body as "i". Users, notes and
notifications are converted into the canonical Mastodon-shaped entities.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from backoff import BackoffPolicy
from config import DEFAULT_USER_AGENT
from entities import (
	MAX_NESTING_DEPTH,
	Account,
	Attachment,
	Emoji,
	Field,
	Instance,
	Notification,
	Reaction,
	Status,
	URLs,
)
from errors import CredentialRequiredError, ProtocolError
from flavor import Flavor
from response import Response
from streaming import EventKind, StreamEvent, StreamingSession
from transport import DEFAULT_TIMEOUT, build_client, send
from util import normalize_base_url, parse_time, websocket_url

logger = logging.getLogger(__name__)

# Reaction used to emulate a Mastodon favourite.
FAVOURITE_REACTION = "⭐"

_VISIBILITY_TO_MISSKEY = {
	"public": "public",
	"unlisted": "home",
	"private": "followers",
	"direct": "specified",
}
_VISIBILITY_FROM_MISSKEY = {v: k for k, v in _VISIBILITY_TO_MISSKEY.items()}

_NOTIFICATION_TYPES = {
	"follow": "follow",
	"mention": "mention",
	"reply": "mention",
	"quote": "mention",
	"renote": "reblog",
	"reaction": "emoji_reaction",
	"pollEnded": "poll",
	"pollVote": "poll",
	"receiveFollowRequest": "follow_request",
}

_EPOCH = datetime.fromtimestamp(0, timezone.utc)


class MisskeyConverter:
	"""Builds canonical entities from Misskey JSON for one instance."""

	def __init__(self, base_url: str):
		self.base_url = base_url

	def account(self, data: Dict[str, Any]) -> Account:
		username = data["username"]
		host = data.get("host")
		acct = f"{username}@{host}" if host else username
		created = data.get("createdAt")
		return Account(
			id=str(data["id"]),
			username=username,
			acct=acct,
			display_name=data.get("name") or username,
			created_at=parse_time(created) if created else _EPOCH,
			locked=bool(data.get("isLocked", False)),
			bot=bool(data.get("isBot", False)),
			followers_count=int(data.get("followersCount") or 0),
			following_count=int(data.get("followingCount") or 0),
			statuses_count=int(data.get("notesCount") or 0),
			note=data.get("description") or "",
			url=data.get("url") or f"{self.base_url}/@{acct}",
			avatar=data.get("avatarUrl") or "",
			avatar_static=data.get("avatarUrl") or "",
			header=data.get("bannerUrl") or "",
			header_static=data.get("bannerUrl") or "",
			emojis=self.emojis(data.get("emojis")),
			fields=[Field(name=f["name"], value=f["value"]) for f in data.get("fields") or []],
		)

	def emojis(self, raw: Any) -> List[Emoji]:
		# Older servers send [{"name", "url"}], newer ones {name: url}.
		if not raw:
			return []
		if isinstance(raw, dict):
			return [Emoji(shortcode=name, url=url, static_url=url) for name, url in raw.items()]
		return [Emoji(shortcode=e["name"], url=e["url"], static_url=e["url"]) for e in raw]

	def attachment(self, data: Dict[str, Any]) -> Attachment:
		mime = data.get("type") or ""
		kind = mime.split("/", 1)[0]
		if kind not in ("image", "video", "audio"):
			kind = "unknown"
		return Attachment(
			id=str(data["id"]),
			type=kind,
			url=data.get("url"),
			preview_url=data.get("thumbnailUrl"),
			description=data.get("comment"),
		)

	def status(self, data: Dict[str, Any], _depth: int = 0) -> Status:
		note_id = str(data["id"])
		renote = data.get("renote")
		reblog = None
		# A renote without text is a boost; with text it is a quote.
		if renote and data.get("text") is None:
			if _depth + 1 >= MAX_NESTING_DEPTH:
				logger.warning("Dropping renote nested deeper than %d in note %s", MAX_NESTING_DEPTH, note_id)
			else:
				reblog = self.status(renote, _depth + 1)

		files = data.get("files") or []
		reactions = data.get("reactions") or {}
		my_reaction = data.get("myReaction")
		return Status(
			id=note_id,
			uri=data.get("uri") or f"{self.base_url}/notes/{note_id}",
			url=data.get("url") or f"{self.base_url}/notes/{note_id}",
			account=self.account(data["user"]),
			content=data.get("text") or "",
			created_at=parse_time(data["createdAt"]),
			visibility=_VISIBILITY_FROM_MISSKEY.get(data.get("visibility"), "public"),
			sensitive=any(f.get("isSensitive") for f in files),
			spoiler_text=data.get("cw") or "",
			in_reply_to_id=data.get("replyId"),
			in_reply_to_account_id=(data.get("reply") or {}).get("userId"),
			replies_count=int(data.get("repliesCount") or 0),
			reblogs_count=int(data.get("renoteCount") or 0),
			favourites_count=sum(int(c) for c in reactions.values()),
			favourited=my_reaction == FAVOURITE_REACTION if my_reaction is not None else None,
			media_attachments=[self.attachment(f) for f in files],
			emojis=self.emojis(data.get("emojis")),
			emoji_reactions=[
				Reaction(name=name, count=int(count), me=name == my_reaction)
				for name, count in reactions.items()
			],
			reblog=reblog,
		)

	def notification(self, data: Dict[str, Any]) -> Notification:
		user = data.get("user")
		note = data.get("note")
		raw_type = data["type"]
		return Notification(
			id=str(data["id"]),
			type=_NOTIFICATION_TYPES.get(raw_type, raw_type),
			created_at=parse_time(data["createdAt"]),
			account=self.account(user) if user else None,
			status=self.status(note) if note else None,
		)

	def instance(self, data: Dict[str, Any]) -> Instance:
		max_chars = data.get("maxNoteTextLength")
		disabled = data.get("disableRegistration")
		return Instance(
			uri=self.base_url,
			title=data.get("name") or "",
			version=data["version"],
			description=data.get("description") or "",
			email=data.get("maintainerEmail"),
			registrations=None if disabled is None else not disabled,
			urls=URLs(streaming_api=websocket_url(self.base_url, "")),
			languages=list(data.get("langs") or []),
			max_post_chars=int(max_chars) if max_chars else None,
		)

	def statuses(self, data: Any) -> List[Status]:
		return [self.status(n) for n in _require_list(data)]

	def notifications(self, data: Any) -> List[Notification]:
		return [self.notification(n) for n in _require_list(data)]


def _require_list(data: Any) -> list:
	if not isinstance(data, list):
		raise TypeError(f"expected a list, got {type(data).__name__}")
	return data


def _ignore(_data: Any) -> None:
	return None


class MisskeyAPI:
	"""
	Misskey REST and streaming client.

	Differences from Mastodon: favourites are emulated with a star reaction,
	bookmarks map to Misskey favorites, and pagination cursors are note or
	favorite ids passed as untilId/sinceId rather than Link headers.
	"""

	flavor = Flavor.MISSKEY

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
		self.base_url = normalize_base_url(base_url)
		self.access_token = access_token
		self.user_agent = user_agent or DEFAULT_USER_AGENT
		self.timeout = timeout
		self._transport = transport
		self._streaming_policy = streaming_policy
		self._streaming_url = streaming_url
		self._connect = connect
		self.convert = MisskeyConverter(self.base_url)

	def __repr__(self) -> str:
		return f"{type(self).__name__}(base_url={self.base_url!r}, authenticated={self.access_token is not None})"

	def _require_token(self, operation: str) -> None:
		if not self.access_token:
			raise CredentialRequiredError(operation)

	async def _call(
		self,
		endpoint: str,
		decode: Optional[Callable[[Any], Any]] = None,
		body: Optional[Dict[str, Any]] = None,
	) -> Response:
		payload = {k: v for k, v in (body or {}).items() if v is not None}
		if self.access_token:
			payload["i"] = self.access_token
		# The token goes in the body, never in an Authorization header.
		async with build_client(self.user_agent, None, self.timeout, self._transport) as client:
			return await send(client, "POST", f"{self.base_url}/api/{endpoint}", decode=decode, json_body=payload)

	# --- instance / accounts ------------------------------------------

	async def get_instance(self) -> Response[Instance]:
		return await self._call("meta", self.convert.instance, {"detail": True})

	async def verify_account_credentials(self) -> Response[Account]:
		self._require_token("verify_account_credentials")
		return await self._call("i", self.convert.account)

	async def get_account(self, account_id: str) -> Response[Account]:
		return await self._call("users/show", self.convert.account, {"userId": account_id})

	async def get_account_statuses(
		self,
		account_id: str,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Status]]:
		body = {"userId": account_id, "limit": limit, "untilId": max_id, "sinceId": since_id}
		return await self._call("users/notes", self.convert.statuses, body)

	# --- timelines ----------------------------------------------------

	async def get_home_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Status]]:
		self._require_token("get_home_timeline")
		body = {"limit": limit, "untilId": max_id, "sinceId": since_id}
		return await self._call("notes/timeline", self.convert.statuses, body)

	async def get_public_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
		only_media: bool = False,
	) -> Response[List[Status]]:
		body = {"limit": limit, "untilId": max_id, "sinceId": since_id, "withFiles": only_media or None}
		return await self._call("notes/global-timeline", self.convert.statuses, body)

	async def get_local_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
		only_media: bool = False,
	) -> Response[List[Status]]:
		body = {"limit": limit, "untilId": max_id, "sinceId": since_id, "withFiles": only_media or None}
		return await self._call("notes/local-timeline", self.convert.statuses, body)

	# --- statuses -----------------------------------------------------

	async def get_status(self, status_id: str) -> Response[Status]:
		return await self._call("notes/show", self.convert.status, {"noteId": status_id})

	async def post_status(
		self,
		text: str,
		visibility: Optional[str] = None,
		spoiler_text: Optional[str] = None,
		in_reply_to_id: Optional[str] = None,
		sensitive: Optional[bool] = None,
	) -> Response[Status]:
		"""
		Publish a note. `sensitive` has no note-level equivalent in Misskey
		(sensitivity is per file) and is ignored. Requires a token.
		"""
		self._require_token("post_status")
		if visibility is not None and visibility not in _VISIBILITY_TO_MISSKEY:
			raise ValueError(f"Unknown visibility: {visibility!r}")
		body = {
			"text": text,
			"visibility": _VISIBILITY_TO_MISSKEY.get(visibility) if visibility else None,
			"cw": spoiler_text or None,
			"replyId": in_reply_to_id,
		}
		return await self._call("notes/create", lambda data: self.convert.status(data["createdNote"]), body)

	async def delete_status(self, status_id: str) -> Response[None]:
		self._require_token("delete_status")
		return await self._call("notes/delete", _ignore, {"noteId": status_id})

	async def favourite_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Emulated with a star reaction; the payload is None. Requires a token."""
		self._require_token("favourite_status")
		return await self._call("notes/reactions/create", _ignore, {"noteId": status_id, "reaction": FAVOURITE_REACTION})

	async def unfavourite_status(self, status_id: str) -> Response[Optional[Status]]:
		self._require_token("unfavourite_status")
		return await self._call("notes/reactions/delete", _ignore, {"noteId": status_id})

	async def bookmark_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Maps to Misskey favorites; the payload is None. Requires a token."""
		self._require_token("bookmark_status")
		return await self._call("notes/favorites/create", _ignore, {"noteId": status_id})

	async def unbookmark_status(self, status_id: str) -> Response[Optional[Status]]:
		self._require_token("unbookmark_status")
		return await self._call("notes/favorites/delete", _ignore, {"noteId": status_id})

	# --- bookmarks ----------------------------------------------------

	async def get_bookmarks(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
	) -> Response[List[Status]]:
		"""
		One page of favorites. `max_id` is a favorite id, not a note id;
		`iter_bookmarks` handles the cursor. Requires a token.
		"""
		res = await self._favorites_page(limit, max_id)
		return Response([status for _, status in res.json], res.status, res.status_text, res.headers)

	async def iter_bookmarks(self, limit: int = 40) -> AsyncIterator[Status]:
		"""Iterate over all favorites, following the untilId cursor."""
		until_id: Optional[str] = None

		while True:
			res = await self._favorites_page(limit, until_id)
			if not res.json:
				break

			for _, status in res.json:
				yield status

			until_id = res.json[-1][0]

	async def _favorites_page(self, limit: Optional[int], until_id: Optional[str]) -> Response[List[Tuple[str, Status]]]:
		self._require_token("get_bookmarks")

		def decode(data: Any) -> List[Tuple[str, Status]]:
			return [(str(item["id"]), self.convert.status(item["note"])) for item in _require_list(data)]

		return await self._call("i/favorites", decode, {"limit": limit, "untilId": until_id})

	# --- notifications ------------------------------------------------

	async def get_notifications(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Notification]]:
		self._require_token("get_notifications")
		body = {"limit": limit, "untilId": max_id, "sinceId": since_id}
		return await self._call("i/notifications", self.convert.notifications, body)

	# --- reactions ----------------------------------------------------

	async def create_emoji_reaction(self, status_id: str, emoji: str) -> Response[None]:
		self._require_token("create_emoji_reaction")
		return await self._call("notes/reactions/create", _ignore, {"noteId": status_id, "reaction": emoji})

	async def delete_emoji_reaction(self, status_id: str, emoji: str) -> Response[None]:
		"""Misskey allows one reaction per user and note, so `emoji` is not sent."""
		self._require_token("delete_emoji_reaction")
		return await self._call("notes/reactions/delete", _ignore, {"noteId": status_id})

	# --- streaming ----------------------------------------------------

	def user_streaming(self) -> StreamingSession:
		self._require_token("user_streaming")
		return self._streaming(["homeTimeline", "main"])

	def public_streaming(self) -> StreamingSession:
		return self._streaming(["globalTimeline"])

	def local_streaming(self) -> StreamingSession:
		return self._streaming(["localTimeline"])

	def _streaming(self, channels: Sequence[str]) -> StreamingSession:
		base = self._streaming_url or websocket_url(self.base_url, "/streaming")
		params = {"i": self.access_token} if self.access_token else {}
		url = str(httpx.URL(base, params=params))
		return StreamingSession(
			url,
			MisskeyFrameDecoder(channels, self.convert),
			user_agent=self.user_agent,
			policy=self._streaming_policy,
			connect=self._connect,
		)


class MisskeyFrameDecoder:
	"""
	Decoder for Misskey streaming frames. Each channel is subscribed with a
	connect message and its frames arrive as
	{"type": "channel", "body": {"id": <channel id>, "type": ..., "body": ...}}.
	"""

	def __init__(self, channels: Sequence[str], converter: MisskeyConverter):
		self.converter = converter
		self.channels: Dict[str, str] = {uuid.uuid4().hex: name for name in channels}

	def subscribe_messages(self) -> List[Dict[str, Any]]:
		return [
			{"type": "connect", "body": {"channel": name, "id": channel_id}}
			for channel_id, name in self.channels.items()
		]

	def decode(self, raw: str | bytes) -> List[StreamEvent]:
		try:
			frame = json.loads(raw)
		except ValueError as exc:
			raise ProtocolError(f"frame is not JSON: {exc}") from exc
		if not isinstance(frame, dict) or "type" not in frame:
			raise ProtocolError("frame has no type field")

		frame_type = frame["type"]
		body = frame.get("body")
		if not isinstance(body, dict):
			raise ProtocolError(f"{frame_type} frame has no body")

		if frame_type != "channel":
			# Connection-level bookkeeping such as "connected" carries nothing for the consumer.
			return []

		try:
			channel = self.channels.get(body.get("id"))
			if channel is None:
				raise ProtocolError(f"frame for unknown channel {body.get('id')!r}")

			event_type = body.get("type")
			payload = body.get("body")
			stream = (channel,)
			if event_type == "note":
				return [StreamEvent(EventKind.UPDATE, self.converter.status(payload), stream)]
			if event_type == "notification":
				return [StreamEvent(EventKind.NOTIFICATION, self.converter.notification(payload), stream)]
		except (ValueError, KeyError, TypeError, AttributeError) as exc:
			raise ProtocolError(f"bad {frame_type} payload: {exc}") from exc

		# The main channel also reports unread counters and similar; skip them.
		return []
