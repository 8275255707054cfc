"""
Canonical entities shared by every backend.

`from_json` builders accept the Mastodon/Pleroma JSON shape. Missing required
keys raise KeyError and wrong types raise TypeError/ValueError; the response
envelope turns those into DecodeError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterator, List

from util import parse_time

logger = logging.getLogger(__name__)

# Upper bound on nested `moved` / `reblog` objects decoded from one payload.
MAX_NESTING_DEPTH = 8


@dataclass
class Emoji:
	shortcode: str
	url: str
	static_url: str
	visible_in_picker: bool = True
	category: str | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Emoji":
		return cls(
			shortcode=data["shortcode"],
			url=data["url"],
			static_url=data.get("static_url") or data["url"],
			visible_in_picker=bool(data.get("visible_in_picker", True)),
			category=data.get("category"),
		)


@dataclass
class Field:
	name: str
	value: str
	verified_at: datetime | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Field":
		verified = data.get("verified_at")
		return cls(
			name=data["name"],
			value=data["value"],
			verified_at=parse_time(verified) if verified else None,
		)


@dataclass
class Source:
	privacy: str | None = None
	sensitive: bool | None = None
	language: str | None = None
	note: str = ""
	fields: List[Field] = field(default_factory=list)

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Source":
		return cls(
			privacy=data.get("privacy"),
			sensitive=data.get("sensitive"),
			language=data.get("language"),
			note=data.get("note") or "",
			fields=[Field.from_json(f) for f in data.get("fields") or []],
		)


@dataclass
class Account:
	"""
	A user account. `moved` points to the account this one migrated to.
	"""

	id: str
	username: str
	acct: str
	display_name: str
	created_at: datetime
	locked: bool = False
	bot: bool = False
	discoverable: bool | None = None
	group: bool | None = None
	followers_count: int = 0
	following_count: int = 0
	statuses_count: int = 0
	note: str = ""
	url: str = ""
	avatar: str = ""
	avatar_static: str = ""
	header: str = ""
	header_static: str = ""
	emojis: List[Emoji] = field(default_factory=list)
	fields: List[Field] = field(default_factory=list)
	source: Source | None = None
	moved: Account | None = None

	@classmethod
	def from_json(
		cls,
		data: Dict[str, Any],
		_depth: int = 0,
		_seen: FrozenSet[str] = frozenset(),
	) -> "Account":
		account_id = str(data["id"])
		seen = _seen | {account_id}

		moved = None
		raw_moved = data.get("moved")
		if raw_moved:
			moved_id = str(raw_moved.get("id"))
			if moved_id in seen:
				logger.warning("Dropping cyclic moved reference %s -> %s", account_id, moved_id)
			elif _depth + 1 >= MAX_NESTING_DEPTH:
				logger.warning("Dropping moved chain deeper than %d at account %s", MAX_NESTING_DEPTH, account_id)
			else:
				moved = cls.from_json(raw_moved, _depth + 1, seen)

		source = data.get("source")
		return cls(
			id=account_id,
			username=data["username"],
			acct=data["acct"],
			display_name=data.get("display_name") or "",
			created_at=parse_time(data["created_at"]),
			locked=bool(data.get("locked", False)),
			bot=bool(data.get("bot", False)),
			discoverable=data.get("discoverable"),
			group=data.get("group"),
			followers_count=int(data.get("followers_count") or 0),
			following_count=int(data.get("following_count") or 0),
			statuses_count=int(data.get("statuses_count") or 0),
			note=data.get("note") or "",
			url=data.get("url") or "",
			avatar=data.get("avatar") or "",
			avatar_static=data.get("avatar_static") or data.get("avatar") or "",
			header=data.get("header") or "",
			header_static=data.get("header_static") or data.get("header") or "",
			emojis=[Emoji.from_json(e) for e in data.get("emojis") or []],
			fields=[Field.from_json(f) for f in data.get("fields") or []],
			source=Source.from_json(source) if source else None,
			moved=moved,
		)

	def iter_moved(self) -> Iterator["Account"]:
		"""
		Walk the migration chain starting after this account.
		Stops at the first repeated id, so a cycle ends the walk.
		"""
		seen = {self.id}
		current = self.moved
		while current is not None and current.id not in seen:
			seen.add(current.id)
			yield current
			current = current.moved


@dataclass
class Attachment:
	id: str
	type: str
	url: str | None = None
	remote_url: str | None = None
	preview_url: str | None = None
	description: str | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Attachment":
		return cls(
			id=str(data["id"]),
			type=data.get("type") or "unknown",
			url=data.get("url"),
			remote_url=data.get("remote_url"),
			preview_url=data.get("preview_url"),
			description=data.get("description"),
		)


@dataclass
class Reaction:
	name: str
	count: int
	me: bool = False

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Reaction":
		return cls(name=data["name"], count=int(data.get("count") or 0), me=bool(data.get("me", False)))


@dataclass
class Status:
	"""A post. `reblog` holds the boosted status, if any."""

	id: str
	uri: str
	account: Account
	content: str
	created_at: datetime
	visibility: str = "public"
	url: str | None = None
	sensitive: bool = False
	spoiler_text: str = ""
	in_reply_to_id: str | None = None
	in_reply_to_account_id: str | None = None
	replies_count: int = 0
	reblogs_count: int = 0
	favourites_count: int = 0
	favourited: bool | None = None
	reblogged: bool | None = None
	bookmarked: bool | None = None
	media_attachments: List[Attachment] = field(default_factory=list)
	emojis: List[Emoji] = field(default_factory=list)
	emoji_reactions: List[Reaction] = field(default_factory=list)
	reblog: Status | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any], _depth: int = 0) -> "Status":
		reblog = None
		raw_reblog = data.get("reblog")
		if raw_reblog:
			if _depth + 1 >= MAX_NESTING_DEPTH:
				logger.warning("Dropping reblog nested deeper than %d in status %s", MAX_NESTING_DEPTH, data.get("id"))
			else:
				reblog = cls.from_json(raw_reblog, _depth + 1)

		# Pleroma keeps reactions under its own extension object.
		reactions = data.get("emoji_reactions")
		if reactions is None:
			reactions = (data.get("pleroma") or {}).get("emoji_reactions") or []

		return cls(
			id=str(data["id"]),
			uri=data["uri"],
			account=Account.from_json(data["account"]),
			content=data.get("content") or "",
			created_at=parse_time(data["created_at"]),
			visibility=data.get("visibility") or "public",
			url=data.get("url"),
			sensitive=bool(data.get("sensitive", False)),
			spoiler_text=data.get("spoiler_text") or "",
			in_reply_to_id=data.get("in_reply_to_id"),
			in_reply_to_account_id=data.get("in_reply_to_account_id"),
			replies_count=int(data.get("replies_count") or 0),
			reblogs_count=int(data.get("reblogs_count") or 0),
			favourites_count=int(data.get("favourites_count") or 0),
			favourited=data.get("favourited"),
			reblogged=data.get("reblogged"),
			bookmarked=data.get("bookmarked"),
			media_attachments=[Attachment.from_json(m) for m in data.get("media_attachments") or []],
			emojis=[Emoji.from_json(e) for e in data.get("emojis") or []],
			emoji_reactions=[Reaction.from_json(r) for r in reactions],
			reblog=reblog,
		)


@dataclass
class Notification:
	id: str
	type: str
	created_at: datetime
	account: Account | None = None
	status: Status | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Notification":
		account = data.get("account")
		status = data.get("status")
		return cls(
			id=str(data["id"]),
			type=data["type"],
			created_at=parse_time(data["created_at"]),
			account=Account.from_json(account) if account else None,
			status=Status.from_json(status) if status else None,
		)


@dataclass
class URLs:
	streaming_api: str | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "URLs":
		return cls(streaming_api=data.get("streaming_api"))


@dataclass
class Instance:
	uri: str
	title: str
	version: str
	description: str = ""
	email: str | None = None
	registrations: bool | None = None
	urls: URLs = field(default_factory=URLs)
	languages: List[str] = field(default_factory=list)
	max_post_chars: int | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "Instance":
		max_chars = (
			data.get("max_toot_chars")
			or (((data.get("configuration") or {}).get("statuses") or {}).get("max_characters"))
		)
		return cls(
			uri=data["uri"],
			title=data["title"],
			version=data["version"],
			description=data.get("description") or "",
			email=data.get("email"),
			registrations=data.get("registrations"),
			urls=URLs.from_json(data.get("urls") or {}),
			languages=list(data.get("languages") or []),
			max_post_chars=int(max_chars) if max_chars else None,
		)


@dataclass
class ProbeResult:
	"""
	Minimal instance shape used only for flavor detection. The presence of
	the `pleroma` object, not its content, marks a Pleroma server.
	"""

	title: str
	uri: str
	urls: URLs
	version: str
	pleroma: Dict[str, Any] | None = None

	@classmethod
	def from_json(cls, data: Dict[str, Any]) -> "ProbeResult":
		if not isinstance(data, dict):
			raise TypeError(f"instance info must be an object, got {type(data).__name__}")
		urls = data["urls"]
		if not isinstance(urls, dict):
			raise TypeError("urls must be an object")
		return cls(
			title=str(data["title"]),
			uri=str(data["uri"]),
			urls=URLs.from_json(urls),
			version=str(data["version"]),
			pleroma=data.get("pleroma"),
		)

	@property
	def has_pleroma_marker(self) -> bool:
		return self.pleroma is not None
