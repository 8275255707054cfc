from __future__ import annotations

import asyncio
import json
from copy import deepcopy
from typing import Callable, Dict, List, Tuple

import httpx


_DEFAULT_ACCOUNT = {
	"id": "acct-1",
	"username": "alice",
	"acct": "alice@example.social",
	"display_name": "Alice",
	"locked": False,
	"bot": False,
	"created_at": "2023-01-02T00:00:00Z",
	"followers_count": 10,
	"following_count": 5,
	"statuses_count": 42,
	"note": "<p>hi</p>",
	"url": "https://example.social/@alice",
	"avatar": "https://cdn.example/avatar.png",
	"avatar_static": "https://cdn.example/avatar.png",
	"header": "https://cdn.example/header.png",
	"header_static": "https://cdn.example/header.png",
	"emojis": [],
	"fields": [],
}

_DEFAULT_STATUS = {
	"id": "status-1",
	"uri": "https://example.social/users/alice/statuses/1",
	"url": "https://example.social/@user/1",
	"created_at": "2023-01-02T00:00:00Z",
	"content": "<p>hello</p>",
	"visibility": "public",
	"account": _DEFAULT_ACCOUNT,
	"media_attachments": [
		{"id": "m1", "type": "image", "url": "https://cdn.example/media/file.png", "remote_url": "https://cdn.example/media/file.png"}
	],
}

_DEFAULT_MISSKEY_USER = {
	"id": "9abc",
	"username": "bob",
	"host": None,
	"name": "Bob",
	"avatarUrl": "https://misskey.example/avatar.webp",
	"isBot": False,
	"emojis": {},
}

_DEFAULT_MISSKEY_NOTE = {
	"id": "9note1",
	"createdAt": "2023-05-01T10:00:00.000Z",
	"userId": "9abc",
	"user": _DEFAULT_MISSKEY_USER,
	"text": "hello from misskey",
	"cw": None,
	"visibility": "public",
	"renoteCount": 1,
	"repliesCount": 0,
	"reactions": {"⭐": 2, ":blob:": 1},
	"files": [],
	"replyId": None,
	"renoteId": None,
}


def make_account(**overrides) -> dict:
	account = deepcopy(_DEFAULT_ACCOUNT)
	for key, val in overrides.items():
		account[key] = val
	return account


def make_status(**overrides) -> dict:
	status = deepcopy(_DEFAULT_STATUS)
	for key, val in overrides.items():
		status[key] = val
	return status


def make_notification(**overrides) -> dict:
	notification = {
		"id": "n1",
		"type": "mention",
		"created_at": "2023-01-03T00:00:00Z",
		"account": make_account(),
		"status": make_status(),
	}
	notification.update(overrides)
	return notification


def make_misskey_user(**overrides) -> dict:
	user = deepcopy(_DEFAULT_MISSKEY_USER)
	user.update(overrides)
	return user


def make_misskey_note(**overrides) -> dict:
	note = deepcopy(_DEFAULT_MISSKEY_NOTE)
	note.update(overrides)
	return note


Route = Callable[[httpx.Request], httpx.Response]


class MockServer:
	"""
	Route table for httpx.MockTransport keyed by (method, path). Records
	every request it receives; unknown routes answer 404.
	"""

	def __init__(self, routes: Dict[Tuple[str, str], httpx.Response | Route] | None = None):
		self.routes = dict(routes or {})
		self.requests: List[httpx.Request] = []

	def handler(self, request: httpx.Request) -> httpx.Response:
		self.requests.append(request)
		route = self.routes.get((request.method, request.url.path))
		if route is None:
			return httpx.Response(404, json={"error": "Record not found"})
		if callable(route):
			return route(request)
		return route

	def transport(self) -> httpx.MockTransport:
		return httpx.MockTransport(self.handler)

	def json_body(self, index: int = -1) -> dict:
		return json.loads(self.requests[index].content)


class FakeConnection:
	"""
	Stand-in for a websocket client connection. Yields `frames`, then either
	raises `error`, ends, or (hold=True) waits until closed.
	"""

	def __init__(self, frames=(), error: Exception | None = None, hold: bool = False):
		self.frames = list(frames)
		self.error = error
		self.hold = hold
		self.sent: List[str] = []
		self.closed = False
		self._closed = asyncio.Event()
		self.connector: FakeConnector | None = None

	async def send(self, message: str) -> None:
		self.sent.append(message)

	def __aiter__(self):
		return self._iter()

	async def _iter(self):
		for frame in self.frames:
			if self.closed:
				return
			yield frame
		if self.hold:
			await self._closed.wait()
			return
		if self.error is not None:
			raise self.error

	async def close(self) -> None:
		if not self.closed and self.connector is not None:
			self.connector.open_count -= 1
		self.closed = True
		self._closed.set()


class FakeConnector:
	"""
	Replacement for websockets' connect(). Each call consumes the next
	outcome: a FakeConnection to return or an exception to raise.
	"""

	def __init__(self, outcomes):
		self.outcomes = list(outcomes)
		self.calls: List[Tuple[str, dict]] = []
		self.open_count = 0
		self.max_open = 0

	async def __call__(self, url: str, **kwargs):
		self.calls.append((url, kwargs))
		outcome = self.outcomes.pop(0)
		if isinstance(outcome, BaseException):
			raise outcome
		outcome.connector = self
		self.open_count += 1
		self.max_open = max(self.max_open, self.open_count)
		return outcome


def recording_sleep():
	"""Sleep replacement that records requested delays and returns at once."""
	delays: List[float] = []

	async def sleep(delay: float) -> None:
		delays.append(delay)
		await asyncio.sleep(0)

	return sleep, delays


def mastodon_frame(event: str, payload) -> str:
	if not isinstance(payload, str):
		payload = json.dumps(payload)
	return json.dumps({"event": event, "payload": payload, "stream": ["public"]})
