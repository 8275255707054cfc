"""
Reconnecting real-time event session.

A session owns at most one websocket connection at a time and turns the
backend's frames into canonical StreamEvent objects through a FrameDecoder
supplied by the adapter. Connection drops are reported to the consumer as
RECONNECTING events; running out of retries raises StreamingFatalError.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from backoff import BackoffPolicy
from errors import ProtocolError, StreamingFatalError, TransportError
from interfaces import FrameDecoder
from util import redact_url

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class StreamState(str, Enum):
	DISCONNECTED = "disconnected"
	CONNECTING = "connecting"
	CONNECTED = "connected"
	RECONNECTING = "reconnecting"
	CLOSED = "closed"


class EventKind(str, Enum):
	UPDATE = "update"
	STATUS_UPDATE = "status.update"
	NOTIFICATION = "notification"
	DELETE = "delete"
	CONVERSATION = "conversation"
	FILTERS_CHANGED = "filters_changed"
	# Not a server event: the connection dropped and the session is retrying.
	RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ReconnectNotice:
	attempt: int
	delay: float
	error: Exception


@dataclass(frozen=True)
class StreamEvent:
	kind: EventKind
	payload: Any = None
	stream: Tuple[str, ...] = ()

	@property
	def is_transient_error(self) -> bool:
		return self.kind is EventKind.RECONNECTING


StateCallback = Callable[[StreamState, StreamState], None]


class StreamingSession:
	"""
	Long-lived streaming connection with reconnect and cancellation.

	Iterate with `async for event in session` (or `session.events(cancel)`),
	stop it with `await session.close()` or by setting the cancel event.
	A closed session cannot be restarted.
	"""

	def __init__(
		self,
		url: str,
		decoder: FrameDecoder,
		*,
		headers: Optional[Dict[str, str]] = None,
		user_agent: Optional[str] = None,
		policy: Optional[BackoffPolicy] = None,
		connect: Optional[Callable[..., Awaitable[Any]]] = None,
		sleep: Optional[Callable[[float], Awaitable[None]]] = None,
		on_state: Optional[StateCallback] = None,
	):
		self.url = url
		self.decoder = decoder
		self.headers = dict(headers or {})
		self.user_agent = user_agent
		self.policy = policy or BackoffPolicy()
		self._connect = connect or websockets_connect
		self._sleep = sleep or self._wait_closed
		self._on_state = on_state

		self._state = StreamState.DISCONNECTED
		self._connection: Any = None
		self._closing = False
		self._closed_event = asyncio.Event()
		self._consuming = False

	@property
	def state(self) -> StreamState:
		return self._state

	@property
	def closed(self) -> bool:
		return self._state is StreamState.CLOSED

	def __aiter__(self) -> AsyncIterator[StreamEvent]:
		return self.events()

	async def __aenter__(self) -> "StreamingSession":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def close(self) -> None:
		"""
		Stop the session. The connection is closed and the state is CLOSED
		when this returns; no event is delivered afterwards.
		"""
		self._closing = True
		self._closed_event.set()
		conn = self._connection
		if conn is not None:
			await self._release(conn)
		self._set_state(StreamState.CLOSED)

	async def events(self, cancel: Optional[asyncio.Event] = None) -> AsyncIterator[StreamEvent]:
		"""
		Yield canonical events in arrival order until cancelled or until the
		retry budget is exhausted (StreamingFatalError).
		"""
		if self._state is StreamState.CLOSED or self._closing:
			raise RuntimeError("streaming session is closed")
		if self._consuming:
			raise RuntimeError("streaming session already has a consumer")
		self._consuming = True

		watcher = asyncio.ensure_future(self._watch(cancel)) if cancel is not None else None
		attempt = 0
		try:
			self._set_state(StreamState.CONNECTING)
			while not self._closing:
				try:
					conn = await self._open()
				except _CONNECT_ERRORS as exc:
					if self._closing:
						break
					attempt += 1
					notice = self._schedule_retry(attempt, TransportError(f"Handshake failed: {exc}"), exc)
					yield StreamEvent(EventKind.RECONNECTING, notice)
					await self._sleep(notice.delay)
					if not self._closing:
						self._set_state(StreamState.CONNECTING)
					continue

				if self._closing:
					await self._release(conn)
					break

				attempt = 0
				self._set_state(StreamState.CONNECTED)
				error: Exception
				try:
					for message in self.decoder.subscribe_messages():
						await conn.send(json.dumps(message))
					async for raw in conn:
						if self._closing:
							break
						for event in self._decode(raw):
							if self._closing:
								break
							yield event
					error = TransportError("Connection closed by server")
				except ConnectionClosed as exc:
					error = TransportError(f"Connection dropped: {exc}")
				except OSError as exc:
					error = TransportError(f"Connection error: {exc}")
				finally:
					await self._release(conn)

				if self._closing:
					break

				attempt += 1
				notice = self._schedule_retry(attempt, error, error)
				yield StreamEvent(EventKind.RECONNECTING, notice)
				await self._sleep(notice.delay)
				if not self._closing:
					self._set_state(StreamState.CONNECTING)
		finally:
			if watcher is not None:
				if cancel.is_set():
					await watcher
				else:
					watcher.cancel()
					with contextlib.suppress(asyncio.CancelledError):
						await watcher
			self._closing = True
			self._closed_event.set()
			if self._connection is not None:
				await self._release(self._connection)
			self._set_state(StreamState.CLOSED)
			self._consuming = False

	def _schedule_retry(self, attempt: int, error: Exception, cause: BaseException) -> ReconnectNotice:
		"""
		Move to RECONNECTING, or to CLOSED with a fatal error once the retry
		budget is spent.
		"""
		if self.policy.exhausted(attempt):
			self._closing = True
			self._closed_event.set()
			self._set_state(StreamState.CLOSED)
			raise StreamingFatalError(
				f"Giving up on {redact_url(self.url)} after {attempt - 1} reconnect attempts: {error}",
				attempts=attempt - 1,
			) from cause

		delay = self.policy.delay(attempt)
		self._set_state(StreamState.RECONNECTING)
		logger.warning(
			"Stream %s interrupted (%s); reconnect attempt %d in %.2fs",
			redact_url(self.url), error, attempt, delay,
		)
		return ReconnectNotice(attempt=attempt, delay=delay, error=error)

	async def _open(self):
		if self._connection is not None:
			raise RuntimeError("streaming session already holds a connection")
		conn = await self._connect(
			self.url,
			additional_headers=self.headers,
			user_agent_header=self.user_agent,
		)
		self._connection = conn
		return conn

	async def _release(self, conn) -> None:
		if self._connection is conn:
			self._connection = None
		try:
			await conn.close()
		except _CONNECT_ERRORS as exc:
			logger.debug("Ignoring error while closing %s: %s", redact_url(self.url), exc)

	def _decode(self, raw):
		try:
			return self.decoder.decode(raw)
		except ProtocolError as exc:
			logger.warning("Dropping malformed frame from %s: %s", redact_url(self.url), exc)
			return []
		except Exception:
			# A decoder bug costs one frame, not the session.
			logger.exception("Dropping malformed frame from %s: decoder failed", redact_url(self.url))
			return []

	async def _watch(self, cancel: asyncio.Event) -> None:
		await cancel.wait()
		await self.close()

	async def _wait_closed(self, delay: float) -> None:
		"""Sleep for `delay` seconds, waking early when the session closes."""
		try:
			await asyncio.wait_for(self._closed_event.wait(), timeout=delay)
		except asyncio.TimeoutError:
			pass

	def _set_state(self, new: StreamState) -> None:
		old = self._state
		if old is new:
			return
		if old is StreamState.CLOSED:
			return
		self._state = new
		logger.info("Stream %s: %s -> %s", redact_url(self.url), old.value, new.value)
		if self._on_state is not None:
			self._on_state(old, new)
