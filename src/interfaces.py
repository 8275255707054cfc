from __future__ import annotations

from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from entities import Account, Instance, Notification, Status
from flavor import Flavor
from response import Response

if TYPE_CHECKING:
	from streaming import StreamEvent, StreamingSession


@runtime_checkable
class FediverseClient(Protocol):
	"""
	Capability set shared by every backend adapter.

	Callers hold this type only. Operations marked "requires a token" raise
	CredentialRequiredError, before any I/O, on a client built without one.
	Operations a backend cannot perform raise UnsupportedOperationError.
	"""

	flavor: Flavor
	base_url: str
	access_token: Optional[str]
	user_agent: str

	async def get_instance(self) -> Response[Instance]:
		"""Instance metadata. No token needed."""
		...

	async def verify_account_credentials(self) -> Response[Account]:
		"""The account owning the token. Requires a token."""
		...

	async def get_account(self, account_id: str) -> Response[Account]:
		"""Look up an account by id. No token needed on public instances."""
		...

	async def get_account_statuses(
		self,
		account_id: str,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Status]]:
		"""Statuses posted by an account, newest first."""
		...

	async def get_home_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Status]]:
		"""Home timeline. Requires a token."""
		...

	async def get_public_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
		only_media: bool = False,
	) -> Response[List[Status]]:
		"""Federated timeline. No token needed on public instances."""
		...

	async def get_local_timeline(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
		only_media: bool = False,
	) -> Response[List[Status]]:
		"""Local timeline. No token needed on public instances."""
		...

	async def get_status(self, status_id: str) -> Response[Status]:
		...

	async def post_status(
		self,
		text: str,
		visibility: Optional[str] = None,
		spoiler_text: Optional[str] = None,
		in_reply_to_id: Optional[str] = None,
		sensitive: Optional[bool] = None,
	) -> Response[Status]:
		"""Publish a status. Requires a token."""
		...

	async def delete_status(self, status_id: str) -> Response[None]:
		"""Delete one of the token owner's statuses. Requires a token."""
		...

	async def favourite_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Requires a token."""
		...

	async def unfavourite_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Requires a token."""
		...

	async def bookmark_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Requires a token."""
		...

	async def unbookmark_status(self, status_id: str) -> Response[Optional[Status]]:
		"""Remove a bookmark by status ID. Requires a token."""
		...

	async def get_bookmarks(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
	) -> Response[List[Status]]:
		"""One page of bookmarks. Requires a token."""
		...

	def iter_bookmarks(self, limit: int = 40) -> AsyncIterator[Status]:
		"""
		Iterate over all bookmarks. Implementations follow the pagination
		cursor internally. Requires a token.
		"""
		...

	async def get_notifications(
		self,
		limit: Optional[int] = None,
		max_id: Optional[str] = None,
		since_id: Optional[str] = None,
	) -> Response[List[Notification]]:
		"""Requires a token."""
		...

	async def create_emoji_reaction(self, status_id: str, emoji: str) -> Response[Any]:
		"""React to a status with an emoji. Requires a token."""
		...

	async def delete_emoji_reaction(self, status_id: str, emoji: str) -> Response[Any]:
		"""Requires a token."""
		...

	def user_streaming(self) -> StreamingSession:
		"""Home timeline and notifications stream. Requires a token."""
		...

	def public_streaming(self) -> StreamingSession:
		...

	def local_streaming(self) -> StreamingSession:
		...


class FrameDecoder(Protocol):
	"""Backend-specific translation of websocket frames into canonical events."""

	def subscribe_messages(self) -> List[Dict[str, Any]]:
		"""Messages to send right after every (re)connect."""
		...

	def decode(self, raw: str | bytes) -> List[StreamEvent]:
		"""
		Decode one frame. Frames that carry nothing the consumer needs return
		an empty list; malformed ones raise ProtocolError.
		"""
		...
