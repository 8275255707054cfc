from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

from entities import Status
from flavor import Flavor
from mastodon_api import MastodonAPI
from response import Response


class PleromaAPI(MastodonAPI):
	"""
	Pleroma/Akkoma client. The REST and streaming surfaces are
	Mastodon-compatible; emoji reactions use Pleroma's own endpoints.
	"""

	flavor = Flavor.PLEROMA

	async def create_emoji_reaction(self, status_id: str, emoji: str) -> Response[Optional[Status]]:
		"""React to a status with a unicode or custom emoji. Requires a token."""
		self._require_token("create_emoji_reaction")
		return await self._request("PUT", self._reaction_path(status_id, emoji), _status_or_none)

	async def delete_emoji_reaction(self, status_id: str, emoji: str) -> Response[Optional[Status]]:
		self._require_token("delete_emoji_reaction")
		return await self._request("DELETE", self._reaction_path(status_id, emoji), _status_or_none)

	@staticmethod
	def _reaction_path(status_id: str, emoji: str) -> str:
		return f"/api/v1/pleroma/statuses/{status_id}/reactions/{quote(emoji, safe='')}"


def _status_or_none(data: Any) -> Optional[Status]:
	if data is None:
		return None
	return Status.from_json(data)
