"""
Detect which server implementation runs at a URL.

Mastodon and Pleroma both serve GET /api/v1/instance; Pleroma adds a
`pleroma` object to it. Misskey only answers POST /api/meta. The instance
endpoint is probed first because some Misskey forks also serve it for
compatibility.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from config import DEFAULT_USER_AGENT
from entities import ProbeResult
from errors import ClassificationError, FediError
from flavor import Flavor
from transport import DEFAULT_TIMEOUT, build_client, send
from util import normalize_base_url

logger = logging.getLogger(__name__)

INSTANCE_PATH = "/api/v1/instance"
META_PATH = "/api/meta"


async def detect_flavor(
	base_url: str,
	user_agent: Optional[str] = None,
	timeout: float = DEFAULT_TIMEOUT,
	transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Flavor:
	"""
	Probe `base_url` and return its Flavor.

	Raises ClassificationError, chained to the meta probe's error, when
	neither endpoint answers as expected.
	"""
	base_url = normalize_base_url(base_url)
	ua = user_agent or DEFAULT_USER_AGENT

	async with build_client(ua, timeout=timeout, transport=transport) as client:
		try:
			res = await send(client, "GET", f"{base_url}{INSTANCE_PATH}", decode=ProbeResult.from_json)
		except FediError as exc:
			logger.debug("Instance probe failed for %s: %s", base_url, exc)
		else:
			flavor = Flavor.PLEROMA if res.json.has_pleroma_marker else Flavor.MASTODON
			logger.info("Detected %s at %s", flavor, base_url)
			return flavor

		try:
			await send(client, "POST", f"{base_url}{META_PATH}", json_body={})
		except FediError as exc:
			raise ClassificationError(f"Could not identify the server at {base_url}: {exc}") from exc

	logger.info("Detected %s at %s", Flavor.MISSKEY, base_url)
	return Flavor.MISSKEY
