"""
Service-agnostic API factory.

Each flavor maps to one adapter class; flavors without a dedicated adapter
fall back to the Mastodon client.
"""

from __future__ import annotations

from typing import Dict, Optional, Type

from config import GlobalConfig, InstanceConfig
from detector import detect_flavor
from flavor import Flavor
from interfaces import FediverseClient
from mastodon_api import MastodonAPI
from misskey_api import MisskeyAPI
from pleroma_api import PleromaAPI

DEFAULT_ADAPTER = MastodonAPI

_ADAPTERS: Dict[Flavor, Type] = {
	Flavor.MASTODON: MastodonAPI,
	Flavor.PLEROMA: PleromaAPI,
	Flavor.MISSKEY: MisskeyAPI,
}


def generator(
	flavor: Flavor,
	base_url: str,
	access_token: Optional[str] = None,
	user_agent: Optional[str] = None,
	**options,
) -> FediverseClient:
	"""
	Build the client for `flavor`. Performs no I/O and does not validate
	the URL or token; problems surface on the first call.

	Extra keyword options (timeout, transport, streaming_policy, ...) are
	passed to the adapter.
	"""
	adapter = _ADAPTERS.get(flavor, DEFAULT_ADAPTER)
	return adapter(base_url, access_token, user_agent, **options)


class APIFactory:
	@staticmethod
	def from_instance(inst: InstanceConfig, config: Optional[GlobalConfig] = None) -> FediverseClient:
		"""
		Build an API client for the given instance. An instance without a
		configured flavor gets the default adapter; use `detect` to probe it.
		"""
		config = config or GlobalConfig()
		return generator(
			inst.flavor or Flavor.MASTODON,
			inst.base_url,
			inst.access_token,
			inst.user_agent or config.http.user_agent,
			timeout=config.http.timeout_seconds,
			streaming_policy=config.streaming.policy(),
		)

	@staticmethod
	async def detect(inst: InstanceConfig, config: Optional[GlobalConfig] = None, **probe_options) -> FediverseClient:
		"""
		Like `from_instance`, but probes the server first when the config
		leaves the flavor unset. The detected flavor is stored on `inst`.
		"""
		config = config or GlobalConfig()
		if inst.flavor is None:
			inst.flavor = await detect_flavor(
				inst.base_url,
				user_agent=inst.user_agent or config.http.user_agent,
				timeout=config.http.timeout_seconds,
				**probe_options,
			)
		return APIFactory.from_instance(inst, config)
