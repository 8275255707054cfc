from enum import Enum


class Flavor(str, Enum):
	"""
	Server implementation a client talks to.

	The value is the canonical lowercase token used in config files and on the
	command line.
	"""

	MASTODON = "mastodon"
	PLEROMA = "pleroma"
	MISSKEY = "misskey"

	@classmethod
	def parse(cls, token: str) -> "Flavor":
		"""
		Parse a flavor token. Only the exact lowercase tokens are accepted;
		anything else raises ValueError instead of falling back to a default.
		"""
		for flavor in cls:
			if flavor.value == token:
				return flavor
		raise ValueError(f"Unknown flavor: {token!r}")

	def __str__(self) -> str:
		return self.value
