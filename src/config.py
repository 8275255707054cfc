from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import yaml

from humanfriendly import InvalidTimespan, parse_timespan

from backoff import BackoffPolicy
from flavor import Flavor
from util import normalize_base_url


DEFAULT_USER_AGENT = "fedigate/1.0"


def _ensure_quantity_expression(expr: str) -> str:
	"""Add a default quantity when a human-friendly duration is missing one."""
	expr = expr.strip()
	if not expr:
		raise ValueError("empty delay expression")
	if any(ch.isdigit() for ch in expr):
		return expr
	return f"1 {expr}"


def _parse_delay_value(value: str | int | float) -> float:
	"""
	Parse a human-friendly delay specification.
	Supported forms:
	- numeric seconds (int/float)
	- strings like "5 seconds", "2 minutes", "500 milliseconds"
	"""

	if isinstance(value, bool):
		raise TypeError("Boolean is not a valid duration")

	if isinstance(value, (int, float)):
		if value <= 0:
			raise ValueError("delay must be positive")
		return float(value)

	if isinstance(value, str):
		text = value.strip()
		if not text:
			raise ValueError("empty delay string")

		try:
			seconds = parse_timespan(_ensure_quantity_expression(text))
		except InvalidTimespan as exc:
			raise ValueError(f"invalid duration: {value!r}") from exc
		if seconds <= 0:
			raise ValueError("delay must be positive")
		return seconds

	raise TypeError(f"Unsupported delay value type: {type(value)!r}")


def _parse_flavor(value) -> Flavor | None:
	"""Accept a flavor token, or None/"auto" to request detection."""
	if value is None:
		return None
	text = str(value).strip()
	if not text or text == "auto":
		return None
	return Flavor.parse(text)


###############################################################################
# Per-instance configuration
###############################################################################

@dataclass
class InstanceConfig:
	"""
	A fediverse server to talk to.
	"""

	name: str                           # identifier
	base_url: str                       # instance URL
	access_token: str | None = None     # API key/token; None for public reads
	flavor: Flavor | None = None        # None: detect on first use
	user_agent: str | None = None       # overrides http.useragent

	def __post_init__(self):
		self.base_url = normalize_base_url(self.base_url)
		if not self.base_url:
			raise ValueError(f"instance {self.name!r} has no base_url")


###############################################################################
# HTTP config
###############################################################################

@dataclass
class HttpConfig:
	timeout_seconds: float = 15.0
	user_agent: str = DEFAULT_USER_AGENT


###############################################################################
# Streaming config
###############################################################################

@dataclass
class StreamingConfig:
	backoff_seconds: float = 1.0        # delay before the first reconnect
	max_backoff_seconds: float = 60.0   # upper bound on the delay
	factor: float = 2.0                 # growth per attempt
	max_retries: int = 5                # reconnect attempts before giving up

	def policy(self) -> BackoffPolicy:
		return BackoffPolicy(
			base_delay=self.backoff_seconds,
			factor=self.factor,
			max_delay=self.max_backoff_seconds,
			max_retries=self.max_retries,
		)


###############################################################################
# Global config root
###############################################################################

@dataclass
class GlobalConfig:
	http: HttpConfig = field(default_factory=HttpConfig)
	streaming: StreamingConfig = field(default_factory=StreamingConfig)

	# multiple server configs
	instances: list[InstanceConfig] = field(default_factory=list)

	config_file: Path | None = None

	def find_instance(self, name: str) -> InstanceConfig:
		for inst in self.instances:
			if inst.name == name:
				return inst
		raise KeyError(f"No instance named {name!r} in config")


###############################################################################
# Loader
###############################################################################

def load_config(path: str | Path) -> GlobalConfig:
	"""
	Read a YAML configuration file and return a populated GlobalConfig.

	The loader handles the http, streaming and instances sections and parses
	duration expressions and flavor tokens.
	"""
	p = Path(path)
	if not p.exists():
		raise FileNotFoundError(f"Config file not found: {p}")

	with p.open("r", encoding="utf-8") as f:
		raw = yaml.safe_load(f) or {}

	cfg = GlobalConfig()
	cfg.config_file = p

	# --- http ---------------------------------------------------------
	if "http" in raw:
		r = raw["http"] or {}
		if "timeout" in r:
			cfg.http.timeout_seconds = _parse_delay_value(r["timeout"])
		if "useragent" in r:
			cfg.http.user_agent = r["useragent"]

	# --- streaming ----------------------------------------------------
	if "streaming" in raw:
		r = raw["streaming"] or {}
		if "backoff" in r:
			cfg.streaming.backoff_seconds = _parse_delay_value(r["backoff"])
		if "max_backoff" in r:
			cfg.streaming.max_backoff_seconds = _parse_delay_value(r["max_backoff"])
		if "factor" in r:
			cfg.streaming.factor = float(r["factor"])
		if "max_retries" in r:
			cfg.streaming.max_retries = int(r["max_retries"])
		if cfg.streaming.max_backoff_seconds < cfg.streaming.backoff_seconds:
			raise ValueError("streaming.max_backoff must not be shorter than streaming.backoff")
		# validate the combination early
		cfg.streaming.policy()

	# --- instances ----------------------------------------------------
	if "instances" in raw:
		insts = []
		for entry in raw["instances"] or []:
			insts.append(
				InstanceConfig(
					name=entry["name"],
					base_url=entry["base_url"],
					access_token=entry.get("access_token"),
					flavor=_parse_flavor(entry.get("flavor")),
					user_agent=entry.get("useragent") or entry.get("user_agent"),
				)
			)
		cfg.instances = insts

	return cfg
