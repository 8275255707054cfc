from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
	"""
	Reconnect schedule for streaming sessions.

	Attempt numbers start at 1. The delay doubles (by default) with every
	attempt and is capped at max_delay. A session gives up once the attempt
	count goes past max_retries.
	"""

	base_delay: float = 1.0
	factor: float = 2.0
	max_delay: float = 60.0
	max_retries: int = 5

	def __post_init__(self):
		if self.base_delay < 0:
			raise ValueError("base_delay must not be negative")
		if self.factor < 1:
			raise ValueError("factor must be at least 1")
		if self.max_retries < 0:
			raise ValueError("max_retries must not be negative")

	def delay(self, attempt: int) -> float:
		"""Seconds to wait before the given reconnect attempt."""
		if attempt < 1:
			raise ValueError("attempt starts at 1")
		return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

	def exhausted(self, attempt: int) -> bool:
		"""True when the given attempt is beyond the retry budget."""
		return attempt > self.max_retries
