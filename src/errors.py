"""
Error types raised by clients, the detector and streaming sessions.
"""

from __future__ import annotations

from typing import Mapping, Optional


class FediError(Exception):
	"""Base class for every error raised by this library."""


class TransportError(FediError):
	"""Network failure, timeout or dropped connection."""


class HTTPMetadataError(FediError):
	"""Error that keeps the status line and headers of an HTTP response."""

	def __init__(self, message: str, status: int, status_text: str, headers: Mapping[str, str]):
		super().__init__(message)
		self.status = status
		self.status_text = status_text
		self.headers = headers


class ResponseError(HTTPMetadataError):
	"""The server answered with a non-2xx status."""

	def __init__(
		self,
		message: str,
		status: int,
		status_text: str,
		headers: Mapping[str, str],
		error: Optional[str] = None,
	):
		super().__init__(message, status, status_text, headers)
		self.error = error


class DecodeError(HTTPMetadataError):
	"""
	The body did not match the expected shape.

	Status and headers captured before the body was read are always kept, so
	callers can still look at rate-limit or pagination headers.
	"""

	def __init__(
		self,
		message: str,
		status: int,
		status_text: str,
		headers: Mapping[str, str],
		body: str = "",
	):
		super().__init__(message, status, status_text, headers)
		self.body = body


class ClassificationError(FediError):
	"""Neither detection probe identified the server."""


class UnsupportedOperationError(FediError):
	"""The backend cannot perform the requested capability."""

	def __init__(self, flavor, operation: str):
		super().__init__(f"{operation} is not supported by {flavor}")
		self.flavor = flavor
		self.operation = operation


class CredentialRequiredError(FediError):
	"""An authenticated operation was called on a client without a token."""

	def __init__(self, operation: str):
		super().__init__(f"{operation} requires an access token")
		self.operation = operation


class ProtocolError(FediError):
	"""A streaming frame was malformed or of an unexpected type."""


class StreamingFatalError(FediError):
	"""The streaming session gave up reconnecting and is closed."""

	def __init__(self, message: str, attempts: int):
		super().__init__(message)
		self.attempts = attempts
