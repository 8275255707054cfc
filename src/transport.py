"""
HTTP plumbing shared by adapters and the detector.

Each call opens its own short-lived httpx.AsyncClient, so adapters carry no
mutable connection state between calls.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from errors import ResponseError, TransportError
from response import Response
from util import redact_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


def build_client(
	user_agent: str,
	access_token: Optional[str] = None,
	timeout: float = DEFAULT_TIMEOUT,
	transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
	"""
	Client with the User-Agent and, when a token is given, the bearer
	Authorization header preset.
	"""
	headers = {"User-Agent": user_agent}
	if access_token:
		headers["Authorization"] = f"Bearer {access_token}"
	return httpx.AsyncClient(
		headers=headers,
		timeout=timeout,
		transport=transport,
		follow_redirects=True,
	)


async def send(
	client: httpx.AsyncClient,
	method: str,
	url: str,
	*,
	decode: Optional[Callable[[Any], Any]] = None,
	params: Optional[Mapping[str, Any]] = None,
	json_body: Any = None,
) -> Response:
	"""
	Perform one request and wrap the result in a Response envelope.

	Transport failures raise TransportError, non-2xx statuses raise
	ResponseError, bodies of the wrong shape raise DecodeError.
	"""
	request = client.build_request(method, url, params=_clean(params), json=json_body)
	logger.debug("HTTP %s %s", method, redact_url(url))

	try:
		response = await client.send(request, stream=True)
	except httpx.HTTPError as exc:
		raise TransportError(f"{method} {redact_url(url)} failed: {exc}") from exc

	try:
		if response.is_error:
			await _raise_response_error(method, url, response)
		return await Response.from_transport(response, decode)
	finally:
		await response.aclose()


async def _raise_response_error(method: str, url: str, response: httpx.Response) -> None:
	status = response.status_code
	status_text = response.reason_phrase
	headers = httpx.Headers(response.headers)
	try:
		body = await response.aread()
	except httpx.HTTPError:
		body = b""

	message = _error_message(body)
	logger.debug("HTTP %s %s -> %d %s", method, redact_url(url), status, message or status_text)
	raise ResponseError(
		f"HTTP {status} {status_text} for {method} {redact_url(url)}" + (f": {message}" if message else ""),
		status,
		status_text,
		headers,
		error=message,
	)


def _error_message(body: bytes) -> Optional[str]:
	"""
	Pull the human-readable error out of a Mastodon ({"error": "..."}) or
	Misskey ({"error": {"message": "..."}}) error body.
	"""
	try:
		data = json.loads(body)
	except ValueError:
		return None
	if not isinstance(data, dict):
		return None
	error = data.get("error")
	if isinstance(error, dict):
		return error.get("message") or error.get("code")
	if isinstance(error, str):
		return error
	return None


def _clean(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
	if params is None:
		return None
	return {k: v for k, v in params.items() if v is not None}
