import httpx
import pytest

from errors import CredentialRequiredError
from pleroma_api import PleromaAPI

from helpers import MockServer, make_status


def _api(server: MockServer, token="pleroma-token") -> PleromaAPI:
	return PleromaAPI("https://pleroma.test", token, transport=server.transport())


@pytest.mark.asyncio
async def test_create_reaction_uses_pleroma_endpoint():
	reacted = make_status(pleroma={"emoji_reactions": [{"name": "🔥", "count": 1, "me": True}]})
	server = MockServer({
		("PUT", "/api/v1/pleroma/statuses/s1/reactions/🔥"): httpx.Response(200, json=reacted),
	})

	res = await _api(server).create_emoji_reaction("s1", "🔥")

	request = server.requests[0]
	assert request.method == "PUT"
	assert request.url.raw_path == b"/api/v1/pleroma/statuses/s1/reactions/%F0%9F%94%A5"
	assert request.headers["authorization"] == "Bearer pleroma-token"
	assert res.json.emoji_reactions[0].name == "🔥"
	assert res.json.emoji_reactions[0].me is True


@pytest.mark.asyncio
async def test_delete_reaction_quotes_custom_emoji():
	server = MockServer({
		("DELETE", "/api/v1/pleroma/statuses/s1/reactions/:blob:"): httpx.Response(200, json=make_status()),
	})

	res = await _api(server).delete_emoji_reaction("s1", ":blob:")

	assert server.requests[0].url.raw_path == b"/api/v1/pleroma/statuses/s1/reactions/%3Ablob%3A"
	assert res.json.id == "status-1"


@pytest.mark.asyncio
async def test_reaction_with_empty_body_returns_none():
	server = MockServer({("PUT", "/api/v1/pleroma/statuses/s1/reactions/👍"): httpx.Response(200)})

	res = await _api(server).create_emoji_reaction("s1", "👍")

	assert res.json is None


@pytest.mark.asyncio
async def test_reaction_requires_token():
	server = MockServer()

	with pytest.raises(CredentialRequiredError):
		await _api(server, token=None).create_emoji_reaction("s1", "👍")

	assert server.requests == []


@pytest.mark.asyncio
async def test_inherits_mastodon_timelines():
	server = MockServer({("GET", "/api/v1/timelines/public"): httpx.Response(200, json=[make_status()])})

	res = await _api(server, token=None).get_local_timeline()

	assert res.json[0].id == "status-1"
	assert server.requests[0].url.params["local"] == "true"
