import json

import httpx
import pytest

from errors import CredentialRequiredError, ProtocolError
from misskey_api import FAVOURITE_REACTION, MisskeyAPI, MisskeyConverter, MisskeyFrameDecoder
from streaming import EventKind

from helpers import MockServer, make_misskey_note, make_misskey_user


def _api(server: MockServer, token="misskey-token") -> MisskeyAPI:
	return MisskeyAPI("https://misskey.test/", token, transport=server.transport())


@pytest.mark.asyncio
async def test_calls_are_posts_with_token_in_body():
	server = MockServer({("POST", "/api/notes/timeline"): httpx.Response(200, json=[make_misskey_note()])})

	res = await _api(server).get_home_timeline(limit=10, max_id="9old")

	assert res.json[0].content == "hello from misskey"
	assert server.json_body() == {"limit": 10, "untilId": "9old", "i": "misskey-token"}
	assert "authorization" not in server.requests[0].headers


@pytest.mark.asyncio
async def test_public_timeline_without_token_omits_i():
	server = MockServer({("POST", "/api/notes/global-timeline"): httpx.Response(200, json=[])})

	res = await _api(server, token=None).get_public_timeline(only_media=True)

	assert res.json == []
	assert server.json_body() == {"withFiles": True}


@pytest.mark.asyncio
async def test_local_timeline_endpoint():
	server = MockServer({("POST", "/api/notes/local-timeline"): httpx.Response(200, json=[make_misskey_note()])})

	res = await _api(server, token=None).get_local_timeline()

	assert len(res.json) == 1


@pytest.mark.asyncio
async def test_get_instance_converts_meta():
	meta = {
		"name": "Misskey Test",
		"version": "13.14.2",
		"description": "a test server",
		"maintainerEmail": "admin@misskey.test",
		"disableRegistration": True,
		"langs": ["ja"],
		"maxNoteTextLength": 3000,
	}
	server = MockServer({("POST", "/api/meta"): httpx.Response(200, json=meta)})

	res = await _api(server, token=None).get_instance()

	info = res.json
	assert info.title == "Misskey Test"
	assert info.uri == "https://misskey.test"
	assert info.registrations is False
	assert info.max_post_chars == 3000
	assert info.urls.streaming_api == "wss://misskey.test"


@pytest.mark.asyncio
async def test_post_status_maps_visibility_and_unwraps_created_note():
	server = MockServer({
		("POST", "/api/notes/create"): httpx.Response(200, json={"createdNote": make_misskey_note(id="9new", visibility="followers")}),
	})

	res = await _api(server).post_status("hi", visibility="private", spoiler_text="careful")

	assert res.json.id == "9new"
	assert res.json.visibility == "private"
	assert server.json_body() == {"text": "hi", "visibility": "followers", "cw": "careful", "i": "misskey-token"}


@pytest.mark.asyncio
async def test_post_status_rejects_unknown_visibility():
	with pytest.raises(ValueError):
		await _api(MockServer()).post_status("hi", visibility="secret")


@pytest.mark.asyncio
async def test_favourite_is_emulated_with_star_reaction():
	server = MockServer({("POST", "/api/notes/reactions/create"): httpx.Response(204)})

	res = await _api(server).favourite_status("9note1")

	assert res.status == 204
	assert res.json is None
	assert server.json_body() == {"noteId": "9note1", "reaction": FAVOURITE_REACTION, "i": "misskey-token"}


@pytest.mark.asyncio
async def test_emoji_reaction_is_supported():
	server = MockServer({("POST", "/api/notes/reactions/create"): httpx.Response(204)})

	await _api(server).create_emoji_reaction("9note1", ":blob:")

	assert server.json_body()["reaction"] == ":blob:"


@pytest.mark.asyncio
async def test_iter_bookmarks_follows_until_id():
	pages = [
		[{"id": "fav2", "noteId": "n2", "note": make_misskey_note(id="n2")},
		 {"id": "fav1", "noteId": "n1", "note": make_misskey_note(id="n1")}],
		[{"id": "fav0", "noteId": "n0", "note": make_misskey_note(id="n0")}],
		[],
	]
	bodies = []

	def favorites(request):
		bodies.append(json.loads(request.content))
		return httpx.Response(200, json=pages.pop(0))

	server = MockServer({("POST", "/api/i/favorites"): favorites})

	results = [status.id async for status in _api(server).iter_bookmarks(limit=2)]

	assert results == ["n2", "n1", "n0"]
	assert [b.get("untilId") for b in bodies] == [None, "fav1", "fav0"]


@pytest.mark.asyncio
async def test_get_bookmarks_returns_statuses():
	server = MockServer({
		("POST", "/api/i/favorites"): httpx.Response(200, json=[{"id": "fav1", "note": make_misskey_note(id="n1")}]),
	})

	res = await _api(server).get_bookmarks()

	assert [s.id for s in res.json] == ["n1"]


@pytest.mark.asyncio
async def test_notifications_are_mapped_to_mastodon_types():
	notes = [
		{"id": "1", "type": "renote", "createdAt": "2023-05-01T00:00:00Z", "user": make_misskey_user(), "note": make_misskey_note()},
		{"id": "2", "type": "follow", "createdAt": "2023-05-01T00:00:00Z", "user": make_misskey_user()},
		{"id": "3", "type": "app", "createdAt": "2023-05-01T00:00:00Z"},
	]
	server = MockServer({("POST", "/api/i/notifications"): httpx.Response(200, json=notes)})

	res = await _api(server).get_notifications()

	assert [n.type for n in res.json] == ["reblog", "follow", "app"]
	assert res.json[2].account is None


@pytest.mark.asyncio
async def test_authenticated_operation_without_token_fails_before_io():
	server = MockServer()

	with pytest.raises(CredentialRequiredError):
		await _api(server, token=None).unbookmark_status("1")
	with pytest.raises(CredentialRequiredError):
		_api(server, token=None).user_streaming()

	assert server.requests == []


def test_converter_handles_renote_files_and_reactions():
	convert = MisskeyConverter("https://misskey.test")
	inner = make_misskey_note(id="inner", user=make_misskey_user(username="carol", host="remote.example"))
	note = make_misskey_note(
		id="outer",
		text=None,
		renote=inner,
		renoteId="inner",
		myReaction=FAVOURITE_REACTION,
		files=[{"id": "f1", "type": "image/webp", "url": "https://files/1.webp", "thumbnailUrl": "https://files/t1.webp", "isSensitive": True}],
	)

	status = convert.status(note)

	assert status.reblog.id == "inner"
	assert status.reblog.account.acct == "carol@remote.example"
	assert status.url == "https://misskey.test/notes/outer"
	assert status.sensitive is True
	assert status.media_attachments[0].type == "image"
	assert status.favourites_count == 3
	assert status.favourited is True
	assert {r.name: r.me for r in status.emoji_reactions} == {"⭐": True, ":blob:": False}


def test_converter_keeps_quote_text_without_reblog():
	convert = MisskeyConverter("https://misskey.test")

	status = convert.status(make_misskey_note(text="quoting", renote=make_misskey_note(id="q")))

	assert status.reblog is None
	assert status.content == "quoting"


def test_converter_emoji_shapes():
	convert = MisskeyConverter("https://misskey.test")

	assert convert.emojis({"blob": "https://e/blob.png"})[0].shortcode == "blob"
	assert convert.emojis([{"name": "cat", "url": "https://e/cat.png"}])[0].url == "https://e/cat.png"


def test_user_streaming_url_and_channels():
	session = MisskeyAPI("https://misskey.test", "tok").user_streaming()

	assert session.url == "wss://misskey.test/streaming?i=tok"
	channels = [m["body"]["channel"] for m in session.decoder.subscribe_messages()]
	assert channels == ["homeTimeline", "main"]


def test_frame_decoder_channel_events():
	decoder = MisskeyFrameDecoder(["homeTimeline", "main"], MisskeyConverter("https://misskey.test"))
	home_id, main_id = list(decoder.channels)

	note_frame = json.dumps({"type": "channel", "body": {"id": home_id, "type": "note", "body": make_misskey_note(id="n9")}})
	notification_frame = json.dumps({
		"type": "channel",
		"body": {
			"id": main_id,
			"type": "notification",
			"body": {"id": "x", "type": "reaction", "createdAt": "2023-05-01T00:00:00Z", "user": make_misskey_user()},
		},
	})

	[update] = decoder.decode(note_frame)
	[notification] = decoder.decode(notification_frame)

	assert update.kind is EventKind.UPDATE
	assert update.payload.id == "n9"
	assert update.stream == ("homeTimeline",)
	assert notification.kind is EventKind.NOTIFICATION
	assert notification.payload.type == "emoji_reaction"


def test_frame_decoder_ignores_bookkeeping_frames():
	decoder = MisskeyFrameDecoder(["main"], MisskeyConverter("https://misskey.test"))
	[main_id] = list(decoder.channels)

	assert decoder.decode(json.dumps({"type": "noteUpdated", "body": {"id": "n1", "type": "deleted", "body": {}}})) == []
	assert decoder.decode(json.dumps({"type": "connected", "body": {"id": main_id}})) == []
	assert decoder.decode(json.dumps({"type": "channel", "body": {"id": main_id, "type": "unreadNotification", "body": {}}})) == []


@pytest.mark.parametrize(
	"frame",
	[
		"{",
		'{"body": {}}',
		'{"type": "channel"}',
		'{"type": "channel", "body": {"id": "unknown", "type": "note", "body": {}}}',
	],
)
def test_frame_decoder_rejects_malformed_frames(frame):
	decoder = MisskeyFrameDecoder(["main"], MisskeyConverter("https://misskey.test"))

	with pytest.raises(ProtocolError):
		decoder.decode(frame)


def test_frame_decoder_rejects_bad_note_payload():
	decoder = MisskeyFrameDecoder(["localTimeline"], MisskeyConverter("https://misskey.test"))
	[channel_id] = list(decoder.channels)

	with pytest.raises(ProtocolError):
		decoder.decode(json.dumps({"type": "channel", "body": {"id": channel_id, "type": "note", "body": {"id": "1"}}}))
