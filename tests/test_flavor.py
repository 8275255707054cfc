import pytest

from flavor import Flavor


@pytest.mark.parametrize("flavor", list(Flavor))
def test_token_round_trip(flavor):
	assert Flavor.parse(str(flavor)) is flavor


@pytest.mark.parametrize("token", ["Mastodon", "MISSKEY", " pleroma", "akkoma", "", "auto"])
def test_unknown_tokens_are_rejected(token):
	with pytest.raises(ValueError):
		Flavor.parse(token)
