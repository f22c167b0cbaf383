from __future__ import annotations

from urllib.parse import unquote

import pytest

from storybook.config import Settings
from storybook.services.pollinations import PollinationsImageService, encode_prompt, truncate_encoded
from storybook.services.providers import ImageParams


def _settings(**kwargs) -> Settings:
    return Settings(database_url="sqlite+aiosqlite:///:memory:", **kwargs)


def test_encode_prompt_matches_uri_component_rules():
    assert encode_prompt("a cat, (happy)!") == "a%20cat%2C%20(happy)!"
    assert encode_prompt("é") == "%C3%A9"


def test_truncate_encoded_never_splits_multibyte_sequences():
    result = truncate_encoded("ééé", 8)
    assert result == "%C3%A9"


def test_truncate_encoded_prefers_last_space():
    assert truncate_encoded("hello wonderful world", 14) == "hello"


def test_truncate_encoded_keeps_word_when_stopping_on_space():
    assert truncate_encoded("ab cd ef", 9) == "ab%20cd"


def test_truncate_encoded_without_space_cuts_at_char_boundary():
    assert truncate_encoded("héllo wörld", 10) == "h%C3%A9llo"


def test_truncate_encoded_no_truncation_needed():
    assert truncate_encoded("short", 100) == "short"
    assert truncate_encoded("anything", 0) == ""


def test_build_url_short_prompt():
    service = PollinationsImageService(_settings())
    url = service.build_url("a  cat\nin a hat", ImageParams())
    assert url == (
        "https://image.pollinations.ai/prompt/a%20cat%20in%20a%20hat"
        "?width=1024&height=1024&nologo=true&enhance=true"
    )


@pytest.mark.parametrize("word", ["castle", "城堡", "café"])
def test_build_url_truncates_long_prompts_within_limit(word):
    settings = _settings(fallback_max_url_length=500)
    service = PollinationsImageService(settings)
    prompt = " ".join([word] * 400)

    url = service.build_url(prompt, ImageParams(width=512, height=768))

    assert len(url) <= 500
    assert url.endswith("?width=512&height=768&nologo=true&enhance=true")
    encoded = url[len(settings.fallback_base_url) : url.index("?")]
    decoded = unquote(encoded, errors="strict")
    assert prompt.startswith(decoded)
    assert decoded.endswith(word)


@pytest.mark.asyncio
async def test_synthesize_image_returns_url_without_request():
    service = PollinationsImageService(_settings())
    url = await service.synthesize_image("sunny meadow", ImageParams())
    assert url.startswith("https://image.pollinations.ai/prompt/sunny%20meadow?")
