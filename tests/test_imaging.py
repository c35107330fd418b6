import asyncio
import base64
from types import SimpleNamespace

import pytest
from google.genai import types

from snapedit.imaging.data_urls import detect_mime_type, ensure_data_url, split_data_url
from snapedit.imaging.synthesis import GeminiImageSynthesizer
from tests.conftest import ORIGINAL

PNG = b"\x89PNG\r\n\x1a\n pixels"


class FakeModels:
    def __init__(self, response):
        self.response = response
        self.requests: list[dict] = []

    async def generate_content(self, **kwargs):
        self.requests.append(kwargs)
        return self.response


def fake_client(response) -> SimpleNamespace:
    return SimpleNamespace(aio=SimpleNamespace(models=FakeModels(response)))


def image_response(data, mime_type="image/png"):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


def test_split_data_url():
    mime, data = split_data_url(ORIGINAL)
    assert mime == "image/jpeg"
    assert data.startswith(b"\xff\xd8\xff")

    mime, data = split_data_url(base64.b64encode(PNG).decode())
    assert mime == "image/jpeg"
    assert data == PNG

    with pytest.raises(ValueError):
        split_data_url("data:text/plain,hello")


def test_ensure_data_url_and_mime_detection():
    assert ensure_data_url(ORIGINAL) == ORIGINAL
    assert ensure_data_url("abc") == "data:image/jpeg;base64,abc"
    assert detect_mime_type(PNG) == "image/png"
    assert detect_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8") == "image/webp"


def test_edit_sends_images_then_instruction():
    client = fake_client(image_response(PNG))
    synthesizer = GeminiImageSynthesizer(client=client, model="image-model")

    result = asyncio.run(synthesizer.edit([ORIGINAL, ORIGINAL], "add snow", "4:5"))

    assert result == "data:image/png;base64," + base64.b64encode(PNG).decode()
    request = client.aio.models.requests[0]
    assert request["model"] == "image-model"
    parts = request["contents"][0].parts
    assert [p.text for p in parts] == [None, None, "add snow"]
    assert parts[0].inline_data.mime_type == "image/jpeg"
    config = request["config"]
    assert isinstance(config, types.GenerateContentConfig)
    assert config.image_config.aspect_ratio == "4:5"


def test_edit_accepts_base64_text_payload():
    encoded = base64.b64encode(PNG).decode()
    synthesizer = GeminiImageSynthesizer(client=fake_client(image_response(encoded)), model="m")

    result = asyncio.run(synthesizer.edit([ORIGINAL], "x"))

    assert result.endswith(encoded)


def test_edit_without_image_returns_none():
    empty = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[]))])
    synthesizer = GeminiImageSynthesizer(client=fake_client(empty), model="m")

    assert asyncio.run(synthesizer.edit([ORIGINAL], "x")) is None
    with pytest.raises(ValueError):
        asyncio.run(synthesizer.edit([], "x"))
