"""Gemini client wrapper tests"""
import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from google.genai import errors as genai_errors

from kitchen_ai.core.errors import UpstreamError
from kitchen_ai.services.llm_client import (
    extract_json, generate_recipe_json, open_chat_stream, to_contents
)


def api_error(code):
    return genai_errors.APIError(code, {"error": {"code": code, "message": "upstream said no", "status": "UNAVAILABLE"}})


@pytest.fixture
def genai_client():
    client = Mock()
    with patch("kitchen_ai.services.llm_client.get_genai_client", return_value=client):
        yield client


@pytest.mark.high
class TestExtractJson:
    def test_fenced_block(self):
        text = 'Aquí está:\n```json\n{"name": "Guiso", "tags": ["invierno"]}\n```\n¡Buen provecho!'
        assert extract_json(text) == '{"name": "Guiso", "tags": ["invierno"]}'

    def test_braces_inside_strings(self):
        text = '{"name": "Salsa {picante}", "nutrition": {"calories": 120}} y algo más }'
        assert extract_json(text) == '{"name": "Salsa {picante}", "nutrition": {"calories": 120}}'

    def test_escaped_quote_inside_string(self):
        text = '{"description": "El \\"mejor\\" flan"}'
        assert extract_json(text) == text

    def test_no_object(self):
        with pytest.raises(ValueError):
            extract_json("Lo siento, no puedo ayudar con eso.")

    def test_unclosed_object(self):
        with pytest.raises(ValueError):
            extract_json('{"name": "Torta"')


@pytest.mark.high
class TestRecipeGeneration:
    def test_parses_reply(self, genai_client):
        genai_client.models.generate_content.return_value = Mock(text='```json\n{"name": "Milanesa"}\n```')

        assert generate_recipe_json("prompt") == {"name": "Milanesa"}

        kwargs = genai_client.models.generate_content.call_args.kwargs
        assert kwargs["contents"].startswith("Eres un chef experto.")
        assert kwargs["contents"].endswith("prompt")
        assert kwargs["config"].temperature == 0.8

    def test_invalid_json(self, genai_client):
        genai_client.models.generate_content.return_value = Mock(text='{"name": "Milanesa",}')
        with pytest.raises(ValueError):
            generate_recipe_json("prompt")

    def test_non_object_json(self, genai_client):
        genai_client.models.generate_content.return_value = Mock(text="[1, 2, 3]")
        with pytest.raises(ValueError):
            generate_recipe_json("prompt")

    def test_provider_error(self, genai_client):
        genai_client.models.generate_content.side_effect = api_error(503)
        with pytest.raises(UpstreamError) as exc_info:
            generate_recipe_json("prompt")
        assert exc_info.value.provider == "gemini"
        assert exc_info.value.upstream_status == 503

    def test_transport_error(self, genai_client):
        genai_client.models.generate_content.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(UpstreamError) as exc_info:
            generate_recipe_json("prompt")
        assert exc_info.value.upstream_status is None


@pytest.mark.medium
class TestChatStream:
    def test_contents_roles(self):
        contents = to_contents([
            {"role": "user", "content": "Hola"},
            {"role": "assistant", "content": "¡Hola! ¿Qué cocinamos?"},
        ])
        assert [c.role for c in contents] == ["user", "model"]
        assert contents[1].parts[0].text == "¡Hola! ¿Qué cocinamos?"

    def test_yields_text_deltas(self, genai_client):
        async def chunks():
            for text in ("Ho", None, "la"):
                yield Mock(text=text)

        genai_client.aio.models.generate_content_stream = AsyncMock(return_value=chunks())

        async def run():
            deltas = await open_chat_stream("system", [{"role": "user", "content": "hola"}])
            return [text async for text in deltas]

        assert asyncio.run(run()) == ["Ho", "la"]
        config = genai_client.aio.models.generate_content_stream.call_args.kwargs["config"]
        assert config.system_instruction == "system"

    def test_rate_limit_raised_before_streaming(self, genai_client):
        genai_client.aio.models.generate_content_stream = AsyncMock(side_effect=api_error(429))

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(open_chat_stream("system", [{"role": "user", "content": "hola"}]))
        assert exc_info.value.upstream_status == 429

    def test_transport_error_before_streaming(self, genai_client):
        genai_client.aio.models.generate_content_stream = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(UpstreamError):
            asyncio.run(open_chat_stream("system", [{"role": "user", "content": "hola"}]))
