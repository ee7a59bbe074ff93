"""Gemini access for recipe generation and chat streaming"""
import json
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from kitchen_ai.core.config import settings
from kitchen_ai.core.errors import ConfigurationError, UpstreamError
from kitchen_ai.core.metrics import llm_requests_counter

logger = logging.getLogger(__name__)

RECIPE_PREAMBLE = "Eres un chef experto. Responde SOLO con JSON válido.\n\n"

_client: Optional[genai.Client] = None


def get_genai_client() -> genai.Client:
    """Lazily build the shared Gemini client"""
    global _client
    if _client is None:
        if not settings.GEMINI_API_KEY:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        _client = genai.Client(api_key=settings.GEMINI_API_KEY)
    return _client


def _upstream_error(kind: str, e: Exception) -> UpstreamError:
    """Map a provider or transport failure to UpstreamError; transport errors carry no status"""
    status = e.code if isinstance(e, genai_errors.APIError) else None
    logger.error(f"Gemini {kind} request failed ({status or type(e).__name__}): {e}")
    llm_requests_counter.labels(kind=kind, outcome="rate_limited" if status == 429 else "error").inc()
    return UpstreamError("Error del servicio de IA", provider="gemini", upstream_status=status)


def extract_json(text: str) -> str:
    """Return the first complete JSON object in a model response

    Markdown fences and surrounding prose are ignored. Raises ValueError when
    no balanced object is found.
    """
    cleaned = re.sub(r'```(?:json)?\s*', '', text or '')
    cleaned = cleaned.replace('`', '').strip()

    start = cleaned.find('{')
    if start == -1:
        raise ValueError("No JSON object found in model response")

    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(cleaned[start:], start):
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return cleaned[start:i + 1]

    raise ValueError("Model response contains an unclosed JSON object")


def generate_recipe_json(prompt: str) -> Dict[str, Any]:
    """One non-streaming call; returns the parsed recipe object

    Raises UpstreamError on provider failures and ValueError when the reply
    holds no parseable JSON.
    """
    client = get_genai_client()
    try:
        response = client.models.generate_content(
            model=settings.GEMINI_MEAL_MODEL,
            contents=RECIPE_PREAMBLE + prompt,
            config=types.GenerateContentConfig(
                temperature=settings.MEAL_TEMPERATURE,
                max_output_tokens=settings.MEAL_MAX_OUTPUT_TOKENS,
            ),
        )
    except (genai_errors.APIError, httpx.HTTPError) as e:
        raise _upstream_error("recipe", e)

    try:
        recipe = json.loads(extract_json(response.text))
    except (ValueError, json.JSONDecodeError) as e:
        llm_requests_counter.labels(kind="recipe", outcome="invalid_json").inc()
        raise ValueError(f"Invalid JSON response from model: {e}")

    if not isinstance(recipe, dict):
        llm_requests_counter.labels(kind="recipe", outcome="invalid_json").inc()
        raise ValueError("Model response is not a JSON object")

    llm_requests_counter.labels(kind="recipe", outcome="success").inc()
    return recipe


def to_contents(messages: List[Dict[str, str]]) -> List[types.Content]:
    """Chat messages ({role, content}) to Gemini contents; assistant maps to model"""
    return [
        types.Content(
            role="model" if message.get("role") == "assistant" else "user",
            parts=[types.Part(text=message.get("content") or "")],
        )
        for message in messages
    ]


async def open_chat_stream(system_prompt: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
    """Start a streaming chat completion and return an iterator of text deltas

    The request is made before returning, so provider errors (including 429)
    surface here as UpstreamError rather than mid-stream.
    """
    client = get_genai_client()
    try:
        stream = await client.aio.models.generate_content_stream(
            model=settings.GEMINI_CHAT_MODEL,
            contents=to_contents(messages),
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=settings.CHAT_TEMPERATURE,
                max_output_tokens=settings.CHAT_MAX_OUTPUT_TOKENS,
            ),
        )
    except (genai_errors.APIError, httpx.HTTPError) as e:
        raise _upstream_error("chat", e)

    llm_requests_counter.labels(kind="chat", outcome="success").inc()
    return _text_deltas(stream)


async def _text_deltas(stream) -> AsyncIterator[str]:
    try:
        async for chunk in stream:
            text = chunk.text
            if text:
                yield text
    except (genai_errors.APIError, httpx.HTTPError) as e:
        logger.error(f"Gemini chat stream interrupted: {e}")
        llm_requests_counter.labels(kind="chat", outcome="interrupted").inc()
