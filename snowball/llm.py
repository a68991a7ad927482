"""
LLM gateway used by the analysis and content pipelines.

OpenAI is the default provider; setting LLM_PROVIDER=anthropic routes the same
calls to Claude.
"""

import json
import re
from typing import Any, Optional

import anthropic
import structlog
from fastapi import HTTPException
from openai import AsyncOpenAI

from snowball import config

logger = structlog.get_logger()

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

_openai_client: Optional[AsyncOpenAI] = None
_anthropic_client: Optional[anthropic.AsyncAnthropic] = None


class LLMResponseError(ValueError):
    """The model answered with something that could not be parsed"""


def get_openai_client() -> AsyncOpenAI:
    global _openai_client
    if _openai_client is None:
        if not config.OPENAI_API_KEY:
            raise HTTPException(status_code=500, detail="OpenAI API key not configured")
        _openai_client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
    return _openai_client


def get_anthropic_client() -> anthropic.AsyncAnthropic:
    global _anthropic_client
    if _anthropic_client is None:
        if not config.ANTHROPIC_API_KEY:
            raise HTTPException(status_code=500, detail="Anthropic API key not configured")
        _anthropic_client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
    return _anthropic_client


async def complete(
    prompt: str,
    *,
    system: Optional[str] = None,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    json_mode: bool = False,
) -> str:
    """Run one chat completion and return the assistant text"""
    if config.LLM_PROVIDER == "anthropic":
        client = get_anthropic_client()
        params = {
            "model": model if model and model.startswith("claude") else config.DEFAULT_ANTHROPIC_MODEL,
            "max_tokens": max_tokens or 2048,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system
        if temperature is not None:
            params["temperature"] = temperature
        response = await client.messages.create(**params)
        return response.content[0].text

    client = get_openai_client()
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    params = {"model": model or config.DEFAULT_OPENAI_MODEL, "messages": messages}
    if max_tokens:
        params["max_tokens"] = max_tokens
    if temperature is not None:
        params["temperature"] = temperature
    if json_mode:
        params["response_format"] = {"type": "json_object"}

    response = await client.chat.completions.create(**params)
    return response.choices[0].message.content or ""


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json fence and the trailing ``` if present"""
    return _FENCE_RE.sub("", text or "").strip()


def parse_json(text: str) -> Any:
    """
    Parse a JSON document out of a model answer.
    Fences are stripped first; failing a direct parse, the first object or array is used.
    """
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    match = re.search(r"(\{[\s\S]*\}|\[[\s\S]*\])", cleaned)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass
    raise LLMResponseError("Failed to parse JSON from AI response")
