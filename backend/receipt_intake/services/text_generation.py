"""Client for the generative text service (OpenAI Chat Completions).

The pipeline only needs "prompt in, text out" plus token accounting, so
this wrapper exposes exactly that.  Structured callers use
``generate_json`` which tolerates the markdown code fences models like to
wrap JSON in.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from receipt_intake.core.config import settings
from receipt_intake.core.errors import GenerationError, InvalidStructuredResponse
from receipt_intake.models.schemas import GenerationResult, TokenUsage

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) fence if present."""
    if not text:
        return ""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_json_payload(text: str) -> Any:
    """Parse model output as JSON after stripping code fences."""
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except (TypeError, ValueError) as exc:
        raise InvalidStructuredResponse(f"Model returned invalid JSON: {exc}") from exc


class GenerativeTextClient:
    """Thin async wrapper around ``AsyncOpenAI`` chat completions."""

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model or settings.EXTRACTION_MODEL
        self._api_key = api_key or settings.OPENAI_API_KEY
        self._base_url = base_url or settings.OPENAI_BASE_URL
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise GenerationError("OPENAI_API_KEY is not configured")
            kwargs: dict[str, Any] = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def generate(self, prompt: str, temperature: float = 0.1, max_tokens: int = 1024) -> GenerationResult:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise GenerationError(f"Generative text service error: {exc}") from exc

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        if not text.strip():
            raise GenerationError("Generative text service returned no content")

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
            logger.info(
                "[generation] model=%s prompt_tokens=%d completion_tokens=%d total_tokens=%d",
                response.model or self.model,
                usage.prompt_tokens,
                usage.completion_tokens,
                usage.total_tokens,
            )
        return GenerationResult(text=text, usage=usage, model=response.model or self.model)

    async def generate_json(self, prompt: str, temperature: float = 0.1, max_tokens: int = 1024) -> Any:
        result = await self.generate(prompt, temperature=temperature, max_tokens=max_tokens)
        return parse_json_payload(result.text)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
