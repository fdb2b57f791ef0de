"""
OpenAI vision provider — the SECONDARY (fallback) adapter.

gpt-4o is asked for a json_object response, but fallback traffic is exactly
the odd cases (blurry labels, partial packs) where it tends to answer with
informal JSON: single quotes, bare keys, trailing commas. So a strict decode
failure is followed by the lenient (repair-then-parse) decode.

Pricing (as of early 2025):
  gpt-4o:       $2.50 / 1M input tokens,  $10.00 / 1M output tokens
  gpt-4o-mini:  $0.15 / 1M input tokens,  $0.60 / 1M output tokens
  detail=low images are a flat 85 tokens.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time

import openai

from errors import ProviderMalformedResponse, ProviderTimeout, ProviderUnavailable
from providers.base import (
    MULTI_SYSTEM_PROMPT, SYSTEM_PROMPT,
    ProviderResult, VisionProvider,
    build_multi_user_prompt, build_user_prompt, detect_media_type,
    items_from_payload, lenient_decode, parse_json_response, result_from_payload,
)

logger = logging.getLogger(__name__)

_PRICING = {
    "gpt-4o":      (0.0025,  0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
}

_DEFAULT_CONFIDENCE = 0.9


class OpenAIProvider(VisionProvider):

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        timeout: float = 25.0,
        multi_timeout: float = 45.0,
    ):
        self.name          = "openai"
        self.model_id      = model
        self.timeout       = timeout
        self.multi_timeout = multi_timeout
        # max_retries=0: fallback/retry policy belongs to the orchestrator
        self._client = openai.AsyncOpenAI(api_key=api_key, max_retries=0)

        self.cost_per_1k_input_tokens, self.cost_per_1k_output_tokens = _PRICING.get(
            model, _PRICING["gpt-4o"]
        )
        self.cost_per_image = 85 / 1000 * self.cost_per_1k_input_tokens

    async def _complete(
        self,
        image_bytes: bytes,
        system_prompt: str,
        user_prompt: str,
        detail: str,
        max_tokens: int,
        timeout: float,
    ):
        b64 = base64.b64encode(image_bytes).decode()
        media_type = detect_media_type(image_bytes)
        try:
            return await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model_id,
                    max_tokens=max_tokens,
                    temperature=0.1,
                    top_p=0.2,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": user_prompt},
                                {
                                    "type": "image_url",
                                    "image_url": {
                                        "url":    f"data:{media_type};base64,{b64}",
                                        "detail": detail,
                                    },
                                },
                            ],
                        },
                    ],
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            raise ProviderTimeout(self.full_name, f"no response within {timeout:.0f}s") from exc
        except Exception as exc:
            raise ProviderUnavailable(self.full_name, f"{type(exc).__name__}: {exc}") from exc

    def _decode(self, raw: str) -> dict:
        try:
            return parse_json_response(raw, self.full_name)
        except ProviderMalformedResponse:
            logger.info("[%s] Strict decode failed, trying lenient decode", self.full_name)
            return lenient_decode(raw, self.full_name)

    async def identify(self, image_bytes: bytes, text_context: str = "") -> ProviderResult:
        t0 = time.monotonic()
        response = await self._complete(
            image_bytes, SYSTEM_PROMPT, build_user_prompt(text_context), "low", 600, self.timeout,
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        raw = (response.choices[0].message.content or "") if response.choices else ""
        if not raw.strip():
            raise ProviderMalformedResponse(self.full_name, "empty response")

        result = result_from_payload(self._decode(raw), self.model_id, _DEFAULT_CONFIDENCE)

        usage = response.usage
        result.latency_ms    = latency_ms
        result.input_tokens  = usage.prompt_tokens     if usage else 800
        result.output_tokens = usage.completion_tokens if usage else 150
        result.cost_usd      = self.estimate_cost(result.input_tokens, result.output_tokens)
        return result

    async def identify_many(self, image_bytes: bytes, context: str = "") -> list[ProviderResult]:
        response = await self._complete(
            image_bytes, MULTI_SYSTEM_PROMPT, build_multi_user_prompt(context), "high", 900,
            self.multi_timeout,
        )
        raw = (response.choices[0].message.content or "") if response.choices else ""
        if not raw.strip():
            raise ProviderMalformedResponse(self.full_name, "empty response")
        return items_from_payload(self._decode(raw), self.model_id, 0.9)
