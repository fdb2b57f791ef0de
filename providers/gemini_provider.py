"""
Google Gemini vision provider — the PRIMARY adapter.

Uses the google-genai SDK with a JSON response mime type. Gemini usually
returns clean JSON, so decoding is strict; when that fails the core string
fields are salvaged by regex so a mostly-valid answer is still usable.

Pricing (as of 2025, per 1M tokens):
  gemini-2.5-flash:  $0.30 input,  $2.50 output
  gemini-2.0-flash:  $0.10 input,  $0.40 output
"""
from __future__ import annotations

import asyncio
import logging
import time

from google import genai
from google.genai import types as genai_types

from errors import ProviderMalformedResponse, ProviderTimeout, ProviderUnavailable
from providers.base import (
    MULTI_SYSTEM_PROMPT, SYSTEM_PROMPT,
    ProviderResult, VisionProvider,
    build_multi_user_prompt, build_user_prompt, detect_media_type,
    items_from_payload, parse_json_response, result_from_payload, salvage_fields,
)

logger = logging.getLogger(__name__)

_PRICING: dict[str, tuple[float, float, float]] = {
    # model_id: ($/1k_input_tokens, $/1k_output_tokens, $/image)
    "gemini-2.5-flash":      (0.0003,   0.0025,  0.00008),
    "gemini-2.0-flash":      (0.0001,   0.0004,  0.00004),
    "gemini-2.0-flash-lite": (0.000075, 0.0003,  0.00002),
    "gemini-1.5-pro":        (0.0035,   0.0105,  0.001315),
}

_DEFAULT_CONFIDENCE = 0.95
_SALVAGE_CONFIDENCE = 0.6


class GeminiProvider(VisionProvider):

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 30.0,
        multi_timeout: float = 45.0,
    ):
        self.name          = "google"
        self.model_id      = model
        self.timeout       = timeout
        self.multi_timeout = multi_timeout
        self._client       = genai.Client(api_key=api_key)

        rates = _PRICING.get(model, _PRICING["gemini-2.5-flash"])
        self.cost_per_1k_input_tokens  = rates[0]
        self.cost_per_1k_output_tokens = rates[1]
        self.cost_per_image            = rates[2]

    async def _generate(
        self,
        image_bytes: bytes,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        timeout: float,
    ):
        gen_config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=0.1,
            top_p=0.8,
            max_output_tokens=max_tokens,
            response_mime_type="application/json",
        )
        try:
            return await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model_id,
                    contents=[
                        genai_types.Part.from_bytes(
                            data=image_bytes, mime_type=detect_media_type(image_bytes)
                        ),
                        user_prompt,
                    ],
                    config=gen_config,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(self.full_name, f"no response within {timeout:.0f}s") from exc
        except Exception as exc:
            raise ProviderUnavailable(self.full_name, f"{type(exc).__name__}: {exc}") from exc

    def _usage(self, response) -> tuple[int, int]:
        usage = getattr(response, "usage_metadata", None)
        input_tokens  = getattr(usage, "prompt_token_count", None) or 800
        output_tokens = getattr(usage, "candidates_token_count", None) or 150
        return input_tokens, output_tokens

    async def identify(self, image_bytes: bytes, text_context: str = "") -> ProviderResult:
        t0 = time.monotonic()
        response = await self._generate(
            image_bytes, SYSTEM_PROMPT, build_user_prompt(text_context), 1024, self.timeout,
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        raw = response.text or ""
        if not raw.strip():
            raise ProviderMalformedResponse(self.full_name, "empty response")

        try:
            data = parse_json_response(raw, self.full_name)
            result = result_from_payload(data, self.model_id, _DEFAULT_CONFIDENCE)
        except ProviderMalformedResponse:
            salvaged = salvage_fields(raw)
            if not salvaged:
                raise
            logger.info("[%s] Using salvaged fields: %s", self.full_name, sorted(salvaged))
            result = result_from_payload(salvaged, self.model_id, _SALVAGE_CONFIDENCE)
            result.salvaged = True

        input_tokens, output_tokens = self._usage(response)
        result.latency_ms    = latency_ms
        result.input_tokens  = input_tokens
        result.output_tokens = output_tokens
        result.cost_usd      = self.estimate_cost(input_tokens, output_tokens)
        return result

    async def identify_many(self, image_bytes: bytes, context: str = "") -> list[ProviderResult]:
        response = await self._generate(
            image_bytes, MULTI_SYSTEM_PROMPT, build_multi_user_prompt(context), 2048,
            self.multi_timeout,
        )
        raw = response.text or ""
        if not raw.strip():
            raise ProviderMalformedResponse(self.full_name, "empty response")
        data = parse_json_response(raw, self.full_name)
        return items_from_payload(data, self.model_id, 0.9)
