"""
Provider Manager — primary → secondary fallback over the two vision adapters.

Strictly sequential: the primary (Gemini) is preferred on cost and accuracy,
the secondary (OpenAI) is only called when the primary raised or came back
without a product name. Never both at once, never more than one call each.

Per-provider toggles via environment variables:
  GEMINI_API_KEY / OPENAI_API_KEY   — an adapter without a key is "not configured"
  AI_ENABLE_FALLBACK=true/false     — false → primary only
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import config
from errors import AllProvidersFailed, ProviderError
from providers.base import ProviderResult, VisionProvider

logger = logging.getLogger(__name__)

PRIMARY   = "primary"
SECONDARY = "secondary"


@dataclass
class Outcome:
    """The first successful result plus which tier produced it."""
    result: ProviderResult
    used_provider: str              # "primary" | "secondary"
    provider_name: str              # e.g. "google/gemini-2.5-flash"
    failures: list[tuple[str, str, str]] = field(default_factory=list)


@dataclass
class ManyOutcome:
    results: list[ProviderResult]
    used_provider: str
    provider_name: str
    failures: list[tuple[str, str, str]] = field(default_factory=list)


def _reason(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return f"{type(exc).__name__}: {exc.reason}"
    return f"{type(exc).__name__}: {exc}"


class FallbackOrchestrator:

    def __init__(
        self,
        primary: Optional[VisionProvider],
        secondary: Optional[VisionProvider],
        fallback_enabled: bool = True,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.fallback_enabled = fallback_enabled

    def _tiers(self) -> list[tuple[str, Optional[VisionProvider]]]:
        tiers = [(PRIMARY, self.primary)]
        if self.fallback_enabled:
            tiers.append((SECONDARY, self.secondary))
        return tiers

    async def run(self, image_bytes: bytes, text_context: str = "") -> Outcome:
        """
        Returns the first tier that produced a named product.
        Raises AllProvidersFailed (with every tier's reason) otherwise.
        """
        failures: list[tuple[str, str, str]] = []

        for tier, provider in self._tiers():
            if provider is None:
                failures.append((tier, "none", "not configured"))
                continue
            try:
                result = await provider.identify(image_bytes, text_context)
            except Exception as exc:
                logger.warning("[%s] %s failed: %s", provider.full_name, tier, _reason(exc))
                failures.append((tier, provider.full_name, _reason(exc)))
                continue

            if not result.name:
                logger.warning("[%s] %s returned no product name", provider.full_name, tier)
                failures.append((tier, provider.full_name, "response lacked a product name"))
                continue

            logger.info(
                "[%s] OK — tier=%s confidence=%.2f cost=%s latency=%dms",
                provider.full_name, tier, result.confidence, result.cost_str, result.latency_ms,
            )
            return Outcome(result, tier, provider.full_name, failures)

        raise AllProvidersFailed(failures)

    async def run_many(self, image_bytes: bytes, context: str = "") -> ManyOutcome:
        """Multi-item variant: an empty item list counts as a failure."""
        failures: list[tuple[str, str, str]] = []

        for tier, provider in self._tiers():
            if provider is None:
                failures.append((tier, "none", "not configured"))
                continue
            try:
                results = await provider.identify_many(image_bytes, context)
            except Exception as exc:
                logger.warning("[%s] %s multi failed: %s", provider.full_name, tier, _reason(exc))
                failures.append((tier, provider.full_name, _reason(exc)))
                continue

            if not results:
                logger.warning("[%s] %s found no products", provider.full_name, tier)
                failures.append((tier, provider.full_name, "no products detected"))
                continue

            logger.info("[%s] OK — tier=%s products=%d", provider.full_name, tier, len(results))
            return ManyOutcome(results, tier, provider.full_name, failures)

        raise AllProvidersFailed(failures)

    def status(self) -> dict:
        """Configuration snapshot for the /status endpoint."""
        def _describe(p: Optional[VisionProvider]) -> dict:
            if p is None:
                return {"configured": False}
            return {"configured": True, "provider": p.name, "model": p.model_id,
                    "timeout": p.timeout}

        return {
            PRIMARY:   _describe(self.primary),
            SECONDARY: _describe(self.secondary),
            "fallbackEnabled": self.fallback_enabled,
            "hasAnyAI": self.primary is not None
                        or (self.fallback_enabled and self.secondary is not None),
        }


def build_orchestrator() -> FallbackOrchestrator:
    """Instantiate whichever adapters have an API key configured."""
    primary: Optional[VisionProvider] = None
    secondary: Optional[VisionProvider] = None

    if config.GEMINI_API_KEY:
        from providers.gemini_provider import GeminiProvider
        primary = GeminiProvider(
            config.GEMINI_API_KEY, config.GEMINI_MODEL,
            timeout=config.GEMINI_TIMEOUT, multi_timeout=config.GEMINI_MULTI_TIMEOUT,
        )
        logger.info("Loaded primary provider: %s", primary.full_name)
    else:
        logger.warning("GEMINI_API_KEY not set — primary provider disabled")

    if config.OPENAI_API_KEY:
        from providers.openai_provider import OpenAIProvider
        secondary = OpenAIProvider(
            config.OPENAI_API_KEY, config.OPENAI_MODEL,
            timeout=config.OPENAI_TIMEOUT, multi_timeout=config.OPENAI_MULTI_TIMEOUT,
        )
        logger.info("Loaded secondary provider: %s", secondary.full_name)
    else:
        logger.warning("OPENAI_API_KEY not set — secondary provider disabled")

    if primary is None and secondary is None:
        logger.error("No vision providers configured. Set GEMINI_API_KEY and/or OPENAI_API_KEY.")

    return FallbackOrchestrator(primary, secondary, fallback_enabled=config.AI_ENABLE_FALLBACK)
