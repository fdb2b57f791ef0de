"""
errors.py — exception taxonomy for the identification pipeline.

Where each one is handled:
  InputError                 → 400 from the controller
  Unauthorized               → 401 from the controller (only when auth is required)
  ProviderUnavailable /
  ProviderTimeout /
  ProviderMalformedResponse  → raised by an adapter, recovered by the orchestrator
  AllProvidersFailed         → 200 with ok:false (a failed identification is a normal outcome)
  CacheUnavailable           → logged; the request continues without caching
  EnrichmentFailure          → logged and swallowed by the extractors
"""
from __future__ import annotations


class IdentificationError(Exception):
    """Base class for every error raised by this service."""


class InputError(IdentificationError):
    """The request did not carry a usable image."""


class Unauthorized(IdentificationError):
    """Bearer token missing or rejected while auth is required."""


# ── Provider errors ───────────────────────────────────────────────────────────

class ProviderError(IdentificationError):
    """An adapter call failed. `provider` is the adapter's full name."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.reason = message


class ProviderUnavailable(ProviderError):
    """Network / auth / quota failure, or the provider is not configured."""


class ProviderTimeout(ProviderError):
    """The provider did not answer within its hard timeout."""


class ProviderMalformedResponse(ProviderError):
    """Empty output, or output nothing could be decoded from."""


class AllProvidersFailed(IdentificationError):
    """
    Every tier failed. `failures` holds (tier, provider, message) tuples and
    the exception message embeds all of them so callers need only str(exc).
    """

    def __init__(self, failures: list[tuple[str, str, str]]) -> None:
        self.failures = failures
        detail = "; ".join(f"{tier} ({provider}): {msg}" for tier, provider, msg in failures)
        super().__init__(f"All vision providers failed. {detail}")


# ── Infrastructure errors ─────────────────────────────────────────────────────

class CacheUnavailable(IdentificationError):
    """The cache store could not be read or written."""


class EnrichmentFailure(IdentificationError):
    """OCR, catalog lookup or web search failed (always swallowed)."""
