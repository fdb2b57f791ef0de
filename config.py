"""
Central configuration — reads from .env file.

Every value is a plain module attribute so tests (and the occasional ops
override) can monkeypatch config.X without touching the environment.
Optional integrations (OCR, web hints, catalog lookup, scan storage) are
switched off simply by leaving their keys blank.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _tokens(raw: str) -> dict[str, str]:
    """Parse "token:uid,token2:uid2" into {token: uid}."""
    pairs: dict[str, str] = {}
    for chunk in raw.split(","):
        token, _, uid = chunk.strip().partition(":")
        if token and uid:
            pairs[token.strip()] = uid.strip()
    return pairs


# ── HTTP server ───────────────────────────────────────────────────────────────
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8080"))

# Hard wall-clock budget for a single identify request (seconds)
REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "120"))

# Timeout for downloading an imageUrl supplied by the client
IMAGE_FETCH_TIMEOUT: float = float(os.getenv("IMAGE_FETCH_TIMEOUT", "12"))

# Largest accepted request body (a 5-frame base64 burst is several MB)
MAX_BODY_MB: int = int(os.getenv("MAX_BODY_MB", "25"))

# Where the cache DB, the log file and stored scans live
DATA_DIR: str = os.getenv("DATA_DIR", "data")

# ── Auth ──────────────────────────────────────────────────────────────────────
# When false, a bad or missing bearer token is ignored and the request proceeds.
REQUIRE_AUTH_IDENTIFY: bool = _flag("REQUIRE_AUTH_IDENTIFY", "false")

# Comma-separated "token:uid" pairs accepted by the bearer-token verifier
API_TOKENS: dict[str, str] = _tokens(os.getenv("API_TOKENS", ""))

# ── AI Vision providers ───────────────────────────────────────────────────────
# Primary: Google Gemini.  Secondary (fallback): OpenAI.
GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY") or None
GEMINI_MODEL: str          = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_TIMEOUT: float      = float(os.getenv("GEMINI_TIMEOUT", "30"))
GEMINI_MULTI_TIMEOUT: float = float(os.getenv("GEMINI_MULTI_TIMEOUT", "45"))

OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
OPENAI_MODEL: str          = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_TIMEOUT: float      = float(os.getenv("OPENAI_TIMEOUT", "25"))
OPENAI_MULTI_TIMEOUT: float = float(os.getenv("OPENAI_MULTI_TIMEOUT", "45"))

# Set to false to run the primary only (no secondary call on failure)
AI_ENABLE_FALLBACK: bool = _flag("AI_ENABLE_FALLBACK", "true")

# ── Enrichment ────────────────────────────────────────────────────────────────
# Cloud Vision API key for OCR + logo detection. Blank → OCR skipped.
GOOGLE_VISION_API_KEY: str | None = os.getenv("GOOGLE_VISION_API_KEY") or None

# Google Custom Search (whitelisted retail web hints). Blank → no web hints.
CSE_KEY: str = os.getenv("CSE_KEY") or os.getenv("GOOGLE_CSE_KEY") or ""
CSE_CX: str  = os.getenv("CSE_CX") or os.getenv("GOOGLE_CSE_CX") or ""

# Open Food Facts barcode lookup (no key needed)
BARCODE_LOOKUP_ENABLED: bool = _flag("BARCODE_LOOKUP_ENABLED", "true")
BARCODE_LOOKUP_TIMEOUT: float = float(os.getenv("BARCODE_LOOKUP_TIMEOUT", "10"))

# ── Cache & scan storage ─────────────────────────────────────────────────────
# sqlite → durable cache in DATA_DIR;  memory → per-process (dev only)
CACHE_BACKEND: str = os.getenv("CACHE_BACKEND", "sqlite").strip().lower()

SCAN_STORE_ENABLED: bool = _flag("SCAN_STORE_ENABLED", "true")
SCAN_MAX_WIDTH: int      = int(os.getenv("SCAN_MAX_WIDTH", "800"))
SCAN_JPEG_QUALITY: int   = int(os.getenv("SCAN_JPEG_QUALITY", "72"))
