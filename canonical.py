"""
canonical.py — pure text / number helpers used to turn a provider's guess
into a clean, form-ready product record. No I/O in here.
"""
from __future__ import annotations

import math
import re
from typing import Optional

GST_RATES: tuple[int, ...] = (0, 5, 12, 18, 28)

# Retail sites web hints are restricted to
ALLOWED_DOMAINS: tuple[str, ...] = (
    "1mg.com", "pharmeasy.in", "netmeds.com", "bigbasket.com", "blinkit.com",
    "amazon.in", "flipkart.com", "dmart.in",
)

CONTAINERS: tuple[str, ...] = (
    "bottle", "jar", "pack", "packet", "sachet", "box", "tin",
    "can", "pouch", "tube", "carton", "bag", "strip",
)

_UNITS = r"(?:ml|l|g|kg|pcs|tablets?|capsules?)"

# "Dove Soap 100 g Pack ..." → "Dove Soap 100 g Pack"
_SIZE_PHRASE = re.compile(
    r"(.+?\b\d+(?:\.\d+)?\s?" + _UNITS
    + r"\b(?:\s*(?:bottle|jar|tube|strip|sachet|box|pouch|can|carton|pack))?)",
    re.IGNORECASE,
)
_LAST_RESORT_CUT = re.compile(r"[-–—|•]")

_MULTI_PACK = re.compile(
    r"\b(\d{1,2})\s*x\s*(\d+(?:\.\d+)?)\s*(ml|l|g|kg|pcs|tablets?|capsules?)\b", re.IGNORECASE
)
_SINGLE_QTY = re.compile(r"\b(\d+(?:\.\d+)?)\s*(ml|l|g|kg|pcs|tablets?|capsules?)\b", re.IGNORECASE)
_CONTAINER = re.compile(r"\b(" + "|".join(CONTAINERS) + r")s?\b", re.IGNORECASE)
_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?")

# clean_title() rules, applied in order
_TITLE_RULES: list[tuple[re.Pattern, str]] = [
    # medical-page phrases (1mg / PharmEasy titles)
    (re.compile(
        r"\b(View\s*)?(Uses?|Side\s*Effects?|Price\s*(And)?\s*Substitutes?|Substitutes?)\b.*$",
        re.IGNORECASE), ""),
    # everything after " | "
    (re.compile(r"\s*\|\s*.*$"), ""),
    # marketing tail after a dash: "- Buy Online", "– Best Price", ...
    (re.compile(
        r"\s*[-–—]\s*(Buy\s*Online|Buy|Shop\s*Online|Shop|Online|Best\s*Price|Price\s*in\s*India"
        r"|With.*|at.*|Offers?.*|Deals?.*|Reviews?|Ratings?)\b.*$",
        re.IGNORECASE), ""),
    # the same tails without a dash
    (re.compile(
        r"\b(Online|at\s+\w+.*|Price\s*in\s*India|Best\s*Price|With\s+.*|Offers?.*|Deals?.*"
        r"|Reviews?|Ratings?)\b.*$",
        re.IGNORECASE), ""),
    # leading "Buy / Shop / Order"
    (re.compile(r"^\s*(Order|Buy|Shop)\s+", re.IGNORECASE), ""),
    # marketplace mentions and anything after them
    (re.compile(
        r"\b(Amazon(\.in)?|Flipkart|JioMart|Meesho|BigBasket|Nykaa|Pharm?easy|1mg|Dmart"
        r"|Reliance\s*Smart|Spencers)\b.*$",
        re.IGNORECASE), ""),
]

# Keyword → (HSN, GST%) hints for common grocery / FMCG categories
_QUICK_HSN_GST: list[tuple[re.Pattern, str, int]] = [
    (re.compile(r"milk|curd|butter|ghee|paneer", re.IGNORECASE), "0401", 5),
    (re.compile(r"rice|wheat|atta|flour", re.IGNORECASE),         "1006", 0),
    (re.compile(r"sugar", re.IGNORECASE),                         "1701", 5),
    (re.compile(r"tea", re.IGNORECASE),                           "0902", 5),
    (re.compile(r"coffee", re.IGNORECASE),                        "0901", 5),
    (re.compile(r"soap|shampoo|detergent", re.IGNORECASE),        "3401", 18),
    (re.compile(r"cosmetic|cream|lotion", re.IGNORECASE),         "3304", 18),
    (re.compile(r"soft drink|aerated", re.IGNORECASE),            "2202", 28),
]


# ── Text ──────────────────────────────────────────────────────────────────────

def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def title_case(text: Optional[str]) -> str:
    """"HINDUSTAN  unilever" → "Hindustan Unilever"."""
    if not text:
        return ""
    lowered = _collapse(str(text).lower())
    return re.sub(r"\b([a-z])", lambda m: m.group(1).upper(), lowered)


def _smart_word(word: str) -> str:
    # Short all-caps tokens (MRP, 2X, ORS) are kept as they are
    if len(word) <= 4 and re.fullmatch(r"[A-Z0-9]+", word):
        return word
    return word[:1].upper() + word[1:].lower()


def _truncate_at_size(text: str) -> str:
    m = _SIZE_PHRASE.search(text)
    if m:
        text = m.group(1).strip()
    if len(text) > 90:
        text = _LAST_RESORT_CUT.split(text, maxsplit=1)[0].strip()
    return text


def clean_title(text: Optional[str]) -> str:
    """
    Strip SEO / marketplace noise from a product title.

    "Sensodyne Toothpaste - Buy Online at Best Price | Amazon.in" → "Sensodyne Toothpaste"
    """
    if not text:
        return ""
    x = str(text).replace("&amp;", "&").replace("&AMP;", "&")
    x = re.sub(r"[™®©]", "", x)
    for pattern, repl in _TITLE_RULES:
        x = pattern.sub(repl, x)
    x = _collapse(x)
    x = " ".join(_smart_word(w) for w in x.split(" ")) if x else ""
    return _truncate_at_size(x)


def canonicalize_name(brand: Optional[str], title: Optional[str]) -> str:
    """
    Brand-aware name: drop a leading copy of the brand from the title, then
    prefix the title-cased brand once.

    canonicalize_name("dabur", "Dabur Honey 500 g Jar - pure") → "Dabur Honey 500 g Jar"
    """
    brand = (brand or "").strip()
    title = (title or "").strip()
    if brand:
        title = re.sub(r"^" + re.escape(brand) + r"\s+", "", title, flags=re.IGNORECASE)
    title = _collapse(title)
    out = f"{title_case(brand)} {title}".strip() if brand else title
    return _truncate_at_size(out)


def normalize_key(title: Optional[str]) -> str:
    """Loose comparison key: lowercase alphanumerics separated by single spaces."""
    return _collapse(re.sub(r"[^a-z0-9]+", " ", (title or "").lower()))


def parse_canonical_unit(text: Optional[str]) -> str:
    """
    Pull a canonical quantity out of free text.

      "2 X 200 ML BOTTLE" → "2 x 200 ml bottle"
      "Sprite 1.25l pet bottle" → "1.25 L bottle"
      "" → ""
    """
    s = _collapse(str(text or "").lower())
    if not s:
        return ""

    qty = ""
    multi = _MULTI_PACK.search(s)
    if multi:
        unit = "L" if multi.group(3) == "l" else multi.group(3)
        qty = f"{multi.group(1)} x {multi.group(2)} {unit}"
    else:
        single = _SINGLE_QTY.search(s)
        if single:
            unit = "L" if single.group(2) == "l" else single.group(2)
            qty = f"{single.group(1)} {unit}"

    container = _CONTAINER.search(s)
    parts = [qty, container.group(1) if container else ""]
    return " ".join(p for p in parts if p)


def bias_query(query: Optional[str]) -> str:
    """Restrict a web search to the retail allow-list."""
    allow = " OR ".join(f"site:{d}" for d in ALLOWED_DOMAINS)
    q = (query or "").strip()
    return f"{q} ({allow})" if q else allow


# ── Numbers, money, GST ───────────────────────────────────────────────────────

def to_num(value) -> Optional[float]:
    """"₹1,20.50" → 120.5;  "", None, "N/A" → None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    # first number in the text: "Rs. 120" and "120/-" both give 120
    m = _NUMBER.search(str(value))
    if not m:
        return None
    n = float(m.group(0).replace(",", ""))
    return n if math.isfinite(n) else None


def money_str(value) -> str:
    """Canonical price string: 120 → "120", "₹99.50" → "99.5", junk → ""."""
    n = to_num(value)
    if n is None:
        return ""
    if n == int(n):
        return str(int(n))
    return f"{n:.2f}".rstrip("0").rstrip(".")


def clamp_gst_rate(rate) -> int:
    """Snap a GST guess to the nearest legal slab; ties go to the lower slab."""
    n = to_num(rate)
    if n is None:
        n = 0.0
    best, best_dist = GST_RATES[0], math.inf
    for r in GST_RATES:
        dist = abs(r - n)
        if dist < best_dist:
            best, best_dist = r, dist
    return best


def quick_hsn_gst_hint(name: str = "", category: str = "") -> Optional[tuple[str, int]]:
    """Best-effort (hsn, gst) for common categories, or None when nothing matches."""
    haystack = f"{name or ''} {category or ''}".strip()
    if not haystack:
        return None
    for pattern, hsn, gst in _QUICK_HSN_GST:
        if pattern.search(haystack):
            return hsn, gst
    return None
