"""
Receipt Parser — turns raw OCR text from a printed bill into line items plus
detected tax / subtotal / total amounts.

Every line is classified on its own (no cross-line state):
  1. summary keywords first (tax, subtotal, total)
  2. otherwise an item shape: optional quantity marker + name + price
  3. otherwise unknown, and dropped

Nothing in here raises on bad input: unreadable text simply produces an
empty draft, and shaky extractions carry a lower confidence.
"""
import logging
import math
import re
from typing import Optional

logger = logging.getLogger("billscan.parser")

KIND_ITEM = "item"
KIND_TAX = "tax"
KIND_SUBTOTAL = "subtotal"
KIND_TOTAL = "total"
KIND_UNKNOWN = "unknown"

TAX_ABSOLUTE = "absolute"
TAX_PERCENTAGE = "percentage"

UNKNOWN_ITEM_NAME = "Unknown Item"

# Plausible price window (exclusive on both ends)
MAX_PRICE = 10000.0

# Implied tax rates inside this window are stored as a percentage
TAX_RATE_MIN = 5.0
TAX_RATE_MAX = 20.0

# Heuristic confidence weights
CONF_KEYWORD_PRICED = 0.8
CONF_ITEM_NAMED = 0.7
CONF_ITEM_PLACEHOLDER = 0.4
CONF_KEYWORD_UNPRICED = 0.3
CONF_UNKNOWN = 0.1


# ── Keyword classification ────────────────────────────────────────────────────

TAX_KEYWORDS_RE      = re.compile(r'(?i)\b(?:tax|gst|vat|hst|sales tax)\b')
SUBTOTAL_KEYWORDS_RE = re.compile(r'(?i)\b(?:subtotal|sub total|sub-total)\b')
TOTAL_KEYWORDS_RE    = re.compile(r'(?i)\b(?:total|amount due|balance due|grand total)\b')

# Priority order matters: "Grand Total" or "Total incl. tax" would otherwise
# read as an item name, and "Sub Total" also contains "total".
SUMMARY_KEYWORDS: list[tuple[str, re.Pattern]] = [
    (KIND_TAX,      TAX_KEYWORDS_RE),
    (KIND_SUBTOTAL, SUBTOTAL_KEYWORDS_RE),
    (KIND_TOTAL,    TOTAL_KEYWORDS_RE),
]


# ── Price patterns ────────────────────────────────────────────────────────────
# Tried in order, first valid amount wins:
#   "$12.99" / "$ 12,99"
#   "12.99" / "9.50 USD" / "12.99$"
#   "12 . 99"   (OCR dropped spaces around the decimal point)
PRICE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("symbol", re.compile(r'[$€£₹]\s*(?P<whole>\d{1,5})[.,](?P<frac>\d{2})')),
    ("bare",   re.compile(r'(?P<whole>\d{1,5})[.,](?P<frac>\d{2})\s*(?:USD|usd|EUR|eur|GBP|gbp|[$€£])?')),
    ("spaced", re.compile(r'(?P<whole>\d{1,5})\s*\.\s*(?P<frac>\d{2})')),
]


class PriceMatch:
    """A validated amount plus where it sits in the source text."""

    def __init__(self, value: float, start: int, end: int, pattern: str):
        self.value = value
        self.start = start
        self.end = end
        self.pattern = pattern

    def __repr__(self):
        return f"PriceMatch({self.value!r}, {self.start}:{self.end}, {self.pattern})"


def _to_amount(whole: str, frac: str) -> Optional[float]:
    """Join integer/fraction digits into a float; None if outside (0, MAX_PRICE)."""
    # Comma decimals are normalised by rebuilding the number around a dot
    value = float(f"{whole}.{frac}")
    if not math.isfinite(value) or value <= 0 or value >= MAX_PRICE:
        return None
    return value


def find_price(text: str) -> Optional[PriceMatch]:
    """Return the first plausible price in `text` together with its span, or None."""
    for name, pattern in PRICE_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        value = _to_amount(m.group('whole'), m.group('frac'))
        if value is not None:
            return PriceMatch(value, m.start(), m.end(), name)
    return None


def extract_price(text: str) -> Optional[float]:
    """Return the single most plausible monetary amount in `text`, or None."""
    match = find_price(text)
    return match.value if match else None


# ── Quantity / name extraction ────────────────────────────────────────────────

# "2x Pizza 30.00" / "2 x Pizza 30.00"
LEADING_QTY_MARKER_RE = re.compile(r'(?i)^(?P<qty>\d+)\s*x\s+(?P<rest>.+)$')
# "3 Beers 15.00"
LEADING_QTY_COUNT_RE  = re.compile(r'^(?P<qty>\d+)\s+(?P<rest>.+)$')
# "Salad 16.00 x2"; only at the very end of the line
TRAILING_QTY_RE       = re.compile(r'(?i)(?<=\s)x\s*(?P<qty>\d+)$')

# Dot/dash leaders and everything after them
LEADER_RE = re.compile(r'(?:\.{2,}|-{2,}).*$')


def _split_quantity(line: str) -> tuple[int, str]:
    """Peel a quantity marker off the line.  Returns (quantity, remainder)."""
    line = line.strip()
    m = LEADING_QTY_MARKER_RE.match(line) or LEADING_QTY_COUNT_RE.match(line)
    if m:
        qty, rest = int(m.group('qty')), m.group('rest')
    else:
        # search() only starts at an "x", so long space runs stay linear
        m = TRAILING_QTY_RE.search(line)
        rest = line[:m.start()].rstrip() if m else ''
        if not rest:
            return 1, line
        qty = int(m.group('qty'))
    # "0x Widget" is not a real count; keep the name, default the quantity
    if qty < 1:
        return 1, rest
    return qty, rest


def _clean_name(head: str) -> str:
    name = LEADER_RE.sub('', head)
    return name.strip().rstrip(':$€£₹').strip()


def parse_item_line(line: str) -> Optional["ClassifiedLine"]:
    """
    Try to read `line` as "[qty] name price".
    Returns None when no price can be found; the caller treats that as unknown.
    """
    quantity, remainder = _split_quantity(line)

    price = find_price(remainder)
    if price is None:
        return None

    name = _clean_name(remainder[:price.start])
    if name:
        confidence = CONF_ITEM_NAMED
    else:
        name = UNKNOWN_ITEM_NAME
        confidence = CONF_ITEM_PLACEHOLDER

    return ClassifiedLine(
        text=line,
        kind=KIND_ITEM,
        price=price.value,
        quantity=quantity,
        name=name,
        confidence=confidence,
    )


# ── Line classification ───────────────────────────────────────────────────────

class ClassifiedLine:
    def __init__(
        self,
        text: str,
        kind: str,
        price: Optional[float] = None,
        quantity: int = 1,
        name: Optional[str] = None,
        confidence: float = CONF_UNKNOWN,
    ):
        self.text = text
        self.kind = kind
        self.price = price
        self.quantity = quantity
        self.name = name
        self.confidence = confidence

    def __repr__(self):
        return (f"ClassifiedLine({self.kind}, text={self.text!r}, price={self.price!r}, "
                f"qty={self.quantity}, name={self.name!r}, conf={self.confidence})")


def classify_line(line: str) -> ClassifiedLine:
    """Classify one line of receipt text.  Keyword matches beat item shapes."""
    text = line.strip()

    for kind, pattern in SUMMARY_KEYWORDS:
        if pattern.search(text):
            price = extract_price(text)
            return ClassifiedLine(
                text=text,
                kind=kind,
                price=price,
                confidence=CONF_KEYWORD_PRICED if price is not None else CONF_KEYWORD_UNPRICED,
            )

    item = parse_item_line(text)
    if item is not None:
        return item

    return ClassifiedLine(text=text, kind=KIND_UNKNOWN, confidence=CONF_UNKNOWN)


# ── Aggregation ───────────────────────────────────────────────────────────────

class DraftItem:
    def __init__(self, name: str, quantity: int, unit_price: float, confidence: float):
        self.name = name
        self.quantity = quantity
        self.unit_price = unit_price
        self.confidence = confidence

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "confidence": self.confidence,
        }


class DetectedTax:
    """
    Tax read off the receipt.  `value` is a percentage when kind == "percentage",
    otherwise the absolute amount; `amount` always holds the printed amount.
    """

    def __init__(self, kind: str, value: float, amount: float):
        self.kind = kind
        self.value = value
        self.amount = amount

    def to_dict(self) -> dict:
        return {"kind": self.kind, "value": self.value, "amount": self.amount}


class ParsedBillDraft:
    def __init__(self):
        self.items: list[DraftItem] = []
        self.tax: Optional[DetectedTax] = None
        self.subtotal: Optional[float] = None
        self.total: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "tax": self.tax.to_dict() if self.tax else None,
            "subtotal": self.subtotal,
            "total": self.total,
        }


def implied_tax_rate(tax_amount: float, subtotal: float) -> Optional[float]:
    """Tax as a percentage of subtotal, or None when subtotal isn't usable."""
    if not subtotal or subtotal <= 0:
        return None
    return tax_amount / subtotal * 100


def _reclassify_tax(draft: ParsedBillDraft) -> None:
    # OCR can't tell "tax amount" from "tax rate"; the subtotal decides.
    if draft.tax is None or draft.subtotal is None:
        return
    rate = implied_tax_rate(draft.tax.amount, draft.subtotal)
    if rate is not None and TAX_RATE_MIN <= rate <= TAX_RATE_MAX:
        draft.tax = DetectedTax(TAX_PERCENTAGE, round(rate, 2), draft.tax.amount)
        logger.debug("Tax %.2f on subtotal %.2f reads as %.2f%%",
                     draft.tax.amount, draft.subtotal, draft.tax.value)


def aggregate(lines: list[ClassifiedLine]) -> ParsedBillDraft:
    """Fold classified lines (in receipt order) into a single draft."""
    draft = ParsedBillDraft()

    for line in lines:
        if line.kind == KIND_ITEM:
            if line.name and line.price is not None:
                qty = line.quantity or 1
                draft.items.append(DraftItem(
                    name=line.name,
                    quantity=qty,
                    unit_price=line.price / qty,
                    confidence=line.confidence,
                ))
            continue

        if line.price is None:
            continue

        # Repeated summary lines: last one wins (a reprinted total overrides)
        if line.kind == KIND_TAX:
            if draft.tax is not None:
                logger.debug("Duplicate tax line %r overrides %.2f", line.text, draft.tax.amount)
            draft.tax = DetectedTax(TAX_ABSOLUTE, line.price, line.price)
        elif line.kind == KIND_SUBTOTAL:
            if draft.subtotal is not None:
                logger.debug("Duplicate subtotal line %r overrides %.2f", line.text, draft.subtotal)
            draft.subtotal = line.price
        elif line.kind == KIND_TOTAL:
            if draft.total is not None:
                logger.debug("Duplicate total line %r overrides %.2f", line.text, draft.total)
            draft.total = line.price

    _reclassify_tax(draft)
    return draft


def split_lines(text: str) -> list[str]:
    """Trimmed, non-blank lines of `text`."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_receipt_text(text: str) -> ParsedBillDraft:
    """
    Parse OCR text into a ParsedBillDraft.
    Pure and deterministic: same text in, same draft out.
    """
    lines = split_lines(text or "")
    draft = aggregate([classify_line(line) for line in lines])
    logger.debug(
        "Parsed %d lines → %d items, subtotal=%s tax=%s total=%s",
        len(lines), len(draft.items), draft.subtotal,
        draft.tax.value if draft.tax else None, draft.total,
    )
    return draft
