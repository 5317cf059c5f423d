"""
Field extraction from receipt text.

The real OCR engine is an external collaborator; anything satisfying
``FieldExtractor`` can be plugged in. ``TextFieldExtractor`` treats the
uploaded blob as already-recognised text (sidecar OCR output) and pulls
the receipt fields out with regular expressions.
"""
from __future__ import annotations

import hashlib
import re
from datetime import datetime
from typing import Optional, Protocol

from receiptrewards.errors import UpstreamUnavailable
from receiptrewards.receipts.schemas import ExtractionResult


class FieldExtractor(Protocol):
    def extract(self, image: bytes, filename: str = "") -> ExtractionResult:
        ...


# ---------------------------------------------------------------------------
# Per-field patterns (first match wins)
# ---------------------------------------------------------------------------

TAX_ID_PATTERNS: list[str] = [
    r"\bTIN\s*(?:NO\.?|NUMBER)?[:#\s]*([0-9OIlSB]{6,20})\b",
    r"\bTax\s*ID[:#\s]*([0-9OIlSB]{6,20})\b",
    r"\bVAT\s*(?:REG(?:\.|ISTRATION)?)?\s*(?:NO\.?)?[:#\s]*([0-9OIlSB]{6,20})\b",
]

INVOICE_PATTERNS: list[str] = [
    r"Invoice\s*No\s*Order[:\s]+([0-9]{4,5}[\s\-]+[0-9]{2,3}[\s\-]+[0-9]{3,4}[A-Z]?)",
    r"(?:Invoice|Receipt|Bill)\s*(?:No\.?|Number|#)[:\s]*([A-Z0-9][A-Z0-9\-/]{2,30})",
    r"\b(INV[\-\s]?[0-9]{2,}[\-0-9A-Z]*)\b",
    r"\b([0-9]{4,5}-[0-9]{2,3}-[0-9]{3,4}[A-Z]?)\b",
]

BARCODE_PATTERNS: list[str] = [
    r"(?:Barcode|FS\s*No\.?)[:\s]*([0-9A-Z]{8,24})",
    r"\b([0-9]{13})\b",
]

TOTAL_PATTERNS: list[str] = [
    r"\bGRAND\s*TOTAL\b[^0-9]*([0-9][0-9,]*(?:\.[0-9]{1,2})?)",
    r"\bTOTAL\s*(?:AMOUNT|DUE)?\b[^0-9]*([0-9][0-9,]*(?:\.[0-9]{1,2})?)",
    r"\bAMOUNT\s*(?:DUE|PAID)?\b[^0-9]*([0-9][0-9,]*(?:\.[0-9]{1,2})?)",
]

BRANCH_KEYWORDS: list[str] = ["branch", "location", "store", "outlet", "shop", "mall"]

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_TIME = r"(?:[T\s]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?"
DATE_PATTERNS: list[tuple[str, str]] = [
    (r"(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})" + _TIME, "ymd"),
    (r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})" + _TIME, "dmy"),
    (r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+(\d{1,2}),?\s+(\d{4})" + _TIME, "mdy"),
]

# Fields counted towards parsing confidence
CRITICAL_FIELDS = ("tax_id", "invoice_number", "date_on_receipt", "total_amount")

RECEIPT_KEYWORDS = ("TIN", "INVOICE", "RECEIPT", "TOTAL", "AMOUNT", "DATE", "TAX", "SUBTOTAL", "VAT")


# ---------------------------------------------------------------------------
# Field extractors
# ---------------------------------------------------------------------------

def _first_match(patterns: list[str], text: str) -> Optional[str]:
    for pattern in patterns:
        m = re.search(pattern, text, re.IGNORECASE)
        if m:
            return m.group(1).strip()
    return None


def extract_tax_id(text: str) -> Optional[str]:
    return _first_match(TAX_ID_PATTERNS, text)


def extract_invoice_number(text: str) -> Optional[str]:
    value = _first_match(INVOICE_PATTERNS, text)
    if value is None:
        return None
    return re.sub(r"[\s\-]+", "-", value).upper()


def extract_barcode(text: str) -> Optional[str]:
    return _first_match(BARCODE_PATTERNS, text)


def extract_total_amount(text: str) -> Optional[float]:
    """Prefer labelled totals; the last labelled total on the receipt wins."""
    for pattern in TOTAL_PATTERNS:
        matches = re.findall(pattern, text, re.IGNORECASE)
        if matches:
            try:
                return float(matches[-1].replace(",", ""))
            except ValueError:
                continue
    return None


def _build_datetime(year: int, month: int, day: int, groups: tuple) -> Optional[datetime]:
    hour, minute, second = (int(g) if g else 0 for g in groups)
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def extract_date(text: str) -> Optional[datetime]:
    for pattern, order in DATE_PATTERNS:
        m = re.search(pattern, text, re.IGNORECASE)
        if not m:
            continue
        g = m.groups()
        if order == "ymd":
            value = _build_datetime(int(g[0]), int(g[1]), int(g[2]), g[3:6])
        elif order == "dmy":
            value = _build_datetime(int(g[2]), int(g[1]), int(g[0]), g[3:6])
        else:
            value = _build_datetime(int(g[2]), _MONTHS[g[0][:3].lower()], int(g[1]), g[3:6])
        if value is not None:
            return value
    return None


def extract_branch_text(text: str, max_lines: int = 10) -> Optional[str]:
    """Branch info usually sits in the header lines."""
    lines = [l.strip() for l in text.split("\n")[:max_lines] if l.strip()]
    for line in lines:
        lower = line.lower()
        if any(kw in lower for kw in BRANCH_KEYWORDS):
            return line
    if len(lines) >= 2:
        return lines[1]
    return None


def looks_like_receipt(text: str) -> bool:
    upper = text.upper()
    has_keywords = any(kw in upper for kw in RECEIPT_KEYWORDS)
    has_numbers = re.search(r"\d{4,}", text) is not None
    return has_keywords or has_numbers or len(text.strip()) >= 50


def parse_receipt_text(text: str) -> ExtractionResult:
    """Parse OCR text into an ``ExtractionResult`` (image hash left unset)."""
    result = ExtractionResult(
        raw_text=text,
        tax_id=extract_tax_id(text),
        invoice_number=extract_invoice_number(text),
        branch_text=extract_branch_text(text),
        date_on_receipt=extract_date(text),
        total_amount=extract_total_amount(text),
        barcode=extract_barcode(text),
    )

    found = sum(1 for name in CRITICAL_FIELDS if getattr(result, name) is not None)
    if result.branch_text:
        found += 1
    if found >= 4:
        result.confidence = "high"
    elif found >= 2:
        result.confidence = "medium"
    else:
        result.confidence = "low"
        result.flags.append("low_extraction_rate")

    for name in CRITICAL_FIELDS:
        if getattr(result, name) is None:
            result.flags.append(f"{name}_not_found")
    if not looks_like_receipt(text):
        result.flags.append("not_a_receipt")
    return result


def image_hash(image: bytes) -> str:
    return hashlib.sha256(image).hexdigest()


class TextFieldExtractor:
    """Extractor for uploads that carry OCR text instead of pixels."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def extract(self, image: bytes, filename: str = "") -> ExtractionResult:
        try:
            text = image.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise UpstreamUnavailable(
                f"Could not read text from {filename or 'upload'}: {exc.reason}"
            ) from exc
        text = text.replace("\r\n", "\n").strip()
        result = parse_receipt_text(text)
        result.image_hash = image_hash(image)
        return result


def get_extractor() -> FieldExtractor:
    return TextFieldExtractor()
