"""
Proposal Extraction Adapter: free-text vendor reply -> structured proposal fields.

Extraction always runs before any store mutation, so an ExtractionError leaves
persisted state untouched. No retry here; a failed message is dropped by the caller.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from procurement.errors import ExtractionError
from procurement.services.ai_service import Oracle

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You are a professional procurement assistant analyzing vendor proposal emails. "
    "Extract the following fields from the vendor's proposal email and return ONLY a JSON object: "
    '"totalPrice" (number, the total quoted price), '
    '"deliveryDate" (ISO date, proposed delivery date), '
    '"warrantyProvided" (string, warranty terms offered), '
    '"notes" (string, any additional important information or conditions). '
    "If a value is missing or not mentioned, return null for that field."
)

_FIELDS = ("totalPrice", "deliveryDate", "warrantyProvided", "notes")


@dataclass
class ExtractedProposal:
    """Each field is independently nullable; the oracle may miss any of them."""
    total_price: float | None = None
    delivery_date: date | None = None
    warranty_provided: str | None = None
    notes: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalPrice": self.total_price,
            "deliveryDate": self.delivery_date.isoformat() if self.delivery_date else None,
            "warrantyProvided": self.warranty_provided,
            "notes": self.notes,
        }


def _to_price(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("totalPrice must be a number")
    if isinstance(value, (int, float)):
        price = float(value)
    else:
        cleaned = re.sub(r"[^\d.\-]", "", str(value))
        if not cleaned:
            return None
        price = float(cleaned)
    if price < 0:
        raise ValueError("totalPrice must not be negative")
    return price


def _to_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    s = str(value).strip()
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def coerce_extraction(raw: Any) -> ExtractedProposal:
    """Validate oracle output into an ExtractedProposal; raise ExtractionError when malformed."""
    if not isinstance(raw, dict):
        raise ExtractionError(f"Oracle returned {type(raw).__name__}, expected an object")
    if not any(k in raw for k in _FIELDS):
        raise ExtractionError("Oracle output has none of the proposal fields")
    try:
        return ExtractedProposal(
            total_price=_to_price(raw.get("totalPrice")),
            delivery_date=_to_date(raw.get("deliveryDate")),
            warranty_provided=_to_text(raw.get("warrantyProvided")),
            notes=_to_text(raw.get("notes")),
        )
    except (TypeError, ValueError) as e:
        raise ExtractionError(f"Malformed proposal field: {e}") from e


_PRICE_PATTERNS = (
    re.compile(r"(?:total|price|quote|quoted|cost)[^\d$\n]{0,30}\$?\s*([\d][\d,]*(?:\.\d+)?)", re.I),
    re.compile(r"\$\s*([\d][\d,]*(?:\.\d+)?)"),
    re.compile(r"([\d][\d,]*(?:\.\d+)?)\s*(?:usd|dollars)\b", re.I),
)


def _mock_extract(body: str) -> dict[str, Any]:
    """Regex extraction used when no oracle is configured."""
    price = None
    for pattern in _PRICE_PATTERNS:
        m = pattern.search(body)
        if m:
            price = m.group(1).replace(",", "")
            break
    delivery = None
    m = re.search(r"(\d{4}-\d{2}-\d{2})", body)
    if m:
        delivery = m.group(1)
    else:
        m = re.search(r"(?:within|in)\s+(\d+)\s*days", body, re.I)
        if m:
            delivery = (date.today() + timedelta(days=int(m.group(1)))).isoformat()
    warranty = None
    m = re.search(r"(\d+)[\s-]*(year|month)s?\b[^.\n]{0,30}warranty|warranty[^.\n\d]{0,30}(\d+)[\s-]*(year|month)s?", body, re.I)
    if m:
        n, unit = (m.group(1), m.group(2)) if m.group(1) else (m.group(3), m.group(4))
        warranty = f"{n} {unit.lower()}{'s' if n != '1' else ''}"
    notes = body.strip()[:500] or None
    return {"totalPrice": price, "deliveryDate": delivery, "warrantyProvided": warranty, "notes": notes}


async def extract_proposal(body: str, oracle: Oracle | None) -> ExtractedProposal:
    """
    Delegate to the oracle with the fixed schema prompt.
    Oracle errors and malformed output both surface as ExtractionError.
    """
    if not (body or "").strip():
        raise ExtractionError("Empty reply body")
    if oracle is None:
        return coerce_extraction(_mock_extract(body))
    try:
        raw = await oracle.complete_json(EXTRACTION_SYSTEM_PROMPT, body)
    except ExtractionError:
        raise
    except Exception as e:
        raise ExtractionError(f"Oracle call failed: {e}") from e
    extracted = coerce_extraction(raw)
    logger.info(
        "Extracted proposal: price=%s delivery=%s warranty=%s",
        extracted.total_price, extracted.delivery_date, extracted.warranty_provided,
    )
    return extracted
