import asyncio
import json
import logging
import re
from datetime import date, timedelta
from typing import Any, Protocol

from procurement import config

# Truncation limit for LLM context
_MAX_TEXT_LEN = 6000
# Ollama can be slow on first load or on CPU; bound each call so ingestion does not hang.
_OLLAMA_TIMEOUT_SEC = 120

logger = logging.getLogger(__name__)


class Oracle(Protocol):
    """Single request/response call: system instruction + user content in, JSON object out."""

    async def complete_json(self, system: str, user: str) -> dict[str, Any]:
        ...


def _fix_trailing_commas(s: str) -> str:
    """Remove trailing commas before ] or } so JSON parses."""
    s = re.sub(r",\s*}", "}", s)
    s = re.sub(r",\s*]", "]", s)
    return s


def parse_json_from_response(text: str) -> dict[str, Any]:
    """Extract a JSON object from model output; tolerate fenced blocks and trailing commas."""
    text = (text or "").strip()
    if "```json" in text:
        text = text.split("```json", 1)[-1].split("```", 1)[0].strip()
    elif "```" in text:
        text = text.split("```", 1)[-1].split("```", 1)[0].strip()
    start = text.find("{")
    if start >= 0:
        depth = 0
        for i in range(start, len(text)):
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
                if depth == 0:
                    text = text[start : i + 1]
                    break
    try:
        out = json.loads(text)
    except json.JSONDecodeError:
        out = json.loads(_fix_trailing_commas(text))
    if not isinstance(out, dict):
        raise json.JSONDecodeError("Expected a JSON object", text, 0)
    return out


class OllamaOracle:
    """Oracle backed by an Ollama server, using its JSON output mode."""

    def __init__(self, base_url: str, model: str = "llama3", timeout: float = _OLLAMA_TIMEOUT_SEC):
        self.base_url = base_url
        self.model = model
        self.timeout = timeout

    def _chat(self, system: str, user: str) -> dict[str, Any]:
        from ollama import Client

        client = Client(host=self.base_url, timeout=self.timeout)
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user[:_MAX_TEXT_LEN]},
        ]
        response = client.chat(model=self.model, messages=messages, format="json")
        msg = getattr(response, "message", None) or (response.get("message") if isinstance(response, dict) else None)
        text = (getattr(msg, "content", None) if msg is not None else None) or (msg.get("content") if isinstance(msg, dict) else None) or ""
        return parse_json_from_response(text)

    async def complete_json(self, system: str, user: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._chat, system, user)


def get_oracle() -> Oracle | None:
    """Configured oracle, or None when running on the deterministic mock rules."""
    if config.OLLAMA_BASE_URL:
        return OllamaOracle(config.OLLAMA_BASE_URL, config.OLLAMA_MODEL)
    return None


# --- RFP description parsing ---

_CATEGORY_GUIDE = (
    "Category guidelines: laptops, computers, servers, networking equipment -> \"Hardware\"; "
    "software licenses, SaaS, applications -> \"Software\"; consulting, support, maintenance -> \"Services\"; "
    "security tools, penetration testing, compliance -> \"Cybersecurity\"; automation tools, CI/CD -> "
    "\"DevOps & Automation\"; furniture, stationery, general supplies -> \"Office Supplies\"."
)


def _rfp_system_prompt(categories: list[str]) -> str:
    hint = f"Available vendor categories in the system: {', '.join(categories)}. " if categories else ""
    return (
        "You are a professional procurement assistant. Extract the following fields from the user's request. "
        'Return ONLY a JSON object with: "items" (array of objects with "name", "specs", "quantity"), '
        '"budget" (number), "deadline" (ISO date), "paymentTerms" (string), "warranty" (string), '
        '"category" (string, the single most relevant vendor category), '
        '"suggestedCategories" (array of strings, every relevant vendor category ordered by relevance). '
        f"{hint}{_CATEGORY_GUIDE} If a value is missing, return null for that field."
    )


_ITEM_WORDS = ("laptop", "monitor", "desktop", "server", "printer", "chair", "desk", "license", "phone", "router")
_CATEGORY_FOR_ITEM = {
    "laptop": "Hardware", "monitor": "Hardware", "desktop": "Hardware", "server": "Hardware",
    "printer": "Hardware", "router": "Hardware", "phone": "Hardware",
    "chair": "Office Supplies", "desk": "Office Supplies", "license": "Software",
}


def _mock_parse_rfp(text: str) -> dict[str, Any]:
    """Keyword/regex parse used when no oracle is configured."""
    lower = text.lower()
    items = []
    for word in _ITEM_WORDS:
        m = re.search(rf"(\d+)\s+(?:[a-z\"'-][\w\"'-]*\s+){{0,3}}?{word}s?\b", lower)
        if m:
            items.append({"name": word, "specs": None, "quantity": int(m.group(1))})
    budget = None
    m = re.search(r"budget[^\d$]{0,20}\$?\s*([\d][\d,]*(?:\.\d+)?)", lower) or re.search(r"\$\s*([\d][\d,]*(?:\.\d+)?)", text)
    if m:
        budget = float(m.group(1).replace(",", ""))
    deadline = None
    m = re.search(r"(\d{4}-\d{2}-\d{2})", text)
    if m:
        deadline = m.group(1)
    else:
        m = re.search(r"within\s+(\d+)\s*days", lower)
        if m:
            deadline = (date.today() + timedelta(days=int(m.group(1)))).isoformat()
    m = re.search(r"net\s*(\d+)", lower)
    payment_terms = f"Net {m.group(1)}" if m else None
    m = re.search(r"(\d+)[\s-]*(year|month)s?\b[^.\n]{0,20}warranty|warranty[^.\n\d]{0,20}(\d+)[\s-]*(year|month)s?", lower)
    warranty = None
    if m:
        n, unit = (m.group(1), m.group(2)) if m.group(1) else (m.group(3), m.group(4))
        warranty = f"{n} {unit}{'s' if n != '1' else ''}"
    categories = []
    for it in items:
        cat = _CATEGORY_FOR_ITEM.get(it["name"])
        if cat and cat not in categories:
            categories.append(cat)
    return {
        "items": items,
        "budget": budget,
        "deadline": deadline,
        "paymentTerms": payment_terms,
        "warranty": warranty,
        "category": categories[0] if categories else None,
        "suggestedCategories": categories,
    }


async def parse_rfp_description(description: str, categories: list[str], oracle: Oracle | None = None) -> dict[str, Any]:
    """
    Turn a free-text purchase need into structured RFP requirements.
    Raises whatever the oracle raises; the caller maps that to 503.
    """
    if oracle is None:
        logger.info("RFP parse: no oracle configured, using mock rules")
        return _mock_parse_rfp(description)
    out = await oracle.complete_json(_rfp_system_prompt(categories), description)
    if not isinstance(out.get("items"), list):
        out["items"] = []
    if not isinstance(out.get("suggestedCategories"), list):
        out["suggestedCategories"] = [out["category"]] if out.get("category") else []
    logger.info("RFP parse: category=%s suggested=%s", out.get("category"), out.get("suggestedCategories"))
    return out
