from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any

from zero_invoice.core.logging import get_logger, log_event
from zero_invoice.modules.ai.client import GeminiClient, TextGenerationError
from zero_invoice.modules.parsing.models import ParsedAddress, ParsedInvoiceData, ParsedLineItem

logger = get_logger(__name__)

_FENCE_START_RE = re.compile(r"^```(?:json)?\s*\n?", re.I)
_FENCE_END_RE = re.compile(r"\n?```$")

_PROMPT_TEMPLATE = """Analyze this invoice text and extract structured data. \
Return ONLY a valid JSON object with no additional text or markdown formatting.

Invoice Text:
{text}

Extract and return a JSON object with these fields:
{{
  "invoiceNumber": "string or null",
  "issueDate": "YYYY-MM-DD or null",
  "dueDate": "YYYY-MM-DD or null",
  "customerName": "string or null",
  "customerEmail": "string or null",
  "customerAddress": {{
    "street": "string or null",
    "city": "string or null",
    "state": "string or null",
    "zipCode": "string or null",
    "country": "string or null"
  }},
  "lineItems": [
    {{
      "name": "string",
      "description": "string",
      "quantity": number,
      "unitPrice": number
    }}
  ],
  "subtotal": number or null,
  "tax": number or null,
  "taxRate": number or null (as decimal, e.g., 0.08 for 8%),
  "total": number or null,
  "notes": "string or null"
}}

Important:
- Extract dates in YYYY-MM-DD format
- Convert all amounts to numbers (no currency symbols)
- Tax rate should be decimal (e.g., 0.08 for 8%)
- Set fields to null if not found
- Ensure lineItems is an array (empty if none found)
- Return ONLY the JSON object, no markdown code blocks or extra text"""


def build_prompt(text: str, *, max_chars: int = 12000) -> str:
    return _PROMPT_TEMPLATE.format(text=_truncate_text(text, max_chars=max_chars))


async def parse_with_ai(
    text: str,
    ai: GeminiClient,
    *,
    temperature: float = 0.3,
    max_output_tokens: int = 2048,
    max_chars: int = 12000,
) -> tuple[ParsedInvoiceData | None, str | None]:
    """
    Ask the text-generation backend for a structured reading of `text`.

    Returns `(data, None)` on success and `(None, reason)` on any backend or
    decoding failure; the caller decides whether to fall back.
    """
    prompt = build_prompt(text, max_chars=max_chars)
    try:
        content = await ai.generate(
            prompt, temperature=temperature, max_output_tokens=max_output_tokens
        )
    except TextGenerationError as e:
        return None, str(e)

    obj = _parse_json_object(content)
    if obj is None:
        log_event(
            logger,
            "parse.ai.bad_response",
            level=logging.WARNING,
            response_chars=len(content or ""),
        )
        return None, "Failed to parse AI response"
    if not isinstance(obj, dict):
        return None, "AI response is not a JSON object"

    return _sanitize_invoice_fields(obj), None


def _truncate_text(text: str, *, max_chars: int) -> str:
    t = (text or "").strip()
    if max_chars <= 0 or len(t) <= max_chars:
        return t
    return t[: max_chars - 20].rstrip() + "\n\n[TRUNCATED]"


def _strip_fences(content: str) -> str:
    c = (content or "").strip()
    if c.startswith("```"):
        c = _FENCE_END_RE.sub("", _FENCE_START_RE.sub("", c, count=1), count=1)
    return c.strip()


def _parse_json_object(content: str) -> Any:
    c = _strip_fences(content)
    if not c:
        return None
    try:
        return json.loads(c)
    except ValueError:
        pass

    # Fallback: extract the first {...} block.
    m = re.search(r"\{.*\}", c, re.S)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except ValueError:
        return None


def _sanitize_invoice_fields(obj: dict[str, Any]) -> ParsedInvoiceData:
    raw_items = obj.get("lineItems")
    line_items: list[ParsedLineItem] = []
    if isinstance(raw_items, list):
        for raw in raw_items:
            item = _sanitize_line_item(raw)
            if item:
                line_items.append(item)

    return ParsedInvoiceData(
        invoice_number=_str_or_none(obj.get("invoiceNumber")),
        issue_date=_iso_date_or_none(obj.get("issueDate")),
        due_date=_iso_date_or_none(obj.get("dueDate")),
        customer_name=_str_or_none(obj.get("customerName")),
        customer_email=_str_or_none(obj.get("customerEmail")),
        customer_address=_sanitize_address(obj.get("customerAddress")),
        line_items=tuple(line_items),
        subtotal=_float_or_none(obj.get("subtotal")),
        tax=_float_or_none(obj.get("tax")),
        tax_rate=_float_or_none(obj.get("taxRate")),
        total=_float_or_none(obj.get("total")),
        notes=_str_or_none(obj.get("notes")),
    )


def _sanitize_line_item(raw: Any) -> ParsedLineItem | None:
    if not isinstance(raw, dict):
        return None
    name = _str_or_none(raw.get("name"))
    if not name:
        return None
    quantity = _float_or_none(raw.get("quantity"))
    unit_price = _float_or_none(raw.get("unitPrice"))
    return ParsedLineItem(
        name=name,
        description=_str_or_none(raw.get("description")) or "",
        quantity=quantity if quantity is not None else 1.0,
        unit_price=unit_price if unit_price is not None else 0.0,
    )


def _sanitize_address(raw: Any) -> ParsedAddress | None:
    if not isinstance(raw, dict):
        return None
    address = ParsedAddress(
        street=_str_or_none(raw.get("street")),
        city=_str_or_none(raw.get("city")),
        state=_str_or_none(raw.get("state")),
        zip_code=_str_or_none(raw.get("zipCode")),
        country=_str_or_none(raw.get("country")),
    )
    return None if address.is_empty() else address


def _str_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    s = str(value).strip()
    return s or None


def _float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).replace(",", "").replace("$", "").strip()
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        return None


def _iso_date_or_none(value: Any) -> date | None:
    s = _str_or_none(value)
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None
