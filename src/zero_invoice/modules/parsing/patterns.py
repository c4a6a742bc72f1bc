from __future__ import annotations

import re
from datetime import date

from zero_invoice.modules.parsing.models import ParsedInvoiceData, ParsedLineItem

PATTERN_CONFIDENCE = 0.5

_INVOICE_NUMBER_PATTERNS = (
    re.compile(r"\binvoice\s*#?\s*:?\s*([A-Z0-9-]+)", re.I),
    re.compile(r"\binv\s*#?\s*:?\s*([A-Z0-9-]+)", re.I),
    re.compile(r"\binvoice\s+number\s*:?\s*([A-Z0-9-]+)", re.I),
    re.compile(r"#\s*([A-Z0-9-]+)"),
)

_DATE_TOKEN = r"\b(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})\b"

_ISSUE_DATE_PATTERNS = (
    re.compile(r"date\s*:?\s*" + _DATE_TOKEN, re.I),
    re.compile(r"issued?\s*:?\s*" + _DATE_TOKEN, re.I),
    re.compile(_DATE_TOKEN),
)

_DUE_DATE_PATTERNS = (
    re.compile(r"due\s+date\s*:?\s*" + _DATE_TOKEN, re.I),
    re.compile(r"payment\s+due\s*:?\s*" + _DATE_TOKEN, re.I),
    re.compile(r"\bdue\b[^\n\d]{0,20}" + _DATE_TOKEN, re.I),
)

_TOTAL_PATTERNS = (
    re.compile(r"\btotal\s*:?\s*\$?\s*([\d,]+\.?\d*)", re.I),
    re.compile(r"\bamount\s+due\s*:?\s*\$?\s*([\d,]+\.?\d*)", re.I),
    re.compile(r"\bbalance\s*:?\s*\$?\s*([\d,]+\.?\d*)", re.I),
)

_EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")

_LINE_ITEM_RE = re.compile(
    r"([A-Za-z][A-Za-z \t]*)[ \t]+(\d+)[ \t]+\$?([\d,]+\.?\d*)[ \t]+\$?([\d,]+\.?\d*)"
)

_NAME_SKIP_KEYWORDS = ("invoice", "bill to", "ship to", "from", "total", "subtotal", "date")


def parse_with_patterns(text: str) -> ParsedInvoiceData:
    return ParsedInvoiceData(
        invoice_number=extract_invoice_number(text),
        issue_date=extract_issue_date(text),
        due_date=extract_due_date(text),
        customer_name=extract_customer_name(text),
        customer_email=extract_email(text),
        line_items=tuple(extract_line_items(text)),
        total=extract_total(text),
    )


def extract_invoice_number(text: str) -> str | None:
    for pattern in _INVOICE_NUMBER_PATTERNS:
        for m in pattern.finditer(text):
            token = m.group(1)
            # "INVOICE\nNumber" style captures are labels, not numbers.
            if any(ch.isdigit() for ch in token):
                return token
    return None


def extract_issue_date(text: str) -> date | None:
    for pattern in _ISSUE_DATE_PATTERNS:
        for m in pattern.finditer(text):
            if "due" in _line_prefix(text, m.start(1)).lower():
                continue
            d = normalize_date(m.group(1))
            if d:
                return d
    return None


def extract_due_date(text: str) -> date | None:
    for pattern in _DUE_DATE_PATTERNS:
        for m in pattern.finditer(text):
            d = normalize_date(m.group(1))
            if d:
                return d
    return None


def extract_total(text: str) -> float | None:
    for pattern in _TOTAL_PATTERNS:
        for m in pattern.finditer(text):
            amount = parse_amount(m.group(1))
            if amount is not None:
                return amount
    return None


def extract_email(text: str) -> str | None:
    m = _EMAIL_RE.search(text)
    return m.group(1) if m else None


def extract_customer_name(text: str) -> str | None:
    for raw in text.splitlines():
        line = raw.strip()
        if not (3 < len(line) < 100):
            continue
        if not line[0].isupper() or line[0].isdigit():
            continue
        if "@" in line:
            continue
        lower = line.lower()
        if any(kw in lower for kw in _NAME_SKIP_KEYWORDS):
            continue
        return line
    return None


def extract_line_items(text: str) -> list[ParsedLineItem]:
    items: list[ParsedLineItem] = []
    for m in _LINE_ITEM_RE.finditer(text):
        name = m.group(1).strip()
        unit_price = parse_amount(m.group(3))
        if not name or unit_price is None:
            continue
        items.append(
            ParsedLineItem(
                name=name,
                description=name,
                quantity=int(m.group(2)),
                unit_price=unit_price,
            )
        )
    return items


def normalize_date(raw: str) -> date | None:
    """
    Normalize `M/D/YY(YY)` style tokens.

    Two-digit years are read as 20xx. Month-first is assumed unless the first
    part cannot be a month. Tokens that do not form a calendar date give None.
    """
    parts = re.split(r"[-/]", raw.strip())
    if len(parts) != 3:
        return None
    a, b, c = parts
    if len(c) == 2:
        c = "20" + c
    if len(c) != 4:
        return None
    try:
        first, second, year = int(a), int(b), int(c)
    except ValueError:
        return None

    month, day = first, second
    if first > 12 and second <= 12:
        month, day = second, first
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_amount(raw: str | None) -> float | None:
    s = (raw or "").replace(",", "").strip()
    if not s or not any(ch.isdigit() for ch in s):
        return None
    try:
        return float(s)
    except ValueError:
        return None


def _line_prefix(text: str, pos: int) -> str:
    return text[text.rfind("\n", 0, pos) + 1 : pos]
