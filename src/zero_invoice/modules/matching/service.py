from __future__ import annotations

from collections.abc import Iterable, Sequence

from zero_invoice.core.logging import get_logger, log_event
from zero_invoice.modules.catalog.models import Customer, Item
from zero_invoice.modules.matching.models import MatchDecision
from zero_invoice.modules.matching.similarity import similarity
from zero_invoice.modules.parsing.models import ParsedLineItem

logger = get_logger(__name__)

FUZZY_THRESHOLD = 0.7
EXACT_MATCH_CONFIDENCE = 1.0
EMAIL_MATCH_CONFIDENCE = 0.95
FUZZY_MATCH_CONFIDENCE = 0.7


def match_customer(
    name: str | None, email: str | None, customers: Iterable[Customer]
) -> MatchDecision:
    customers = list(customers)
    needle = _norm(name)
    if not needle:
        decision = MatchDecision.new()
        _log_customer_decision(decision, rule="no_name")
        return decision

    exact = next((c for c in customers if _norm(c.name) == needle), None)
    if exact:
        decision = MatchDecision.existing(exact.id, EXACT_MATCH_CONFIDENCE)
        _log_customer_decision(decision, rule="exact_name")
        return decision

    email_needle = _norm(email)
    if email_needle:
        by_email = next((c for c in customers if _norm(c.email) == email_needle), None)
        if by_email:
            decision = MatchDecision.existing(by_email.id, EMAIL_MATCH_CONFIDENCE)
            _log_customer_decision(decision, rule="exact_email")
            return decision

    candidates = _fuzzy_candidates(needle, ((c.id, c.name) for c in customers))
    if len(candidates) == 1:
        decision = MatchDecision.existing(candidates[0], FUZZY_MATCH_CONFIDENCE)
        _log_customer_decision(decision, rule="fuzzy_name")
        return decision

    decision = MatchDecision.new()
    _log_customer_decision(
        decision, rule="ambiguous" if candidates else "no_match", candidates=len(candidates)
    )
    return decision


def match_item(name: str | None, items: Iterable[Item]) -> MatchDecision:
    items = list(items)
    needle = _norm(name)
    if not needle:
        return MatchDecision.new()

    exact = next((i for i in items if _norm(i.name) == needle), None)
    if exact:
        return MatchDecision.existing(exact.id, EXACT_MATCH_CONFIDENCE)

    candidates = _fuzzy_candidates(needle, ((i.id, i.name) for i in items))
    if len(candidates) == 1:
        return MatchDecision.existing(candidates[0], FUZZY_MATCH_CONFIDENCE)
    return MatchDecision.new()


def match_line_items(
    line_items: Sequence[ParsedLineItem], items: Iterable[Item]
) -> dict[int, MatchDecision]:
    """Resolve every line item against the catalog, keyed by its position on the invoice."""
    items = list(items)
    out = {idx: match_item(li.name, items) for idx, li in enumerate(line_items)}
    log_event(
        logger,
        "match.items",
        line_items=len(out),
        matched=sum(1 for d in out.values() if not d.is_new),
        new=sum(1 for d in out.values() if d.is_new),
    )
    return out


def _fuzzy_candidates(needle: str, candidates: Iterable[tuple[str, str]]) -> list[str]:
    out: list[str] = []
    for candidate_id, candidate_name in candidates:
        other = _norm(candidate_name)
        if not other:
            continue
        if needle in other or other in needle or similarity(needle, other) > FUZZY_THRESHOLD:
            out.append(candidate_id)
    return out


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def _log_customer_decision(decision: MatchDecision, *, rule: str, **fields) -> None:
    log_event(
        logger,
        "match.customer",
        rule=rule,
        is_new=decision.is_new,
        existing_id=decision.existing_id,
        match_confidence=decision.match_confidence,
        **fields,
    )
