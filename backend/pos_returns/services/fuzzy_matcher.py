# Overview: Ranked free-text search over orders for return discovery.

"""
Fuzzy Matcher

Pure functions: no database access, no presentation. Given a query and the
orders the caller considers searchable, returns ranked matches.

FIELD WEIGHTS (final order score is the MAX across fields, never the sum,
so an order with many mediocre hits cannot outrank one exact hit):
- order number substring       1.0
- invoice number substring     1.0
- customer PO substring        0.98
- line SKU/barcode substring   0.95
- customer name fuzzy          x 0.9
- line item name fuzzy         x 0.85
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable


SCORE_FLOOR = 0.3
MAX_RESULTS = 10

WEIGHT_ORDER_NUMBER = 1.0
WEIGHT_INVOICE_NUMBER = 1.0
WEIGHT_CUSTOMER_PO = 0.98
WEIGHT_ITEM_CODE = 0.95
WEIGHT_CUSTOMER_NAME = 0.9
WEIGHT_ITEM_NAME = 0.85

_WORD_SPLIT = re.compile(r"\s+")


@dataclass(frozen=True)
class SearchMatch:
    order: object
    score: float
    matched_field: str | None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "score": round(self.score, 4),
            "matched_field": self.matched_field,
        }


def score(query: str, target: str) -> float:
    """
    Score how well query matches target, in [0, 1].

    1.0 exact (case-insensitive), 0.8 substring, 0.7 word prefix, otherwise
    an in-order character subsequence ratio scaled to at most 0.5.
    """
    q = query.lower()
    t = target.lower()
    if t == q:
        return 1.0
    if q in t:
        return 0.8
    if any(word.startswith(q) for word in _WORD_SPLIT.split(t) if word):
        return 0.7

    matched = 0
    last_index = -1
    for ch in q:
        index = t.find(ch, last_index + 1)
        if index != -1:
            matched += 1
            last_index = index
    return matched / len(q) * 0.5


def _contains(term: str, value: str | None) -> bool:
    return bool(value) and term in value.lower()


def score_order(query: str, order) -> tuple[float, str | None]:
    """Best weighted score across the order's searchable fields, and which field won."""
    term = query.strip().lower()
    if not term:
        return 0.0, None

    candidates: list[tuple[float, str]] = []
    if _contains(term, order.order_number):
        candidates.append((WEIGHT_ORDER_NUMBER, "order_number"))
    if _contains(term, order.invoice_number):
        candidates.append((WEIGHT_INVOICE_NUMBER, "invoice_number"))
    if _contains(term, order.customer_po_number):
        candidates.append((WEIGHT_CUSTOMER_PO, "customer_po_number"))
    if order.customer_name:
        candidates.append((score(term, order.customer_name) * WEIGHT_CUSTOMER_NAME, "customer_name"))

    for item in order.items:
        candidates.append((score(term, item.name) * WEIGHT_ITEM_NAME, "item_name"))
        if _contains(term, item.sku):
            candidates.append((WEIGHT_ITEM_CODE, "item_sku"))
        if _contains(term, item.barcode):
            candidates.append((WEIGHT_ITEM_CODE, "item_barcode"))

    best_score, best_field = 0.0, None
    for value, field in candidates:
        # strict > keeps the first field listed on ties
        if value > best_score:
            best_score, best_field = value, field
    return best_score, best_field


def search_orders(query: str, orders: Iterable) -> list[SearchMatch]:
    """
    Rank orders against a free-text query.

    Drops anything under SCORE_FLOOR, sorts by score descending and keeps
    the top MAX_RESULTS. The sort is stable, so equal scores keep the order
    of the input collection.
    """
    if not query or not query.strip():
        return []

    matches = []
    for order in orders:
        value, field = score_order(query, order)
        if value >= SCORE_FLOOR:
            matches.append(SearchMatch(order=order, score=value, matched_field=field))

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:MAX_RESULTS]
