# Overview: Classifies scanned/typed tokens and resolves them to candidate orders.

"""
Document Locator

WHY: A cashier scans or types one token. It is either a receipt-like
identifier (order/invoice/receipt/return number) or something opaque that
is most likely a product barcode or SKU. Silent mis-resolution is worse
than asking, so ambiguity always surfaces as a candidate list.

PURITY: classify() and resolve() only read the indices they are given. The
caller rebuilds indices from current collections (build_order_index,
build_product_index); nothing is cached here. load_store_indices() is the
DB-backed convenience used by the routes.

RESOLUTION:
- receipt-like: exact, case-insensitive lookup by order number, invoice
  number, or the number of a return already processed against the order
  (a scanned return slip finds its original sale). No match => not found
  (caller may fall back to free-text search).
- opaque: product lookup by barcode, then SKU. Returnable-status orders
  containing the product, most recent first.
  0 => not found, 1 => found, >1 => ambiguous (never auto-picked).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from ..extensions import db
from ..models import Order, Product, ReturnRecord
from ..models.sales import RETURNABLE_ORDER_STATUSES


KIND_RECEIPT = "receipt-like"
KIND_OPAQUE = "opaque"

STATUS_FOUND = "found"
STATUS_AMBIGUOUS = "ambiguous"
STATUS_NOT_FOUND = "not_found"
STATUS_NOT_RETURNABLE = "not_returnable"

RECEIPT_PATTERNS = (
    re.compile(r"^(POS|RCP|INV|ORD|RTN)-", re.IGNORECASE),
    re.compile(r"^\d{4}-\d{2}-\d{4}$"),
    re.compile(r"^[A-Z]{2,4}-\d{4,}", re.IGNORECASE),
)


@dataclass(frozen=True)
class LocatorResult:
    kind: str
    status: str
    order: Order | None = None
    candidates: tuple = field(default_factory=tuple)
    product: Product | None = None

    @property
    def found(self) -> bool:
        return self.status == STATUS_FOUND

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "status": self.status,
            "order": self.order.to_dict(include_items=True) if self.order is not None else None,
            "candidates": [o.to_dict() for o in self.candidates],
            "product": self.product.to_dict() if self.product is not None else None,
        }


def normalize_identifier(value: str) -> str:
    """Normalize to uppercase, no spaces."""
    return value.upper().strip().replace(" ", "")


def classify(token: str) -> str:
    """Return KIND_RECEIPT or KIND_OPAQUE. Depends on the token alone."""
    value = token.strip()
    if any(pattern.search(value) for pattern in RECEIPT_PATTERNS):
        return KIND_RECEIPT
    return KIND_OPAQUE


def build_order_index(orders: Iterable[Order], returns: Iterable[ReturnRecord] = ()) -> dict[str, Order]:
    """
    Index orders by normalized order number and invoice number.

    returns: return records whose return_number should also lead to their
    order. Order and invoice numbers win on a collision.
    """
    index: dict[str, Order] = {}
    for order in orders:
        index[normalize_identifier(order.order_number)] = order
        if order.invoice_number:
            index.setdefault(normalize_identifier(order.invoice_number), order)
    for record in returns:
        index.setdefault(normalize_identifier(record.return_number), record.order)
    return index


def build_product_index(products: Iterable[Product]) -> dict[str, Product]:
    """
    Index active products by barcode and SKU.

    Barcodes win over SKUs when the same normalized value is both.
    """
    barcodes: dict[str, Product] = {}
    skus: dict[str, Product] = {}
    for product in products:
        if not product.is_active:
            continue
        if product.barcode:
            barcodes.setdefault(normalize_identifier(product.barcode), product)
        if product.sku:
            skus.setdefault(normalize_identifier(product.sku), product)
    return {**skus, **barcodes}


def _recency_key(order: Order):
    # Most recent first; id breaks ties so the order is deterministic
    return (order.ordered_at, order.id)


def resolve(
    token: str,
    order_index: dict[str, Order],
    product_index: dict[str, Product] | None = None,
    orders: Iterable[Order] = (),
) -> LocatorResult:
    """
    Resolve a token against prebuilt indices.

    `orders` is the collection searched for product hits; only
    returnable-status orders are considered there.
    """
    kind = classify(token)
    key = normalize_identifier(token)

    if kind == KIND_RECEIPT:
        order = order_index.get(key)
        if order is None:
            return LocatorResult(kind=kind, status=STATUS_NOT_FOUND)
        if order.status not in RETURNABLE_ORDER_STATUSES:
            return LocatorResult(kind=kind, status=STATUS_NOT_RETURNABLE, order=order)
        return LocatorResult(kind=kind, status=STATUS_FOUND, order=order)

    product = (product_index or {}).get(key)
    if product is None:
        return LocatorResult(kind=kind, status=STATUS_NOT_FOUND)

    matches = sorted(
        (
            o for o in orders
            if o.status in RETURNABLE_ORDER_STATUSES
            and any(item.product_id == product.id for item in o.items)
        ),
        key=_recency_key,
        reverse=True,
    )

    if not matches:
        return LocatorResult(kind=kind, status=STATUS_NOT_FOUND, product=product)
    if len(matches) == 1:
        return LocatorResult(kind=kind, status=STATUS_FOUND, order=matches[0], product=product)
    return LocatorResult(kind=kind, status=STATUS_AMBIGUOUS, candidates=tuple(matches), product=product)


def load_store_indices(store_id: int) -> tuple[dict[str, Order], dict[str, Product], list[Order]]:
    """Build fresh indices from the store's current orders and products."""
    orders = (
        db.session.query(Order)
        .filter(Order.store_id == store_id)
        .order_by(Order.id.asc())
        .all()
    )
    products = (
        db.session.query(Product)
        .filter(Product.store_id == store_id)
        .order_by(Product.id.asc())
        .all()
    )
    returns = (
        db.session.query(ReturnRecord)
        .filter(ReturnRecord.store_id == store_id)
        .order_by(ReturnRecord.id.asc())
        .all()
    )
    return build_order_index(orders, returns), build_product_index(products), orders


def locate(token: str, store_id: int) -> LocatorResult:
    """Classify and resolve a token against the store's current data."""
    order_index, product_index, orders = load_store_indices(store_id)
    return resolve(token, order_index, product_index, orders)
