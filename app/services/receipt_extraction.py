"""Receipt Extraction Adapter

Wraps the extraction collaborator (vision model) and turns its raw JSON into a
ReceiptContext ready to be shown to the user.

Rules:
- isReceipt false          → NotAReceipt (flow never starts)
- no items                 → NoItemsExtracted (flow never starts)
- Σ item totals differs from the reported total by more than 0.10
                           → every item is rescaled by reported / computed
- Reconciliation always runs before items are shown
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from app.models.flow import ExtractedItem, ReceiptContext
from app.utils.helpers.exceptions import NoItemsExtracted, NotAReceipt

logger = logging.getLogger(__name__)

RECONCILIATION_TOLERANCE = 0.10


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        return None


def _to_quantity(value: Any) -> int:
    number = _to_float(value)
    if number is None or number < 1:
        return 1
    return int(number)


def normalize_items(raw_items: List[Dict[str, Any]]) -> List[ExtractedItem]:
    """Coerce loosely-typed extractor items into ExtractedItem objects."""
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        items.append(ExtractedItem(
            name=str(raw.get("name") or "Item"),
            quantity=_to_quantity(raw.get("quantity")),
            unit_price=_to_float(raw.get("unitPrice")) or 0.0,
            total_price=_to_float(raw.get("totalPrice")) or 0.0,
            category=raw.get("category") or None,
        ))
    return items


def reconcile_items(items: List[ExtractedItem], reported_total: float) -> List[ExtractedItem]:
    """Rescale item prices so they add up to the reported total.

    Items are modified in place and also returned. Nothing happens when the
    difference is within RECONCILIATION_TOLERANCE or the computed total is zero.
    """
    computed_total = sum(item.total_price for item in items)
    if computed_total <= 0 or abs(computed_total - reported_total) <= RECONCILIATION_TOLERANCE:
        return items

    ratio = reported_total / computed_total
    logger.info(
        f"Reconciling {len(items)} items: computed {computed_total:.2f} vs reported {reported_total:.2f} "
        f"(ratio {ratio:.4f})"
    )
    for item in items:
        item.total_price = round(item.total_price * ratio, 2)
        item.unit_price = round(item.total_price / item.quantity, 2)
    return items


def build_receipt_context(raw: Dict[str, Any], caption: str = "") -> ReceiptContext:
    """Validate an extractor answer and produce a reconciled ReceiptContext.

    Raises:
        NotAReceipt: the image is not a receipt
        NoItemsExtracted: the receipt has no readable items
    """
    if not raw.get("isReceipt"):
        raise NotAReceipt("Extractor reported the image is not a receipt")

    raw_items = raw.get("items") or []
    items = normalize_items(raw_items) if isinstance(raw_items, list) else []
    if not items:
        raise NoItemsExtracted("Extractor returned no items")

    computed_total = sum(item.total_price for item in items)
    reported_total = _to_float(raw.get("totalAmount"))
    if not reported_total:
        reported_total = computed_total

    reconcile_items(items, reported_total)

    return ReceiptContext(
        items=items,
        total_amount=round(reported_total, 2),
        establishment=raw.get("establishment") or None,
        date=raw.get("date") or None,
        category=raw.get("suggestedCategory") or None,
        caption=caption or "",
    )


class ReceiptExtractionService:
    """Calls the extraction collaborator and reconciles its result."""

    def __init__(self, extractor):
        """
        Args:
            extractor: Object exposing ``extract(image_base64, mime_type, caption) -> dict``
                       (OpenAIReceiptExtractor in production)
        """
        self.extractor = extractor

    def extract(self, image_base64: str, mime_type: str, caption: str = "") -> ReceiptContext:
        raw = self.extractor.extract(image_base64, mime_type, caption)
        receipt = build_receipt_context(raw, caption)
        logger.info(
            f"Extracted {len(receipt.items)} items from {receipt.establishment or 'unknown establishment'}, "
            f"total {receipt.total_amount:.2f}"
        )
        return receipt
