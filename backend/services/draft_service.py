"""
Draft Service — hands a parsed bill over to the working item list.

The parser never assigns ids or decides where the tax came from; that is
done here, on the way out to the client:
  - every item gets a fresh id and an empty assignee list
  - a detected tax is flagged as parsed (machine-detected, not user-entered)
  - the detected total is checked against items + tax
"""
import logging
import uuid
from typing import Optional

from models.schemas import BillItem, BillTax
from services.receipt_parser import ParsedBillDraft

logger = logging.getLogger("billscan.draft")

# Allowed rounding slack when checking items + tax against the printed total
TOTAL_TOLERANCE = 0.02


def new_item_id() -> str:
    return uuid.uuid4().hex


def ingest_draft(draft: ParsedBillDraft) -> tuple[list[BillItem], Optional[BillTax]]:
    """Assign ids to draft items and mark the detected tax as parsed."""
    items = [
        BillItem(
            id=new_item_id(),
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            assigned_to=[],
            confidence=item.confidence,
        )
        for item in draft.items
    ]

    tax = None
    if draft.tax is not None:
        tax = BillTax(kind=draft.tax.kind, value=draft.tax.value, parsed=True)

    logger.debug("Ingested %d items (tax=%s)", len(items), tax.kind if tax else None)
    return items, tax


def verify_total(draft: ParsedBillDraft) -> tuple[bool, str]:
    """
    Check sum(items) + tax against the total read off the receipt.
    The printed subtotal is deliberately ignored: it can be read correctly even
    when items were dropped, so we always rebuild from the items.
    Returns (is_valid, message).
    """
    if draft.total is None:
        return False, "Could not find a total on the receipt."

    items_sum = round(sum(i.unit_price * i.quantity for i in draft.items), 2)
    if not items_sum:
        return False, "No line items found to verify against."

    tax = draft.tax.amount if draft.tax else 0.0
    computed = round(items_sum + tax, 2)
    expected = round(draft.total, 2)
    diff = abs(computed - expected)

    if diff <= TOTAL_TOLERANCE:
        return True, f"Items {items_sum:.2f} + Tax {tax:.2f} = {computed:.2f} ✓"
    return False, (
        f"Mismatch: items {items_sum:.2f} + tax {tax:.2f} = {computed:.2f}"
        f" ≠ receipt total {expected:.2f} (diff {diff:.2f})."
        f" Check for missing or misread items."
    )
