"""Commit Engine

Writes confirmed items to the ledger, one transaction per item.

Guarantees:
- Items are committed sequentially, in list order
- Not atomic: a later failure never rolls back earlier successes
- Every item is attempted; failures are recorded, not raised
- Category precedence: item category → receipt category → default category
"""

from __future__ import annotations

import logging
from typing import List

from app.models.flow import CommitResult, CommitSummary, ExtractedItem, ReceiptContext, WalletRef
from app.models.ledger import TransactionRequest

logger = logging.getLogger(__name__)


class CommitEngine:
    """Persist confirmed items as individual expense transactions."""

    def __init__(self, ledger_client, default_category: str = "Alimentação"):
        """
        Args:
            ledger_client: Object exposing ``create_transaction(tenant_id, TransactionRequest)``
            default_category: Used when neither the item nor the receipt has a category
        """
        self.ledger_client = ledger_client
        self.default_category = default_category

    def commit(
        self,
        tenant_id: str,
        receipt: ReceiptContext,
        wallet: WalletRef,
        items: List[ExtractedItem],
    ) -> CommitSummary:
        summary = CommitSummary()

        for item in items:
            request = TransactionRequest(
                amount=item.total_price,
                type="expense",
                category=item.category or receipt.category or self.default_category,
                item=item.name,
                establishment=receipt.establishment,
                date=receipt.date,
                wallet_id=wallet.id,
            )

            try:
                result = self.ledger_client.create_transaction(tenant_id, request)
                succeeded, message = result.success, result.message
            except Exception as exc:
                # One item's failure must not stop the remaining items
                logger.error(f"Transaction for '{item.name}' raised: {exc}")
                succeeded, message = False, str(exc)

            if not succeeded:
                logger.warning(f"Transaction for '{item.name}' failed: {message}")

            summary.results.append(CommitResult(
                name=item.name,
                total_price=item.total_price,
                succeeded=succeeded,
                message=message,
            ))

        logger.info(
            f"Committed {len(items)} items for tenant {tenant_id}: "
            f"{summary.succeeded_count} succeeded, {summary.failed_count} failed"
        )
        return summary
