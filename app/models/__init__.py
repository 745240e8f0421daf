"""Models package for the receipt expense flow.

Ledger contracts: Wallet, WalletType, transaction request/result
Flow state: FlowStep, payload variants (tagged union), FlowState, FlowResult
"""

from app.models.flow import (
    AwaitingFinalConfirmationPayload,
    AwaitingItemsConfirmationPayload,
    AwaitingWalletPayload,
    AwaitingWalletTypePayload,
    CommitResult,
    CommitSummary,
    ExtractedItem,
    FlowResult,
    FlowState,
    FlowStep,
    ReceiptContext,
    WalletRef,
)
from app.models.ledger import (
    WALLET_TYPES,
    TransactionRequest,
    TransactionResult,
    Wallet,
    WalletCreationResult,
    WalletType,
)

__all__ = [
    "AwaitingFinalConfirmationPayload",
    "AwaitingItemsConfirmationPayload",
    "AwaitingWalletPayload",
    "AwaitingWalletTypePayload",
    "CommitResult",
    "CommitSummary",
    "ExtractedItem",
    "FlowResult",
    "FlowState",
    "FlowStep",
    "ReceiptContext",
    "WalletRef",
    "WALLET_TYPES",
    "TransactionRequest",
    "TransactionResult",
    "Wallet",
    "WalletCreationResult",
    "WalletType",
]
