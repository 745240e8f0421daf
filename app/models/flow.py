"""Expense Flow State Model

Conversational expense-capture workflow: one receipt image becomes one or more
confirmed ledger transactions through a short WhatsApp dialogue.

Key Principles:
- Exactly one active flow per (tenant_id, conversation_id)
- An absent record IS the idle state (idle is never persisted)
- The payload is a tagged union keyed by ``step``; each variant carries only
  the fields valid for that step
- Payloads are validated at the repository read boundary

Step Graph:
  (image)                      → AWAITING_WALLET
  AWAITING_WALLET              → AWAITING_WALLET_TYPE | AWAITING_ITEMS_CONFIRMATION
  AWAITING_WALLET_TYPE         → AWAITING_WALLET_TYPE | AWAITING_ITEMS_CONFIRMATION | idle
  AWAITING_ITEMS_CONFIRMATION  → AWAITING_ITEMS_CONFIRMATION | AWAITING_FINAL_CONFIRMATION | idle
  AWAITING_FINAL_CONFIRMATION  → idle
  any step + cancel token      → idle
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.models.ledger import Wallet


class FlowStep(str, Enum):
    """Named states of the expense flow."""

    IDLE = "idle"
    AWAITING_WALLET = "awaiting_wallet"
    AWAITING_WALLET_TYPE = "awaiting_wallet_type"
    AWAITING_ITEMS_CONFIRMATION = "awaiting_items_confirmation"
    AWAITING_FINAL_CONFIRMATION = "awaiting_final_confirmation"


class ExtractedItem(BaseModel):
    """A single receipt line item, mutable while the user edits the list."""

    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = 0.0
    total_price: float = 0.0
    category: Optional[str] = None


class ReceiptContext(BaseModel):
    """Extraction result carried through every step of the flow."""

    items: List[ExtractedItem] = Field(default_factory=list)
    total_amount: float = 0.0
    establishment: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = Field(
        default=None,
        description="Category suggested by the extractor for the whole receipt",
    )
    caption: str = ""


class WalletRef(BaseModel):
    """The wallet chosen (or created) for this flow."""

    id: str
    name: str


class AwaitingWalletPayload(BaseModel):
    step: Literal["awaiting_wallet"] = "awaiting_wallet"
    receipt: ReceiptContext
    wallets: List[Wallet] = Field(
        default_factory=list,
        description="Wallet list shown to the user; numeric replies index this snapshot",
    )


class AwaitingWalletTypePayload(BaseModel):
    step: Literal["awaiting_wallet_type"] = "awaiting_wallet_type"
    receipt: ReceiptContext
    new_wallet_name: Optional[str] = None


class AwaitingItemsConfirmationPayload(BaseModel):
    step: Literal["awaiting_items_confirmation"] = "awaiting_items_confirmation"
    receipt: ReceiptContext
    wallet: WalletRef
    items: List[ExtractedItem]


class AwaitingFinalConfirmationPayload(BaseModel):
    step: Literal["awaiting_final_confirmation"] = "awaiting_final_confirmation"
    receipt: ReceiptContext
    wallet: WalletRef
    items: List[ExtractedItem]


FlowPayload = Annotated[
    Union[
        AwaitingWalletPayload,
        AwaitingWalletTypePayload,
        AwaitingItemsConfirmationPayload,
        AwaitingFinalConfirmationPayload,
    ],
    Field(discriminator="step"),
]

flow_payload_adapter: TypeAdapter[FlowPayload] = TypeAdapter(FlowPayload)


class FlowState(BaseModel):
    """Persisted flow instance for one conversation.

    Attributes:
        tenant_id: Company/tenant that owns the WhatsApp instance
        conversation_id: Remote JID of the conversation
        payload: Step-specific data (tagged union)
        expires_at: Absolute expiry, renewed on every write, never on read
        updated_at: Timestamp of the last write
    """

    tenant_id: str
    conversation_id: str
    payload: FlowPayload
    expires_at: datetime
    updated_at: datetime

    @property
    def step(self) -> FlowStep:
        return FlowStep(self.payload.step)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class FlowResult(BaseModel):
    """Reply produced by every router operation."""

    success: bool
    response: str
    flow_ended: bool = False
    step: Optional[FlowStep] = Field(
        default=None,
        description="Step the conversation is in after this message (None once ended)",
    )


class CommitResult(BaseModel):
    """Per-item outcome of the final commit. Never persisted."""

    name: str
    total_price: float
    succeeded: bool
    message: Optional[str] = None


class CommitSummary(BaseModel):
    results: List[CommitResult] = Field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.results if not result.succeeded)

    @property
    def total(self) -> float:
        return round(sum(result.total_price for result in self.results), 2)

    @property
    def all_succeeded(self) -> bool:
        return self.failed_count == 0
