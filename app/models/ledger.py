"""Ledger service contracts (wallets and transactions).

The ledger is the external system of record. Wallets are never owned
locally; the flow only quotes them by id when committing transactions.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Wallet(BaseModel):
    """External financial account as returned by the ledger API."""

    id: str
    name: str
    type: Optional[str] = None
    icon: Optional[str] = None
    balance: float = 0.0
    color: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        # Upstream ids may be numeric
        return str(value) if value is not None else value

    @field_validator("balance", mode="before")
    @classmethod
    def default_balance(cls, value):
        return 0.0 if value is None else value


class WalletType(BaseModel):
    id: str
    name: str
    icon: str


# Order matters: users pick a type by its 1-based position in this list.
WALLET_TYPES: List[WalletType] = [
    WalletType(id="checking", name="Conta Corrente", icon="🏦"),
    WalletType(id="credit", name="Cartão de Crédito", icon="💳"),
    WalletType(id="savings", name="Poupança", icon="🐷"),
    WalletType(id="cash", name="Dinheiro", icon="💵"),
    WalletType(id="investment", name="Investimentos", icon="📈"),
    WalletType(id="other", name="Outros", icon="💰"),
]


class WalletCreationResult(BaseModel):
    success: bool
    message: str = ""
    wallet: Optional[Wallet] = None


class TransactionRequest(BaseModel):
    """Body of a single ledger transaction creation."""

    amount: float
    type: str = Field(default="expense", description="'expense' or 'income'")
    category: str
    item: str
    establishment: Optional[str] = None
    date: Optional[str] = Field(default=None, description="YYYY-MM-DD; ledger client defaults to today")
    wallet_id: str


class TransactionResult(BaseModel):
    success: bool
    message: str = ""
