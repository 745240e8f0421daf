"""Wallet Resolver

Maps a free-text reply onto an existing wallet, a request to create a new one,
or one of the fixed wallet types.

Resolution order for a wallet reply:
    1. "0" / "nova" / "criar"            → create new wallet (name asked next)
    2. 1-based index into the shown list → that wallet
    3. case-insensitive substring match  → first matching wallet
       (reply inside name, or name inside reply)
    4. anything else                     → create new wallet with reply as name
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from app.models.ledger import WALLET_TYPES, Wallet, WalletType

NEW_WALLET_TOKENS = {"0", "nova", "criar"}


class WalletSelectionKind(str, Enum):
    EXISTING = "existing"
    NEW_UNNAMED = "new_unnamed"
    NEW_NAMED = "new_named"
    UNRECOGNIZED = "unrecognized"


@dataclass
class WalletSelection:
    kind: WalletSelectionKind
    wallet: Optional[Wallet] = None
    new_wallet_name: Optional[str] = None


def _parse_index(text: str) -> Optional[int]:
    if re.fullmatch(r"[0-9]+", text):
        return int(text)
    return None


def resolve_wallet_selection(message: str, wallets: Sequence[Wallet]) -> WalletSelection:
    text = message.strip()
    lowered = text.lower()

    if not lowered:
        return WalletSelection(kind=WalletSelectionKind.UNRECOGNIZED)

    if lowered in NEW_WALLET_TOKENS:
        return WalletSelection(kind=WalletSelectionKind.NEW_UNNAMED)

    index = _parse_index(text)
    if index is not None and 1 <= index <= len(wallets):
        return WalletSelection(kind=WalletSelectionKind.EXISTING, wallet=wallets[index - 1])

    for wallet in wallets:
        name = wallet.name.lower()
        if lowered in name or (name and name in lowered):
            return WalletSelection(kind=WalletSelectionKind.EXISTING, wallet=wallet)

    return WalletSelection(kind=WalletSelectionKind.NEW_NAMED, new_wallet_name=text)


def resolve_wallet_type(message: str, types: List[WalletType] = WALLET_TYPES) -> Optional[WalletType]:
    """Match a reply against the wallet types by 1-based index, name substring or id."""
    text = message.strip()
    lowered = text.lower()
    if not lowered:
        return None

    index = _parse_index(text)
    if index is not None and 1 <= index <= len(types):
        return types[index - 1]

    for wallet_type in types:
        if lowered in wallet_type.name.lower() or lowered == wallet_type.id:
            return wallet_type
    return None
