"""Item Editor

Free-text commands accepted while the user reviews the extracted items.
Input is trimmed and lowercased, then checked in this order:

    1. confirm tokens  sim, s, ok, confirmar, confirma
    2. deny tokens     não, nao, n, cancelar
    3. remove          "remover 2" / "remove 2"
    4. edit            "editar 1 para 10.00" / "1 = 10,50"
    5. anything else   → unknown

Indexes are 1-based. An out-of-range index leaves the list untouched and the
caller treats the message as not understood.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from app.models.flow import ExtractedItem

CONFIRM_TOKENS = {"sim", "s", "ok", "confirmar", "confirma"}
DENY_TOKENS = {"não", "nao", "n", "cancelar"}

REMOVE_PATTERN = re.compile(r"remov(?:er|e)\s+(\d+)")
EDIT_PATTERN = re.compile(r"(?:editar\s+)?(\d+)\s*(?:para|=)\s*([\d.,]+)")


class ItemCommandKind(str, Enum):
    CONFIRM = "confirm"
    DENY = "deny"
    REMOVE = "remove"
    EDIT = "edit"
    UNKNOWN = "unknown"


@dataclass
class ItemCommand:
    kind: ItemCommandKind
    index: Optional[int] = None  # 1-based, as typed by the user
    value: Optional[float] = None


def normalize_input(message: str) -> str:
    return message.strip().lower()


def is_confirm(message: str) -> bool:
    return normalize_input(message) in CONFIRM_TOKENS


def is_deny(message: str) -> bool:
    return normalize_input(message) in DENY_TOKENS


def parse_amount(raw: str) -> Optional[float]:
    """Parse "15,50" or "15.50". More than one separator is rejected."""
    candidate = raw.replace(",", ".")
    if candidate.count(".") > 1:
        return None
    try:
        value = float(candidate)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_item_command(message: str) -> ItemCommand:
    text = normalize_input(message)

    if text in CONFIRM_TOKENS:
        return ItemCommand(kind=ItemCommandKind.CONFIRM)
    if text in DENY_TOKENS:
        return ItemCommand(kind=ItemCommandKind.DENY)

    match = REMOVE_PATTERN.fullmatch(text)
    if match:
        return ItemCommand(kind=ItemCommandKind.REMOVE, index=int(match.group(1)))

    match = EDIT_PATTERN.fullmatch(text)
    if match:
        value = parse_amount(match.group(2))
        if value is not None:
            return ItemCommand(kind=ItemCommandKind.EDIT, index=int(match.group(1)), value=value)

    return ItemCommand(kind=ItemCommandKind.UNKNOWN)


def remove_item(items: List[ExtractedItem], index: int) -> Optional[ExtractedItem]:
    """Remove the item at a 1-based index. Returns it, or None when out of range."""
    if not 1 <= index <= len(items):
        return None
    return items.pop(index - 1)


def edit_item(items: List[ExtractedItem], index: int, value: float) -> Optional[ExtractedItem]:
    """Set an item's total price and recompute its unit price.

    Returns the edited item, or None when the index is out of range.
    """
    if not 1 <= index <= len(items):
        return None
    item = items[index - 1]
    item.total_price = value
    item.unit_price = value / item.quantity
    return item


def items_total(items: Sequence[ExtractedItem]) -> float:
    return round(sum(item.total_price for item in items), 2)
