from __future__ import annotations

import base64
import logging
import struct
from decimal import Decimal
from typing import Iterable, List, Tuple

import base58

from .models import Holder

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

log = logging.getLogger(__name__)


def parse_owner_and_amount(account_data: bytes) -> Tuple[str, int] | None:
    """
    Standard token account layout (works for classic; Token-2022 keeps these offsets too).
    Mint(0-32) | Owner(32-64) | Amount(64-72)
    """
    if len(account_data) < 72:
        return None

    owner_bytes = account_data[32:64]
    amount_bytes = account_data[64:72]
    owner = base58.b58encode(owner_bytes).decode("ascii")
    amount = struct.unpack("<Q", amount_bytes)[0]
    return owner, amount


def to_ui_amount(raw_amount: int, decimals: int) -> Decimal:
    return Decimal(raw_amount).scaleb(-decimals)


def holders_from_b64(
    b64_items: Iterable[str],
    decimals: int,
    min_balance: Decimal,
) -> List[Holder]:
    """
    One Holder per token account at or above min_balance.
    Owners with several accounts show up several times; the analyzer dedups them.
    """
    holders: List[Holder] = []
    skipped = 0

    for b64_str in b64_items:
        try:
            raw = base64.b64decode(b64_str)
        except ValueError:
            skipped += 1
            continue

        parsed = parse_owner_and_amount(raw)
        if not parsed:
            skipped += 1
            continue

        owner, amount = parsed
        ui_amount = to_ui_amount(amount, decimals)
        if amount > 0 and ui_amount >= min_balance:
            holders.append(Holder(owner=owner, amount=ui_amount))

    if skipped:
        log.debug("Skipped %d undecodable token accounts", skipped)

    # Deterministic ordering (critical for reproducibility)
    holders.sort(key=lambda h: (h.owner, h.amount))
    return holders
