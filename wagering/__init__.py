"""
Clan Wager Settlement Core

This module provides:
- Match lifecycle: challenge → accept → start → dual confirmation → settle / dispute
- Wager locks and refunds backed by an append-only credit ledger
- Platform-fee wager settlement and fixed-reward campaign settlement
- Campaign pairing cap (two battles per team pair per campaign)
- Withdrawal requests: reserve on request, refund on rejection
- Idempotent crediting of gateway-confirmed purchases
"""

from .models import (
    MatchStatus,
    TransactionType,
    CampaignStatus,
    WithdrawalStatus,
    Match,
    Transaction,
    Campaign,
    WithdrawalRequest,
)
from .service import WageringService
from .storage import InMemoryStorage

__all__ = [
    "MatchStatus",
    "TransactionType",
    "CampaignStatus",
    "WithdrawalStatus",
    "Match",
    "Transaction",
    "Campaign",
    "WithdrawalRequest",
    "WageringService",
    "InMemoryStorage",
]
