"""
Append-only credit ledger and the reserve / credit primitive.

Every balance mutation in the system goes through ``Ledger.reserve`` or
``Ledger.credit``; each call changes exactly one balance field of exactly
one account and appends exactly one entry describing the change. Entries
are never updated or removed; corrections are new offsetting entries.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict

from .errors import InsufficientFundsError, InvalidInputError
from .models import BalanceField, LedgerHistoryResponse, Transaction, TransactionType
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class AccountRef(BaseModel):
    table: str
    id: UUID
    field: BalanceField = BalanceField.CREDITS

    model_config = ConfigDict(frozen=True)

    @classmethod
    def team(cls, team_id: UUID) -> "AccountRef":
        return cls(table="teams", id=team_id)

    @classmethod
    def user(cls, user_id: UUID, field: BalanceField = BalanceField.CREDITS) -> "AccountRef":
        return cls(table="users", id=user_id, field=field)

    @property
    def label(self) -> str:
        return f"{self.table[:-1]} {self.id}"


class Ledger:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def reserve(
        self,
        account: AccountRef,
        amount: int,
        tx_type: TransactionType,
        description: str,
        match_id: Optional[UUID] = None,
    ) -> Transaction:
        """Debit ``amount`` if the balance covers it; nothing changes otherwise."""
        if amount <= 0:
            raise InvalidInputError(f"Reservation amount must be positive, got {amount}")

        balance_after = self.storage.try_adjust(account.table, account.id, account.field.value, -amount)
        if balance_after is None:
            available = self.balance_of(account)
            raise InsufficientFundsError(
                f"Insufficient {account.field.value} on {account.label}: need {amount}, have {available}",
                details={"required": amount, "available": available},
            )
        return self._append(account, -amount, balance_after, tx_type, description, match_id)

    def credit(
        self,
        account: AccountRef,
        amount: int,
        tx_type: TransactionType,
        description: str,
        match_id: Optional[UUID] = None,
    ) -> Transaction:
        if amount <= 0:
            raise InvalidInputError(f"Credit amount must be positive, got {amount}")

        balance_after = self.storage.try_adjust(account.table, account.id, account.field.value, amount)
        return self._append(account, amount, balance_after, tx_type, description, match_id)

    def record(
        self,
        tx_type: TransactionType,
        credits: int,
        description: str,
        match_id: Optional[UUID] = None,
    ) -> Transaction:
        """Append an entry with no account attached, e.g. the platform fee."""
        return self._append(None, credits, None, tx_type, description, match_id)

    def balance_of(self, account: AccountRef) -> int:
        return self.storage.get_row(account.table, account.id)[account.field.value]

    def entries_for_user(self, user_id: UUID) -> list[Transaction]:
        return self._query(lambda e: e["user_id"] == user_id)

    def entries_for_team(self, team_id: UUID) -> list[Transaction]:
        return self._query(lambda e: e["team_id"] == team_id)

    def entries_for_match(self, match_id: UUID) -> list[Transaction]:
        return self._query(lambda e: e["match_id"] == match_id)

    def match_net(self, match_id: UUID) -> int:
        return sum(e.credits for e in self.entries_for_match(match_id))

    def get_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        entries = self.entries_for_user(user_id)
        entries.reverse()
        return LedgerHistoryResponse(entries=entries[offset:offset + limit], total_count=len(entries))

    def _append(
        self,
        account: Optional[AccountRef],
        credits: int,
        balance_after: Optional[int],
        tx_type: TransactionType,
        description: str,
        match_id: Optional[UUID],
    ) -> Transaction:
        entry_id = uuid4()
        entry_data = {
            "id": entry_id,
            "user_id": account.id if account and account.table == "users" else None,
            "team_id": account.id if account and account.table == "teams" else None,
            "match_id": match_id,
            "type": tx_type,
            "credits": credits,
            "balance_field": account.field if account else None,
            "credits_after": balance_after,
            "description": description,
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.insert("transactions", entry_id, entry_data)
        logger.debug("Ledger %s %+d on %s", tx_type.value, credits, account.label if account else "platform")
        return Transaction(**entry_data)

    def _query(self, predicate) -> list[Transaction]:
        return [Transaction(**e) for e in self.storage.transactions.values() if predicate(e)]
