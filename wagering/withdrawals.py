import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .auth import Caller, require_admin
from .config import Settings, get_settings
from .errors import InvalidInputError, InvalidStateError
from .ledger import AccountRef, Ledger
from .models import (
    AdminDecisionRequest,
    BalanceField,
    CreateWithdrawalRequest,
    TransactionType,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class WithdrawalService:
    """Reserve withdrawable credits on request; approval keeps them, rejection refunds them."""

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Optional[Ledger] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.ledger = ledger or Ledger(storage)
        self.settings = settings or get_settings()

    def request_withdrawal(self, caller: Caller, request: CreateWithdrawalRequest) -> WithdrawalRequest:
        minimum = self.settings.min_withdrawal_credits
        if request.credits < minimum:
            raise InvalidInputError(f"Minimum withdrawal is {minimum} credits")

        fee = self.settings.withdrawal_fee_credits
        total_required = request.credits + fee
        usd_cents = request.credits * self.settings.usd_cents_per_100_credits // 100

        with self.storage.atomic():
            self.ledger.reserve(
                AccountRef.user(caller.user_id, BalanceField.WITHDRAWABLE_CREDITS),
                total_required,
                TransactionType.WITHDRAWAL_REQUEST,
                f"Withdrawal request: {request.credits} credits (${usd_cents / 100:.2f}) + {fee} fee",
            )

            withdrawal_id = uuid4()
            withdrawal_data = {
                "id": withdrawal_id,
                "user_id": caller.user_id,
                "credits_requested": request.credits,
                "fee_credits": fee,
                "net_credits": request.credits,
                "amount_usd_cents": usd_cents,
                "status": WithdrawalStatus.PENDING,
                "bank_details": request.bank_details.model_dump(),
                "admin_notes": None,
                "processed_by": None,
                "created_at": datetime.now(timezone.utc),
                "processed_at": None,
            }
            self.storage.insert("withdrawal_requests", withdrawal_id, withdrawal_data)

        logger.info("Withdrawal %s requested by %s for %d credits", withdrawal_id, caller.user_id, request.credits)
        return WithdrawalRequest(**withdrawal_data)

    def approve(self, caller: Caller, withdrawal_id: UUID, request: AdminDecisionRequest) -> WithdrawalRequest:
        require_admin(caller)
        with self.storage.atomic():
            withdrawal_data = self._pending(withdrawal_id, "approve")
            # Funds left the withdrawable balance at request time.
            self._decide(withdrawal_data, WithdrawalStatus.APPROVED, caller, request)

        logger.info("Withdrawal %s approved by %s", withdrawal_id, caller.user_id)
        return WithdrawalRequest(**withdrawal_data)

    def reject(self, caller: Caller, withdrawal_id: UUID, request: AdminDecisionRequest) -> WithdrawalRequest:
        require_admin(caller)
        with self.storage.atomic():
            withdrawal_data = self._pending(withdrawal_id, "reject")
            withdrawal = WithdrawalRequest(**withdrawal_data)
            self.ledger.credit(
                AccountRef.user(withdrawal.user_id, BalanceField.WITHDRAWABLE_CREDITS),
                withdrawal.reserved_credits,
                TransactionType.WITHDRAWAL_REFUND,
                "Withdrawal request rejected - credits refunded",
            )
            self._decide(withdrawal_data, WithdrawalStatus.REJECTED, caller, request)

        logger.info("Withdrawal %s rejected by %s", withdrawal_id, caller.user_id)
        return WithdrawalRequest(**withdrawal_data)

    def get_withdrawal(self, withdrawal_id: UUID) -> WithdrawalRequest:
        return WithdrawalRequest(**self.storage.get_row("withdrawal_requests", withdrawal_id))

    def list_for_user(self, caller: Caller) -> list[WithdrawalRequest]:
        return self._list(lambda w: w["user_id"] == caller.user_id)

    def list_all(self, caller: Caller, status: Optional[WithdrawalStatus] = None) -> list[WithdrawalRequest]:
        require_admin(caller)
        return self._list(lambda w: status is None or w["status"] == status)

    def _pending(self, withdrawal_id: UUID, action: str) -> dict:
        withdrawal_data = self.storage.get_row("withdrawal_requests", withdrawal_id)
        if not WithdrawalRequest(**withdrawal_data).can_decide():
            raise InvalidStateError(
                f"Cannot {action} withdrawal in {withdrawal_data['status'].value} state. Only pending requests can be decided."
            )
        return withdrawal_data

    def _decide(self, withdrawal_data: dict, status: WithdrawalStatus, caller: Caller, request: AdminDecisionRequest):
        withdrawal_data["status"] = status
        withdrawal_data["admin_notes"] = request.admin_notes
        withdrawal_data["processed_by"] = caller.user_id
        withdrawal_data["processed_at"] = datetime.now(timezone.utc)

    def _list(self, predicate) -> list[WithdrawalRequest]:
        requests = [WithdrawalRequest(**w) for w in self.storage.withdrawal_requests.values() if predicate(w)]
        requests.sort(key=lambda w: w.created_at, reverse=True)
        return requests
