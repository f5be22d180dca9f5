import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .auth import Caller, require_member, require_owner
from .errors import ForbiddenError, IdempotencyConflictError, InvalidInputError
from .ledger import AccountRef, Ledger
from .models import (
    OPEN_MATCH_STATUSES,
    BalanceField,
    ContributeRequest,
    CreditPurchase,
    PurchaseConfirmation,
    PurchaseResponse,
    Team,
    TeamPayoutRequest,
    TransactionType,
    UserStats,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

EARNING_TYPES = (TransactionType.WAGER_WIN, TransactionType.CAMPAIGN_REWARD)


class WalletService:
    """Credit movements between users and teams, and credits bought through the payment gateway."""

    def __init__(self, storage: InMemoryStorage, ledger: Optional[Ledger] = None):
        self.storage = storage
        self.ledger = ledger or Ledger(storage)

    def contribute(self, caller: Caller, request: ContributeRequest) -> Team:
        with self.storage.atomic():
            self.storage.get_row("teams", request.team_id)
            require_member(self.storage, caller, request.team_id, "Not a team member")
            self.ledger.reserve(
                AccountRef.user(caller.user_id),
                request.credits,
                TransactionType.TEAM_CONTRIBUTION,
                "Contributed credits to team",
            )
            self.ledger.credit(
                AccountRef.team(request.team_id),
                request.credits,
                TransactionType.TEAM_CONTRIBUTION,
                f"Contribution from member {caller.user_id}",
            )
            team_data = self.storage.teams[request.team_id]

        logger.info("User %s contributed %d credits to team %s", caller.user_id, request.credits, request.team_id)
        return Team(**team_data)

    def payout_from_team(self, caller: Caller, request: TeamPayoutRequest) -> Team:
        """Move team credits into a member's withdrawable balance. Captain only."""
        recipient_id = request.recipient_id or caller.user_id
        with self.storage.atomic():
            team_data = self.storage.get_row("teams", request.team_id)
            require_owner(self.storage, caller, request.team_id, "Only team captain can distribute payouts")
            if not self.storage.is_team_member(request.team_id, recipient_id):
                raise InvalidInputError("Recipient is not a team member")

            self.ledger.reserve(
                AccountRef.team(request.team_id),
                request.credits,
                TransactionType.TEAM_PAYOUT,
                f"Payout to member {recipient_id}",
            )
            self.ledger.credit(
                AccountRef.user(recipient_id, BalanceField.WITHDRAWABLE_CREDITS),
                request.credits,
                TransactionType.TEAM_PAYOUT,
                f"Payout from team {team_data['name']}",
            )

        logger.info("Team %s paid %d credits to %s", request.team_id, request.credits, recipient_id)
        return Team(**team_data)

    def award_purchase(self, caller: Caller, confirmation: PurchaseConfirmation) -> PurchaseResponse:
        """Credit a confirmed gateway payment exactly once per external reference.

        The payment must belong to the caller; a confirmation naming another
        user is refused before anything is read or written.
        """
        if confirmation.user_id != caller.user_id:
            logger.warning(
                "User %s tried to claim payment %s for %s", caller.user_id, confirmation.reference, confirmation.user_id
            )
            raise ForbiddenError("Transaction does not belong to user")
        with self.storage.atomic():
            existing_id = self.storage.purchase_reference_index.get(confirmation.reference)
            if existing_id:
                existing = CreditPurchase(**self.storage.credit_purchases[existing_id])
                if existing.user_id != confirmation.user_id or existing.credits_awarded != confirmation.credits:
                    logger.warning("Payment reference %s reused with different terms", confirmation.reference)
                    raise IdempotencyConflictError(
                        f"Payment reference {confirmation.reference} was already used for a different purchase"
                    )
                return PurchaseResponse(purchase=existing, message="Purchase already processed (idempotent return)")

            entry = self.ledger.credit(
                AccountRef.user(confirmation.user_id),
                confirmation.credits,
                TransactionType.CREDIT_PURCHASE,
                f"Purchased {confirmation.credits} credits",
            )
            purchase_id = uuid4()
            purchase_data = {
                "id": purchase_id,
                "user_id": confirmation.user_id,
                "reference": confirmation.reference,
                "credits_awarded": confirmation.credits,
                "amount_paid_cents": confirmation.amount_paid_cents,
                "created_at": datetime.now(timezone.utc),
            }
            self.storage.insert("credit_purchases", purchase_id, purchase_data)
            self.storage.insert("purchase_reference_index", confirmation.reference, purchase_id)

        logger.info("Awarded %d purchased credits to %s", confirmation.credits, confirmation.user_id)
        return PurchaseResponse(
            purchase=CreditPurchase(**purchase_data),
            ledger_entry=entry,
            message="Credits awarded successfully",
        )

    def user_stats(self, user_id: UUID) -> UserStats:
        self.storage.get_row("users", user_id)
        team_ids = set(self.storage.team_ids_for_user(user_id))
        teams = [self.storage.teams[t] for t in team_ids]

        earnings = sum(
            e["credits"] for e in self.storage.transactions.values()
            if e["team_id"] in team_ids and e["type"] in EARNING_TYPES
        )
        active = sum(
            1 for m in self.storage.matches.values()
            if m["status"] in OPEN_MATCH_STATUSES
            and (m["challenger_team_id"] in team_ids or m["challenged_team_id"] in team_ids)
        )
        return UserStats(
            user_id=user_id,
            total_wins=sum(t["wins"] for t in teams),
            total_losses=sum(t["losses"] for t in teams),
            total_earnings=earnings,
            active_matches=active,
        )
