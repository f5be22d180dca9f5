from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class MatchStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ACTIVE = "active"
    CONFIRMING = "confirming"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Every status change goes through this table; terminal states have no exits.
MATCH_TRANSITIONS: dict[MatchStatus, frozenset[MatchStatus]] = {
    MatchStatus.PENDING: frozenset({MatchStatus.ACCEPTED, MatchStatus.CANCELLED}),
    MatchStatus.ACCEPTED: frozenset({MatchStatus.ACTIVE}),
    MatchStatus.ACTIVE: frozenset({MatchStatus.CONFIRMING}),
    MatchStatus.CONFIRMING: frozenset({MatchStatus.CONFIRMING, MatchStatus.COMPLETED, MatchStatus.DISPUTED}),
    MatchStatus.DISPUTED: frozenset({MatchStatus.COMPLETED}),
    MatchStatus.COMPLETED: frozenset(),
    MatchStatus.CANCELLED: frozenset(),
}

OPEN_MATCH_STATUSES = (
    MatchStatus.PENDING,
    MatchStatus.ACCEPTED,
    MatchStatus.ACTIVE,
    MatchStatus.CONFIRMING,
)


class TransactionType(str, Enum):
    WAGER_LOCK = "wager_lock"
    WAGER_WIN = "wager_win"
    WAGER_REFUND = "wager_refund"
    PLATFORM_FEE = "platform_fee"
    CAMPAIGN_REWARD = "campaign_reward"
    TEAM_CONTRIBUTION = "team_contribution"
    TEAM_PAYOUT = "team_payout"
    CREDIT_PURCHASE = "credit_purchase"
    WITHDRAWAL_REQUEST = "withdrawal_request"
    WITHDRAWAL_REFUND = "withdrawal_refund"


class BalanceField(str, Enum):
    CREDITS = "credits"
    WITHDRAWABLE_CREDITS = "withdrawable_credits"


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(BaseModel):
    id: UUID
    email: Optional[str] = None
    name: str = ""
    credits: int = 0
    withdrawable_credits: int = 0
    is_admin: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Team(BaseModel):
    id: UUID
    name: str
    tag: str = ""
    owner_id: UUID
    credits: int = 0
    wins: int = 0
    losses: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Match(BaseModel):
    id: UUID
    challenger_team_id: UUID
    challenged_team_id: UUID
    wager_credits: int
    campaign_id: Optional[UUID] = None
    status: MatchStatus = MatchStatus.PENDING
    game: str = "bloodstrike"
    game_mode: str = "standard"
    best_of: int = 1
    message: Optional[str] = None
    share_token: Optional[str] = None
    challenger_confirmed_winner: Optional[UUID] = None
    challenged_confirmed_winner: Optional[UUID] = None
    winner_id: Optional[UUID] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def team_ids(self) -> tuple[UUID, UUID]:
        return (self.challenger_team_id, self.challenged_team_id)

    @property
    def is_campaign_match(self) -> bool:
        return self.campaign_id is not None

    def can_transition(self, target: MatchStatus) -> bool:
        return target in MATCH_TRANSITIONS[self.status]

    def opponent_of(self, team_id: UUID) -> UUID:
        return self.challenged_team_id if team_id == self.challenger_team_id else self.challenger_team_id

    def both_confirmed(self) -> bool:
        return self.challenger_confirmed_winner is not None and self.challenged_confirmed_winner is not None


class Transaction(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    team_id: Optional[UUID] = None
    match_id: Optional[UUID] = None
    type: TransactionType
    credits: int
    balance_field: Optional[BalanceField] = None
    credits_after: Optional[int] = None
    description: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Campaign(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    prize_pool_credits: int
    remaining_pool_credits: int
    reward_per_win: int
    status: CampaignStatus
    start_date: datetime
    end_date: datetime
    created_by: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def pool_covers_reward(self) -> bool:
        return self.remaining_pool_credits >= self.reward_per_win


class CampaignParticipant(BaseModel):
    id: UUID
    campaign_id: UUID
    team_id: UUID
    credits_won: int = 0
    matches_played: int = 0
    matches_won: int = 0
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CampaignMatch(BaseModel):
    id: UUID
    campaign_id: UUID
    match_id: UUID
    team1_id: UUID
    team2_id: UUID
    winner_id: Optional[UUID] = None
    reward_awarded: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BankDetails(BaseModel):
    bank_name: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)
    account_name: str = Field(..., min_length=1)


class WithdrawalRequest(BaseModel):
    id: UUID
    user_id: UUID
    credits_requested: int
    fee_credits: int
    net_credits: int
    amount_usd_cents: int
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    bank_details: BankDetails
    admin_notes: Optional[str] = None
    processed_by: Optional[UUID] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def reserved_credits(self) -> int:
        return self.credits_requested + self.fee_credits

    def can_decide(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class CreditPurchase(BaseModel):
    id: UUID
    user_id: UUID
    reference: str
    credits_awarded: int
    amount_paid_cents: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateMatchRequest(BaseModel):
    challenger_team_id: UUID
    challenged_team_id: UUID
    wager_credits: int = Field(default=0, ge=0)
    campaign_id: Optional[UUID] = None
    game: str = "bloodstrike"
    game_mode: str = "standard"
    best_of: int = Field(default=1, ge=1)
    message: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "challenger_team_id": "7a0c6c3e-5f0e-4a53-9d0e-0c1a2b3c4d5e",
            "challenged_team_id": "8b1d7d4f-6a1f-4b64-8e1f-1d2b3c4d5e6f",
            "wager_credits": 100,
            "best_of": 3,
        }
    })


class CampaignChallengeRequest(BaseModel):
    challenger_team_id: UUID
    challenged_team_id: UUID
    game: str = "bloodstrike"
    game_mode: str = "standard"
    best_of: int = Field(default=1, ge=1)
    message: Optional[str] = None


class ConfirmWinnerRequest(BaseModel):
    winner_id: UUID


class ResolveDisputeRequest(BaseModel):
    winner_id: UUID


class CreateCampaignRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    prize_pool_credits: int = Field(..., gt=0)
    reward_per_win: int = Field(..., gt=0)
    start_date: datetime
    end_date: datetime
    status: CampaignStatus = CampaignStatus.ACTIVE


class JoinCampaignRequest(BaseModel):
    team_id: UUID


class CreateWithdrawalRequest(BaseModel):
    credits: int
    bank_details: BankDetails


class AdminDecisionRequest(BaseModel):
    admin_notes: Optional[str] = None


class ContributeRequest(BaseModel):
    team_id: UUID
    credits: int = Field(..., gt=0)


class TeamPayoutRequest(BaseModel):
    team_id: UUID
    credits: int = Field(..., gt=0)
    recipient_id: Optional[UUID] = None


class PurchaseConfirmation(BaseModel):
    """Result of a confirmed payment-gateway charge, keyed by the gateway reference."""
    user_id: UUID
    credits: int = Field(..., gt=0)
    reference: str = Field(..., min_length=1, description="External payment reference, used as idempotency key")
    amount_paid_cents: Optional[int] = None


class CanBattleResponse(BaseModel):
    can_battle: bool
    match_count: int


class LedgerHistoryResponse(BaseModel):
    entries: list[Transaction]
    total_count: int


class UserStats(BaseModel):
    user_id: UUID
    total_wins: int
    total_losses: int
    total_earnings: int
    active_matches: int


class PurchaseResponse(BaseModel):
    purchase: CreditPurchase
    ledger_entry: Optional[Transaction] = None
    message: str
