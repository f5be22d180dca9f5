import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .auth import Caller, require_admin, require_member, require_owner
from .config import Settings, get_settings
from .errors import InvalidInputError, InvalidStateError
from .ledger import AccountRef, Ledger
from .models import (
    Campaign,
    CampaignMatch,
    CampaignParticipant,
    CampaignStatus,
    CanBattleResponse,
    CreateCampaignRequest,
    Match,
    Transaction,
    TransactionType,
)
from .settlement import campaign_settlement
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class CampaignService:
    """Campaign membership, the per-pair battle cap and prize-pool payouts."""

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Optional[Ledger] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.ledger = ledger or Ledger(storage)
        self.settings = settings or get_settings()

    def create_campaign(self, caller: Caller, request: CreateCampaignRequest) -> Campaign:
        require_admin(caller)
        if request.end_date <= request.start_date:
            raise InvalidInputError("Campaign end date must be after its start date")
        if request.reward_per_win > request.prize_pool_credits:
            raise InvalidInputError("Reward per win cannot exceed the prize pool")

        campaign_id = uuid4()
        campaign_data = {
            "id": campaign_id,
            "name": request.name,
            "description": request.description,
            "prize_pool_credits": request.prize_pool_credits,
            "remaining_pool_credits": request.prize_pool_credits,
            "reward_per_win": request.reward_per_win,
            "status": request.status,
            "start_date": request.start_date,
            "end_date": request.end_date,
            "created_by": caller.user_id,
            "created_at": datetime.now(timezone.utc),
        }
        with self.storage.atomic():
            self.storage.insert("campaigns", campaign_id, campaign_data)
        logger.info("Campaign %s created with pool %d", campaign_id, request.prize_pool_credits)
        return Campaign(**campaign_data)

    def end_campaign(self, caller: Caller, campaign_id: UUID) -> Campaign:
        require_admin(caller)
        with self.storage.atomic():
            campaign_data = self.storage.get_row("campaigns", campaign_id)
            if campaign_data["status"] not in (CampaignStatus.DRAFT, CampaignStatus.ACTIVE):
                raise InvalidStateError(f"Cannot end campaign in {campaign_data['status'].value} state")
            campaign_data["status"] = CampaignStatus.COMPLETED
        logger.info("Campaign %s ended", campaign_id)
        return Campaign(**campaign_data)

    def get_campaign(self, campaign_id: UUID) -> Campaign:
        return Campaign(**self.storage.get_row("campaigns", campaign_id))

    def list_campaigns(self, status: Optional[CampaignStatus] = None) -> list[Campaign]:
        campaigns = [
            Campaign(**c) for c in self.storage.campaigns.values()
            if status is None or c["status"] == status
        ]
        campaigns.sort(key=lambda c: c.created_at, reverse=True)
        return campaigns

    def list_participants(self, campaign_id: UUID) -> list[CampaignParticipant]:
        self.storage.get_row("campaigns", campaign_id)
        participants = [
            CampaignParticipant(**p) for (cid, _), p in self.storage.campaign_participants.items()
            if cid == campaign_id
        ]
        participants.sort(key=lambda p: (p.credits_won, p.matches_won), reverse=True)
        return participants

    def join_campaign(self, caller: Caller, campaign_id: UUID, team_id: UUID) -> CampaignParticipant:
        with self.storage.atomic():
            campaign_data = self.storage.get_row("campaigns", campaign_id)
            if campaign_data["status"] != CampaignStatus.ACTIVE:
                raise InvalidStateError("Campaign is not active")
            require_owner(self.storage, caller, team_id, "Only team captains can join campaigns")
            if (campaign_id, team_id) in self.storage.campaign_participants:
                raise InvalidStateError("Team already in this campaign")

            participant_data = self._new_participant(campaign_id, team_id)
        logger.info("Team %s joined campaign %s", team_id, campaign_id)
        return CampaignParticipant(**participant_data)

    def battle_count(self, campaign_id: UUID, team_a_id: UUID, team_b_id: UUID) -> int:
        pair = {team_a_id, team_b_id}
        return sum(
            1 for cm in self.storage.campaign_matches.values()
            if cm["campaign_id"] == campaign_id and {cm["team1_id"], cm["team2_id"]} == pair
        )

    def can_battle(self, campaign_id: UUID, team_a_id: UUID, team_b_id: UUID) -> CanBattleResponse:
        count = self.battle_count(campaign_id, team_a_id, team_b_id)
        return CanBattleResponse(can_battle=count < self.settings.max_campaign_battles, match_count=count)

    def check_challenge(
        self, caller: Caller, campaign_id: UUID, challenger_team_id: UUID, challenged_team_id: UUID
    ) -> Campaign:
        """Validate a campaign challenge; must run inside the caller's atomic block."""
        campaign = Campaign(**self.storage.get_row("campaigns", campaign_id))
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidStateError("Campaign is not active")
        if not campaign.pool_covers_reward():
            raise InvalidStateError("Campaign prize pool is depleted")
        require_member(self.storage, caller, challenger_team_id, "Not a member of challenger team")

        joined = self.storage.campaign_participants
        if (campaign_id, challenger_team_id) not in joined or (campaign_id, challenged_team_id) not in joined:
            raise InvalidStateError("Both teams must be in the campaign")
        if not self.can_battle(campaign_id, challenger_team_id, challenged_team_id).can_battle:
            raise InvalidStateError(
                f"Teams have already battled {self.settings.max_campaign_battles} times in this campaign"
            )
        return campaign

    def record_pairing(self, campaign_id: UUID, match_id: UUID, team1_id: UUID, team2_id: UUID) -> CampaignMatch:
        cm_id = uuid4()
        cm_data = {
            "id": cm_id,
            "campaign_id": campaign_id,
            "match_id": match_id,
            "team1_id": team1_id,
            "team2_id": team2_id,
            "winner_id": None,
            "reward_awarded": None,
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.insert("campaign_matches", cm_id, cm_data)
        return CampaignMatch(**cm_data)

    def settle_reward(self, match: Match, winner_id: UUID, loser_id: UUID) -> Optional[Transaction]:
        """Pay the fixed reward from the pool if it still covers it.

        The pool check and decrement are a single conditional update, so two
        matches settling against the same campaign cannot both spend the last
        reward. Returns None when the pool is exhausted.
        """
        campaign_data = self.storage.get_row("campaigns", match.campaign_id)
        outcome = campaign_settlement(campaign_data["remaining_pool_credits"], campaign_data["reward_per_win"])
        pairing = self._pairing_for(match.id)

        if not outcome.pool_sufficient or not self.storage.try_decrement_pool(match.campaign_id, outcome.reward):
            logger.warning(
                "Campaign %s pool exhausted; match %s completes without reward", match.campaign_id, match.id
            )
            if pairing:
                pairing["winner_id"] = winner_id
                pairing["reward_awarded"] = 0
            return None

        entry = self.ledger.credit(
            AccountRef.team(winner_id),
            outcome.reward,
            TransactionType.CAMPAIGN_REWARD,
            f"Campaign reward - {campaign_data['name']}",
            match_id=match.id,
        )
        if pairing:
            pairing["winner_id"] = winner_id
            pairing["reward_awarded"] = outcome.reward

        winner = self._participant(match.campaign_id, winner_id)
        winner["matches_played"] += 1
        winner["matches_won"] += 1
        winner["credits_won"] += outcome.reward
        self._participant(match.campaign_id, loser_id)["matches_played"] += 1
        return entry

    def _pairing_for(self, match_id: UUID) -> Optional[dict]:
        for cm in self.storage.campaign_matches.values():
            if cm["match_id"] == match_id:
                return self.storage.get_row("campaign_matches", cm["id"])
        return None

    def _participant(self, campaign_id: UUID, team_id: UUID) -> dict:
        key = (campaign_id, team_id)
        if key not in self.storage.campaign_participants:
            return self._new_participant(campaign_id, team_id)
        return self.storage.get_row("campaign_participants", key)

    def _new_participant(self, campaign_id: UUID, team_id: UUID) -> dict:
        participant_data = {
            "id": uuid4(),
            "campaign_id": campaign_id,
            "team_id": team_id,
            "credits_won": 0,
            "matches_played": 0,
            "matches_won": 0,
            "joined_at": datetime.now(timezone.utc),
        }
        self.storage.insert("campaign_participants", (campaign_id, team_id), participant_data)
        return participant_data
