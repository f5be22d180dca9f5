"""
Match lifecycle: challenge, accept/decline, start, dual confirmation and
settlement.

Each public operation runs as one unit of work on the store. Status is
re-checked against the transition table immediately before every
mutation, which is what keeps a match from being settled or refunded twice.
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .auth import Caller, require_admin, require_member
from .campaigns import CampaignService
from .config import Settings, get_settings
from .errors import ForbiddenError, InvalidInputError, InvalidStateError, InvalidWinnerError, NotFoundError
from .ledger import AccountRef, Ledger
from .models import (
    CampaignChallengeRequest,
    CreateMatchRequest,
    Match,
    MatchStatus,
    TransactionType,
)
from .settlement import wager_settlement
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class MatchService:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Optional[Ledger] = None,
        campaigns: Optional[CampaignService] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.ledger = ledger or Ledger(storage)
        self.campaigns = campaigns or CampaignService(storage, self.ledger, self.settings)

    def create_match(self, caller: Caller, request: CreateMatchRequest) -> Match:
        if request.campaign_id is not None:
            return self.challenge_in_campaign(
                caller,
                request.campaign_id,
                CampaignChallengeRequest(**request.model_dump(exclude={"wager_credits", "campaign_id"})),
            )
        if request.wager_credits <= 0:
            raise InvalidInputError("Wager must be a positive number of credits")
        self._check_distinct(request.challenger_team_id, request.challenged_team_id)

        with self.storage.atomic():
            self.storage.get_row("teams", request.challenger_team_id)
            self.storage.get_row("teams", request.challenged_team_id)
            require_member(self.storage, caller, request.challenger_team_id, "Not a member of challenger team")

            match_id = uuid4()
            self.ledger.reserve(
                AccountRef.team(request.challenger_team_id),
                request.wager_credits,
                TransactionType.WAGER_LOCK,
                "Credits locked for match challenge",
                match_id=match_id,
            )
            match_data = self._insert_match(
                match_id,
                request.challenger_team_id,
                request.challenged_team_id,
                request.wager_credits,
                None,
                request.game,
                request.game_mode,
                request.best_of,
                request.message,
            )

        logger.info(
            "Match %s created: %s challenged %s for %d credits",
            match_data["id"], request.challenger_team_id, request.challenged_team_id, request.wager_credits,
        )
        return Match(**match_data)

    def challenge_in_campaign(self, caller: Caller, campaign_id: UUID, request: CampaignChallengeRequest) -> Match:
        self._check_distinct(request.challenger_team_id, request.challenged_team_id)

        with self.storage.atomic():
            self.campaigns.check_challenge(caller, campaign_id, request.challenger_team_id, request.challenged_team_id)
            match_data = self._insert_match(
                uuid4(),
                request.challenger_team_id,
                request.challenged_team_id,
                0,
                campaign_id,
                request.game,
                request.game_mode,
                request.best_of,
                request.message,
            )
            self.campaigns.record_pairing(
                campaign_id, match_data["id"], request.challenger_team_id, request.challenged_team_id
            )

        logger.info("Campaign match %s created in campaign %s", match_data["id"], campaign_id)
        return Match(**match_data)

    def accept_match(self, caller: Caller, match_id: UUID) -> Match:
        with self.storage.atomic():
            match_data = self.storage.get_row("matches", match_id)
            match = self._require_transition(match_data, MatchStatus.ACCEPTED, "Match is not pending")
            require_member(self.storage, caller, match.challenged_team_id, "Not a member of challenged team")

            if not match.is_campaign_match:
                self.ledger.reserve(
                    AccountRef.team(match.challenged_team_id),
                    match.wager_credits,
                    TransactionType.WAGER_LOCK,
                    "Credits locked for accepting match",
                    match_id=match.id,
                )
            match_data["status"] = MatchStatus.ACCEPTED

        logger.info("Match %s accepted", match_id)
        return Match(**match_data)

    def decline_match(self, caller: Caller, match_id: UUID) -> Match:
        with self.storage.atomic():
            match_data = self.storage.get_row("matches", match_id)
            match = self._require_transition(match_data, MatchStatus.CANCELLED, "Match is not pending")
            require_member(self.storage, caller, match.challenged_team_id, "Not a member of challenged team")

            if match.wager_credits > 0:
                self.ledger.credit(
                    AccountRef.team(match.challenger_team_id),
                    match.wager_credits,
                    TransactionType.WAGER_REFUND,
                    "Credits refunded - match declined",
                    match_id=match.id,
                )
            match_data["status"] = MatchStatus.CANCELLED

        logger.info("Match %s declined", match_id)
        return Match(**match_data)

    def start_match(self, caller: Caller, match_id: UUID) -> Match:
        with self.storage.atomic():
            match_data = self.storage.get_row("matches", match_id)
            match = self._require_transition(match_data, MatchStatus.ACTIVE, "Match is not accepted")
            self._side_of(caller, match)
            match_data["status"] = MatchStatus.ACTIVE

        logger.info("Match %s started", match_id)
        return Match(**match_data)

    def confirm_winner(self, caller: Caller, match_id: UUID, winner_id: UUID) -> Match:
        """Record the caller's side's winner; settle or dispute once both sides have voted."""
        with self.storage.atomic():
            match_data = self.storage.get_row("matches", match_id)
            match = Match(**match_data)
            if match.status not in (MatchStatus.ACTIVE, MatchStatus.CONFIRMING):
                raise InvalidStateError("Match is not active")
            side = self._side_of(caller, match)
            if winner_id not in match.team_ids:
                raise InvalidWinnerError(f"Team {winner_id} is not playing in match {match_id}")

            match_data[f"{side}_confirmed_winner"] = winner_id
            match_data["status"] = MatchStatus.CONFIRMING

            match = Match(**match_data)
            if match.both_confirmed():
                if match.challenger_confirmed_winner == match.challenged_confirmed_winner:
                    self._settle(match_data, match.challenger_confirmed_winner)
                else:
                    match_data["status"] = MatchStatus.DISPUTED
                    logger.info("Match %s disputed", match_id)

        return Match(**match_data)

    def resolve_dispute(self, caller: Caller, match_id: UUID, winner_id: UUID) -> Match:
        require_admin(caller)
        with self.storage.atomic():
            match_data = self.storage.get_row("matches", match_id)
            match = Match(**match_data)
            if match.status != MatchStatus.DISPUTED:
                raise InvalidStateError("Match is not disputed")
            if winner_id not in match.team_ids:
                raise InvalidWinnerError(f"Team {winner_id} is not playing in match {match_id}")
            self._settle(match_data, winner_id)

        logger.info("Dispute on match %s resolved by admin %s", match_id, caller.user_id)
        return Match(**match_data)

    def get_match(self, match_id: UUID) -> Match:
        return Match(**self.storage.get_row("matches", match_id))

    def get_match_by_share_token(self, token: str) -> Match:
        match_id = self.storage.share_token_index.get(token)
        if match_id is None:
            raise NotFoundError("Battle not found")
        return Match(**self.storage.get_row("matches", match_id))

    def list_matches(self, status: Optional[MatchStatus] = None) -> list[Match]:
        matches = [Match(**m) for m in self.storage.matches.values() if status is None or m["status"] == status]
        matches.sort(key=lambda m: m.created_at, reverse=True)
        return matches

    def list_team_matches(self, team_id: UUID) -> list[Match]:
        return [m for m in self.list_matches() if team_id in m.team_ids]

    def list_pending_for_user(self, caller: Caller) -> list[Match]:
        team_ids = set(self.storage.team_ids_for_user(caller.user_id))
        return [
            m for m in self.list_matches(MatchStatus.PENDING)
            if team_ids.intersection(m.team_ids)
        ]

    def list_disputed(self, caller: Caller) -> list[Match]:
        require_admin(caller)
        return self.list_matches(MatchStatus.DISPUTED)

    def _settle(self, match_data: dict, winner_id: UUID) -> None:
        match = self._require_transition(match_data, MatchStatus.COMPLETED, "Match cannot be settled")
        loser_id = match.opponent_of(winner_id)

        if match.is_campaign_match:
            self.campaigns.settle_reward(match, winner_id, loser_id)
        elif match.wager_credits > 0:
            outcome = wager_settlement(match.wager_credits, self.settings.platform_fee_rate)
            self.ledger.credit(
                AccountRef.team(winner_id),
                outcome.winner_payout,
                TransactionType.WAGER_WIN,
                f"Match won - prize collected ({outcome.platform_fee} platform fee deducted)",
                match_id=match.id,
            )
            if outcome.platform_fee > 0:
                self.ledger.record(
                    TransactionType.PLATFORM_FEE,
                    outcome.platform_fee,
                    f"Platform fee from match {match.id}",
                    match_id=match.id,
                )

        self.storage.get_row("teams", winner_id)["wins"] += 1
        self.storage.get_row("teams", loser_id)["losses"] += 1
        match_data["status"] = MatchStatus.COMPLETED
        match_data["winner_id"] = winner_id
        match_data["completed_at"] = datetime.now(timezone.utc)
        logger.info("Match %s settled, winner %s", match.id, winner_id)

    def _require_transition(self, match_data: dict, target: MatchStatus, message: str) -> Match:
        match = Match(**match_data)
        if not match.can_transition(target):
            raise InvalidStateError(message, details={"status": match.status.value})
        return match

    def _side_of(self, caller: Caller, match: Match) -> str:
        if self.storage.is_team_member(match.challenger_team_id, caller.user_id):
            return "challenger"
        if self.storage.is_team_member(match.challenged_team_id, caller.user_id):
            return "challenged"
        raise ForbiddenError("Not a member of either team")

    def _check_distinct(self, challenger_team_id: UUID, challenged_team_id: UUID) -> None:
        if challenger_team_id == challenged_team_id:
            raise InvalidInputError("A team cannot challenge itself")

    def _insert_match(
        self,
        match_id: UUID,
        challenger_team_id: UUID,
        challenged_team_id: UUID,
        wager_credits: int,
        campaign_id: Optional[UUID],
        game: str,
        game_mode: str,
        best_of: int,
        message: Optional[str],
    ) -> dict:
        share_token = secrets.token_urlsafe(16)
        match_data = {
            "id": match_id,
            "challenger_team_id": challenger_team_id,
            "challenged_team_id": challenged_team_id,
            "wager_credits": wager_credits,
            "campaign_id": campaign_id,
            "status": MatchStatus.PENDING,
            "game": game,
            "game_mode": game_mode,
            "best_of": best_of,
            "message": message,
            "share_token": share_token,
            "challenger_confirmed_winner": None,
            "challenged_confirmed_winner": None,
            "winner_id": None,
            "created_at": datetime.now(timezone.utc),
            "completed_at": None,
        }
        self.storage.insert("matches", match_id, match_data)
        self.storage.insert("share_token_index", share_token, match_id)
        return match_data
