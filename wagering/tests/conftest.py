"""Shared fixtures: two funded teams, their captains, a bench player, an outsider and an admin."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from wagering.auth import Caller
from wagering.config import Settings
from wagering.models import (
    Campaign,
    CreateCampaignRequest,
    CreateMatchRequest,
    Match,
)
from wagering.service import WageringService
from wagering.storage import InMemoryStorage


@dataclass
class Arena:
    service: WageringService
    admin: Caller
    alpha_captain: Caller
    alpha_player: Caller
    bravo_captain: Caller
    outsider: Caller
    alpha_id: UUID
    bravo_id: UUID

    @property
    def storage(self) -> InMemoryStorage:
        return self.service.storage

    def team_credits(self, team_id: UUID) -> int:
        return self.storage.teams[team_id]["credits"]

    def challenge(self, wager: int = 100) -> Match:
        return self.service.matches.create_match(
            self.alpha_captain,
            CreateMatchRequest(challenger_team_id=self.alpha_id, challenged_team_id=self.bravo_id, wager_credits=wager),
        )

    def active_match(self, wager: int = 100) -> Match:
        match = self.challenge(wager)
        self.service.matches.accept_match(self.bravo_captain, match.id)
        return self.service.matches.start_match(self.alpha_captain, match.id)

    def disputed_match(self, wager: int = 100) -> Match:
        match = self.active_match(wager)
        self.service.matches.confirm_winner(self.alpha_captain, match.id, self.alpha_id)
        return self.service.matches.confirm_winner(self.bravo_captain, match.id, self.bravo_id)

    def campaign(self, prize_pool: int = 1000, reward: int = 100, join: bool = True) -> Campaign:
        now = datetime.now(timezone.utc)
        campaign = self.service.campaigns.create_campaign(
            self.admin,
            CreateCampaignRequest(
                name="Season One",
                prize_pool_credits=prize_pool,
                reward_per_win=reward,
                start_date=now,
                end_date=now + timedelta(days=30),
            ),
        )
        if join:
            self.service.campaigns.join_campaign(self.alpha_captain, campaign.id, self.alpha_id)
            self.service.campaigns.join_campaign(self.bravo_captain, campaign.id, self.bravo_id)
        return campaign


@pytest.fixture
def arena() -> Arena:
    storage = InMemoryStorage()
    service = WageringService(storage, Settings())

    admin = storage.create_user(name="Admin", is_admin=True)
    alpha_captain = storage.create_user(name="Alpha Captain", credits=1000)
    alpha_player = storage.create_user(name="Alpha Player", credits=50)
    bravo_captain = storage.create_user(name="Bravo Captain", credits=1000)
    outsider = storage.create_user(name="Outsider", credits=1000)

    alpha = storage.create_team(alpha_captain["id"], "Alpha Squad", tag="ALP", credits=500, members=(alpha_player["id"],))
    bravo = storage.create_team(bravo_captain["id"], "Bravo Squad", tag="BRV", credits=300)

    return Arena(
        service=service,
        admin=Caller(user_id=admin["id"], is_admin=True),
        alpha_captain=Caller(user_id=alpha_captain["id"]),
        alpha_player=Caller(user_id=alpha_player["id"]),
        bravo_captain=Caller(user_id=bravo_captain["id"]),
        outsider=Caller(user_id=outsider["id"]),
        alpha_id=alpha["id"],
        bravo_id=bravo["id"],
    )