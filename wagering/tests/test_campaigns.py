"""
Unit Tests for Campaigns

Tests cover:
1. Campaign creation and ending (admin only)
2. Joining campaigns
3. The per-pair battle cap
4. Reward settlement and prize-pool exhaustion
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from wagering.errors import ForbiddenError, InvalidInputError, InvalidStateError
from wagering.models import (
    CampaignChallengeRequest,
    CampaignStatus,
    CreateCampaignRequest,
    CreateMatchRequest,
    MatchStatus,
    TransactionType,
)


def campaign_match(arena, campaign_id):
    """Challenge Bravo from Alpha inside a campaign, accept and start the match."""
    match = arena.service.matches.challenge_in_campaign(
        arena.alpha_captain,
        campaign_id,
        CampaignChallengeRequest(challenger_team_id=arena.alpha_id, challenged_team_id=arena.bravo_id),
    )
    arena.service.matches.accept_match(arena.bravo_captain, match.id)
    return arena.service.matches.start_match(arena.bravo_captain, match.id)


def agree(arena, match_id, winner_id):
    arena.service.matches.confirm_winner(arena.alpha_captain, match_id, winner_id)
    return arena.service.matches.confirm_winner(arena.bravo_captain, match_id, winner_id)


class TestCampaignAdmin:
    """Tests for admin campaign management."""

    def test_create_campaign_starts_with_full_pool(self, arena):
        campaign = arena.campaign(prize_pool=1000, reward=100, join=False)

        assert campaign.status == CampaignStatus.ACTIVE
        assert campaign.remaining_pool_credits == 1000
        assert campaign.created_by == arena.admin.user_id

    def test_non_admin_cannot_create(self, arena):
        now = datetime.now(timezone.utc)
        request = CreateCampaignRequest(
            name="Rogue", prize_pool_credits=100, reward_per_win=10,
            start_date=now, end_date=now + timedelta(days=1),
        )

        with pytest.raises(ForbiddenError):
            arena.service.campaigns.create_campaign(arena.alpha_captain, request)

    def test_end_before_start_rejected(self, arena):
        now = datetime.now(timezone.utc)
        request = CreateCampaignRequest(
            name="Backwards", prize_pool_credits=100, reward_per_win=10,
            start_date=now, end_date=now - timedelta(days=1),
        )

        with pytest.raises(InvalidInputError):
            arena.service.campaigns.create_campaign(arena.admin, request)

    def test_reward_larger_than_pool_rejected(self, arena):
        with pytest.raises(InvalidInputError):
            arena.campaign(prize_pool=50, reward=100, join=False)

    def test_end_campaign(self, arena):
        campaign = arena.campaign(join=False)

        ended = arena.service.campaigns.end_campaign(arena.admin, campaign.id)

        assert ended.status == CampaignStatus.COMPLETED
        with pytest.raises(InvalidStateError):
            arena.service.campaigns.end_campaign(arena.admin, campaign.id)

    def test_list_by_status(self, arena):
        active = arena.campaign(join=False)
        ended = arena.campaign(join=False)
        arena.service.campaigns.end_campaign(arena.admin, ended.id)

        listed = arena.service.campaigns.list_campaigns(CampaignStatus.ACTIVE)

        assert [c.id for c in listed] == [active.id]


class TestJoinCampaign:
    def test_owner_joins(self, arena):
        campaign = arena.campaign(join=False)

        participant = arena.service.campaigns.join_campaign(arena.alpha_captain, campaign.id, arena.alpha_id)

        assert participant.team_id == arena.alpha_id
        assert participant.matches_played == 0

    def test_non_owner_member_cannot_join(self, arena):
        campaign = arena.campaign(join=False)

        with pytest.raises(ForbiddenError):
            arena.service.campaigns.join_campaign(arena.alpha_player, campaign.id, arena.alpha_id)

    def test_join_twice_fails(self, arena):
        campaign = arena.campaign()

        with pytest.raises(InvalidStateError):
            arena.service.campaigns.join_campaign(arena.alpha_captain, campaign.id, arena.alpha_id)

    def test_join_ended_campaign_fails(self, arena):
        campaign = arena.campaign(join=False)
        arena.service.campaigns.end_campaign(arena.admin, campaign.id)

        with pytest.raises(InvalidStateError):
            arena.service.campaigns.join_campaign(arena.alpha_captain, campaign.id, arena.alpha_id)


class TestCampaignChallenges:
    """Tests for campaign challenge eligibility and the battle cap."""

    def test_campaign_challenge_has_no_wager(self, arena):
        campaign = arena.campaign()

        match = campaign_match(arena, campaign.id)

        assert match.campaign_id == campaign.id
        assert match.wager_credits == 0
        assert arena.team_credits(arena.alpha_id) == 500
        assert arena.team_credits(arena.bravo_id) == 300
        assert arena.service.ledger.entries_for_match(match.id) == []

    def test_create_match_with_campaign_id_routes_to_campaign(self, arena):
        campaign = arena.campaign()

        match = arena.service.matches.create_match(
            arena.alpha_captain,
            CreateMatchRequest(
                challenger_team_id=arena.alpha_id,
                challenged_team_id=arena.bravo_id,
                wager_credits=100,
                campaign_id=campaign.id,
            ),
        )

        assert match.is_campaign_match
        assert match.wager_credits == 0
        assert arena.team_credits(arena.alpha_id) == 500

    def test_both_teams_must_have_joined(self, arena):
        campaign = arena.campaign(join=False)
        arena.service.campaigns.join_campaign(arena.alpha_captain, campaign.id, arena.alpha_id)

        with pytest.raises(InvalidStateError):
            campaign_match(arena, campaign.id)

    def test_outsider_cannot_challenge(self, arena):
        campaign = arena.campaign()

        with pytest.raises(ForbiddenError):
            arena.service.matches.challenge_in_campaign(
                arena.outsider,
                campaign.id,
                CampaignChallengeRequest(challenger_team_id=arena.alpha_id, challenged_team_id=arena.bravo_id),
            )

    def test_pair_capped_at_two_battles(self, arena):
        """The cap counts the unordered pair, whichever side issues the challenge."""
        campaign = arena.campaign()
        campaign_match(arena, campaign.id)
        arena.service.matches.challenge_in_campaign(
            arena.bravo_captain,
            campaign.id,
            CampaignChallengeRequest(challenger_team_id=arena.bravo_id, challenged_team_id=arena.alpha_id),
        )

        verdict = arena.service.campaigns.can_battle(campaign.id, arena.alpha_id, arena.bravo_id)
        assert verdict.can_battle is False
        assert verdict.match_count == 2

        with pytest.raises(InvalidStateError):
            campaign_match(arena, campaign.id)
        assert len(arena.storage.matches) == 2

    def test_can_battle_for_fresh_pair(self, arena):
        campaign = arena.campaign()

        verdict = arena.service.campaigns.can_battle(campaign.id, arena.bravo_id, uuid4())

        assert verdict.can_battle is True
        assert verdict.match_count == 0

    def test_depleted_pool_blocks_new_challenges(self, arena):
        campaign = arena.campaign(prize_pool=100, reward=100)
        match = campaign_match(arena, campaign.id)
        agree(arena, match.id, arena.alpha_id)

        with pytest.raises(InvalidStateError):
            campaign_match(arena, campaign.id)


class TestCampaignSettlement:
    """Tests for reward payouts out of the prize pool."""

    def test_winner_receives_reward_from_pool(self, arena):
        campaign = arena.campaign(prize_pool=1000, reward=100)
        match = campaign_match(arena, campaign.id)

        final = agree(arena, match.id, arena.bravo_id)

        assert final.status == MatchStatus.COMPLETED
        assert arena.team_credits(arena.bravo_id) == 400
        assert arena.team_credits(arena.alpha_id) == 500
        assert arena.service.campaigns.get_campaign(campaign.id).remaining_pool_credits == 900

        entries = arena.service.ledger.entries_for_match(match.id)
        assert [(e.type, e.credits) for e in entries] == [(TransactionType.CAMPAIGN_REWARD, 100)]

        standings = {p.team_id: p for p in arena.service.campaigns.list_participants(campaign.id)}
        assert standings[arena.bravo_id].matches_won == 1
        assert standings[arena.bravo_id].credits_won == 100
        assert standings[arena.bravo_id].matches_played == 1
        assert standings[arena.alpha_id].matches_played == 1
        assert standings[arena.alpha_id].matches_won == 0

        pairing = next(iter(arena.storage.campaign_matches.values()))
        assert pairing["winner_id"] == arena.bravo_id
        assert pairing["reward_awarded"] == 100

    def test_exhausted_pool_completes_without_reward(self, arena):
        """Both matches were created while the pool covered one reward; only the first is paid."""
        campaign = arena.campaign(prize_pool=100, reward=100)
        first = campaign_match(arena, campaign.id)
        second = campaign_match(arena, campaign.id)

        agree(arena, first.id, arena.alpha_id)
        final = agree(arena, second.id, arena.alpha_id)

        assert final.status == MatchStatus.COMPLETED
        assert final.winner_id == arena.alpha_id
        assert arena.team_credits(arena.alpha_id) == 600
        assert arena.storage.teams[arena.alpha_id]["wins"] == 2
        assert arena.service.campaigns.get_campaign(campaign.id).remaining_pool_credits == 0
        assert arena.service.ledger.entries_for_match(second.id) == []

        standings = {p.team_id: p for p in arena.service.campaigns.list_participants(campaign.id)}
        assert standings[arena.alpha_id].matches_won == 1
        assert standings[arena.alpha_id].credits_won == 100

    def test_parallel_settlements_spend_last_reward_once(self, arena):
        """Two matches finishing together against a one-reward pool pay exactly one reward."""
        campaign = arena.campaign(prize_pool=100, reward=100)
        matches = [campaign_match(arena, campaign.id), campaign_match(arena, campaign.id)]
        for match in matches:
            arena.service.matches.confirm_winner(arena.alpha_captain, match.id, arena.bravo_id)
        barrier = threading.Barrier(len(matches))

        def final_vote(match):
            barrier.wait()
            return arena.service.matches.confirm_winner(arena.bravo_captain, match.id, arena.bravo_id)

        with ThreadPoolExecutor(max_workers=len(matches)) as pool:
            settled = list(pool.map(final_vote, matches))

        assert [m.status for m in settled] == [MatchStatus.COMPLETED, MatchStatus.COMPLETED]
        rewards = [e for e in arena.storage.transactions.values() if e["type"] == TransactionType.CAMPAIGN_REWARD]
        assert len(rewards) == 1
        assert arena.service.campaigns.get_campaign(campaign.id).remaining_pool_credits == 0
        assert arena.team_credits(arena.bravo_id) == 400
        assert arena.storage.teams[arena.bravo_id]["wins"] == 2

        awarded = sorted(cm["reward_awarded"] for cm in arena.storage.campaign_matches.values())
        assert awarded == [0, 100]

    def test_admin_resolution_pays_campaign_reward(self, arena):
        campaign = arena.campaign(prize_pool=1000, reward=150)
        match = campaign_match(arena, campaign.id)
        arena.service.matches.confirm_winner(arena.alpha_captain, match.id, arena.alpha_id)
        disputed = arena.service.matches.confirm_winner(arena.bravo_captain, match.id, arena.bravo_id)
        assert disputed.status == MatchStatus.DISPUTED

        arena.service.matches.resolve_dispute(arena.admin, match.id, arena.alpha_id)

        assert arena.team_credits(arena.alpha_id) == 650
        assert arena.service.campaigns.get_campaign(campaign.id).remaining_pool_credits == 850
        types = [e.type for e in arena.service.ledger.entries_for_match(match.id)]
        assert types == [TransactionType.CAMPAIGN_REWARD]

    def test_declined_campaign_match_moves_nothing(self, arena):
        campaign = arena.campaign()
        match = arena.service.matches.challenge_in_campaign(
            arena.alpha_captain,
            campaign.id,
            CampaignChallengeRequest(challenger_team_id=arena.alpha_id, challenged_team_id=arena.bravo_id),
        )

        declined = arena.service.matches.decline_match(arena.bravo_captain, match.id)

        assert declined.status == MatchStatus.CANCELLED
        assert arena.storage.transactions == {}
