"""Payout math. Pure functions only; applying the results is the match service's job."""

from decimal import ROUND_FLOOR, Decimal

from pydantic import BaseModel, ConfigDict


class WagerSettlement(BaseModel):
    total_pot: int
    platform_fee: int
    winner_payout: int

    model_config = ConfigDict(frozen=True)


class CampaignSettlement(BaseModel):
    reward: int
    pool_sufficient: bool

    model_config = ConfigDict(frozen=True)


def wager_settlement(wager_credits: int, fee_rate: Decimal = Decimal("0.10")) -> WagerSettlement:
    total_pot = wager_credits * 2
    platform_fee = int((Decimal(total_pot) * fee_rate).to_integral_value(rounding=ROUND_FLOOR))
    return WagerSettlement(
        total_pot=total_pot,
        platform_fee=platform_fee,
        winner_payout=total_pot - platform_fee,
    )


def campaign_settlement(remaining_pool_credits: int, reward_per_win: int) -> CampaignSettlement:
    # The reward is fixed per win; it is paid only while the pool still covers it.
    return CampaignSettlement(
        reward=reward_per_win,
        pool_sufficient=remaining_pool_credits >= reward_per_win,
    )
