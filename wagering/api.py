import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import Caller, caller_for
from .config import get_settings
from .errors import (
    ForbiddenError,
    IdempotencyConflictError,
    InsufficientFundsError,
    InvalidInputError,
    InvalidStateError,
    InvalidWinnerError,
    NotFoundError,
    WageringError,
)
from .logging_config import setup_logging
from .models import (
    AdminDecisionRequest,
    Campaign,
    CampaignChallengeRequest,
    CampaignParticipant,
    CampaignStatus,
    CanBattleResponse,
    ConfirmWinnerRequest,
    ContributeRequest,
    CreateCampaignRequest,
    CreateMatchRequest,
    CreateWithdrawalRequest,
    JoinCampaignRequest,
    LedgerHistoryResponse,
    Match,
    MatchStatus,
    PurchaseConfirmation,
    PurchaseResponse,
    ResolveDisputeRequest,
    Team,
    TeamPayoutRequest,
    UserStats,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .service import WageringService
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidStateError: status.HTTP_409_CONFLICT,
    InsufficientFundsError: status.HTTP_400_BAD_REQUEST,
    InvalidWinnerError: status.HTTP_400_BAD_REQUEST,
    InvalidInputError: 422,
    IdempotencyConflictError: status.HTTP_409_CONFLICT,
}

router = APIRouter()


def get_service(request: Request) -> WageringService:
    return request.app.state.service


def get_caller(
    x_user_id: Optional[UUID] = Header(default=None),
    service: WageringService = Depends(get_service),
) -> Caller:
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        return caller_for(service.storage, x_user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "clan-wager"}


@router.post("/matches", response_model=Match, status_code=status.HTTP_201_CREATED, tags=["Matches"])
def create_match(
    request: CreateMatchRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Match:
    return service.matches.create_match(caller, request)


@router.get("/matches", response_model=list[Match], tags=["Matches"])
def list_matches(match_status: Optional[MatchStatus] = None, service: WageringService = Depends(get_service)):
    return service.matches.list_matches(match_status)


@router.get("/matches/pending", response_model=list[Match], tags=["Matches"])
def list_pending_matches(caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.matches.list_pending_for_user(caller)


@router.get("/matches/{match_id}", response_model=Match, tags=["Matches"])
def get_match(match_id: UUID, service: WageringService = Depends(get_service)) -> Match:
    return service.matches.get_match(match_id)


@router.get("/battles/{token}", response_model=Match, tags=["Matches"])
def get_battle(token: str, service: WageringService = Depends(get_service)) -> Match:
    return service.matches.get_match_by_share_token(token)


@router.post("/matches/{match_id}/accept", response_model=Match, tags=["Matches"])
def accept_match(match_id: UUID, caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.matches.accept_match(caller, match_id)


@router.post("/matches/{match_id}/decline", response_model=Match, tags=["Matches"])
def decline_match(match_id: UUID, caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.matches.decline_match(caller, match_id)


@router.post("/matches/{match_id}/start", response_model=Match, tags=["Matches"])
def start_match(match_id: UUID, caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.matches.start_match(caller, match_id)


@router.post("/matches/{match_id}/confirm", response_model=Match, tags=["Matches"])
def confirm_winner(
    match_id: UUID,
    request: ConfirmWinnerRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Match:
    return service.matches.confirm_winner(caller, match_id, request.winner_id)


@router.get("/teams/{team_id}/matches", response_model=list[Match], tags=["Matches"])
def list_team_matches(team_id: UUID, service: WageringService = Depends(get_service)):
    return service.matches.list_team_matches(team_id)


@router.get("/campaigns", response_model=list[Campaign], tags=["Campaigns"])
def list_campaigns(campaign_status: Optional[CampaignStatus] = None, service: WageringService = Depends(get_service)):
    return service.campaigns.list_campaigns(campaign_status)


@router.get("/campaigns/{campaign_id}", response_model=Campaign, tags=["Campaigns"])
def get_campaign(campaign_id: UUID, service: WageringService = Depends(get_service)) -> Campaign:
    return service.campaigns.get_campaign(campaign_id)


@router.get("/campaigns/{campaign_id}/participants", response_model=list[CampaignParticipant], tags=["Campaigns"])
def list_participants(campaign_id: UUID, service: WageringService = Depends(get_service)):
    return service.campaigns.list_participants(campaign_id)


@router.post(
    "/campaigns/{campaign_id}/join",
    response_model=CampaignParticipant,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
def join_campaign(
    campaign_id: UUID,
    request: JoinCampaignRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> CampaignParticipant:
    return service.campaigns.join_campaign(caller, campaign_id, request.team_id)


@router.get("/campaigns/{campaign_id}/can-battle", response_model=CanBattleResponse, tags=["Campaigns"])
def can_battle(
    campaign_id: UUID,
    team1_id: UUID,
    team2_id: UUID,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> CanBattleResponse:
    return service.campaigns.can_battle(campaign_id, team1_id, team2_id)


@router.post(
    "/campaigns/{campaign_id}/challenge",
    response_model=Match,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
def challenge_in_campaign(
    campaign_id: UUID,
    request: CampaignChallengeRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Match:
    return service.matches.challenge_in_campaign(caller, campaign_id, request)


@router.post("/wallet/contribute", response_model=Team, tags=["Wallet"])
def contribute(
    request: ContributeRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Team:
    return service.wallet.contribute(caller, request)


@router.post("/wallet/payout-from-team", response_model=Team, tags=["Wallet"])
def payout_from_team(
    request: TeamPayoutRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Team:
    return service.wallet.payout_from_team(caller, request)


@router.post("/payments/confirmed", response_model=PurchaseResponse, tags=["Wallet"])
def payment_confirmed(
    confirmation: PurchaseConfirmation,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> PurchaseResponse:
    # Called once the gateway integration has verified the charge for this caller.
    return service.wallet.award_purchase(caller, confirmation)


@router.get("/transactions", response_model=LedgerHistoryResponse, tags=["Wallet"])
def get_transactions(
    limit: int = 50,
    offset: int = 0,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> LedgerHistoryResponse:
    return service.ledger.get_history(caller.user_id, limit, offset)


@router.get("/stats/user", response_model=UserStats, tags=["Wallet"])
def get_user_stats(caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.wallet.user_stats(caller.user_id)


@router.post(
    "/withdrawal/request",
    response_model=WithdrawalRequest,
    status_code=status.HTTP_201_CREATED,
    tags=["Withdrawals"],
)
def request_withdrawal(
    request: CreateWithdrawalRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> WithdrawalRequest:
    return service.withdrawals.request_withdrawal(caller, request)


@router.get("/withdrawal/requests", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
def list_my_withdrawals(caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.withdrawals.list_for_user(caller)


@router.get("/admin/matches/disputed", response_model=list[Match], tags=["Admin"])
def list_disputed(caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.matches.list_disputed(caller)


@router.post("/admin/matches/{match_id}/resolve", response_model=Match, tags=["Admin"])
def resolve_dispute(
    match_id: UUID,
    request: ResolveDisputeRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Match:
    return service.matches.resolve_dispute(caller, match_id, request.winner_id)


@router.post("/admin/campaigns", response_model=Campaign, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def create_campaign(
    request: CreateCampaignRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> Campaign:
    return service.campaigns.create_campaign(caller, request)


@router.post("/admin/campaigns/{campaign_id}/end", response_model=Campaign, tags=["Admin"])
def end_campaign(campaign_id: UUID, caller: Caller = Depends(get_caller), service: WageringService = Depends(get_service)):
    return service.campaigns.end_campaign(caller, campaign_id)


@router.get("/admin/withdrawals", response_model=list[WithdrawalRequest], tags=["Admin"])
def list_withdrawals(
    withdrawal_status: Optional[WithdrawalStatus] = None,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
):
    return service.withdrawals.list_all(caller, withdrawal_status)


@router.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalRequest, tags=["Admin"])
def approve_withdrawal(
    withdrawal_id: UUID,
    request: AdminDecisionRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> WithdrawalRequest:
    return service.withdrawals.approve(caller, withdrawal_id, request)


@router.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalRequest, tags=["Admin"])
def reject_withdrawal(
    withdrawal_id: UUID,
    request: AdminDecisionRequest,
    caller: Caller = Depends(get_caller),
    service: WageringService = Depends(get_service),
) -> WithdrawalRequest:
    return service.withdrawals.reject(caller, withdrawal_id, request)


async def wagering_error_handler(request: Request, exc: WageringError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("Internal failure on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content={"kind": "internal_error", "message": "Internal error"})
    return JSONResponse(status_code=status_code, content={"kind": exc.kind, "message": exc.message})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"kind": "internal_error", "message": "Internal error"},
    )


def create_app(service: Optional[WageringService] = None, root_path: str = "") -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        description="Clan-vs-clan wager settlement with dual confirmation, campaigns and withdrawals",
        version="1.0.0",
        root_path=root_path,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service or WageringService(InMemoryStorage(seed=True), settings)
    app.add_exception_handler(WageringError, wagering_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
