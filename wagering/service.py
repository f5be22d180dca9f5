from typing import Optional

from .campaigns import CampaignService
from .config import Settings, get_settings
from .ledger import Ledger
from .matches import MatchService
from .storage import InMemoryStorage
from .wallet import WalletService
from .withdrawals import WithdrawalService


class WageringService:
    """All settlement services wired to one store, ledger and policy."""

    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self.ledger = Ledger(self.storage)
        self.campaigns = CampaignService(self.storage, self.ledger, self.settings)
        self.matches = MatchService(self.storage, self.ledger, self.campaigns, self.settings)
        self.withdrawals = WithdrawalService(self.storage, self.ledger, self.settings)
        self.wallet = WalletService(self.storage, self.ledger)
