import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Hashable, Iterator, Optional
from uuid import UUID, uuid4

from .errors import NotFoundError, PersistenceError, WageringError

logger = logging.getLogger(__name__)

ROW_LABELS = {
    "users": "User",
    "teams": "Team",
    "matches": "Match",
    "campaigns": "Campaign",
    "withdrawal_requests": "Withdrawal request",
    "campaign_participants": "Campaign participant",
    "campaign_matches": "Campaign match",
}

ADMIN_USER_ID = UUID("00000000-0000-0000-0000-00000000a000")
DEMO_CAPTAIN_A_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
DEMO_CAPTAIN_B_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
DEMO_TEAM_A_ID = UUID("11111111-1111-1111-1111-111111111111")
DEMO_TEAM_B_ID = UUID("22222222-2222-2222-2222-222222222222")

_ABSENT = object()


class InMemoryStorage:
    """Dict-backed tables with a serializing unit of work.

    ``atomic()`` holds one re-entrant lock for the whole transition and keeps
    an undo journal of the rows the block reads for update or inserts. If the
    block raises, only those rows are put back, so a balance change, a status
    change and the matching ledger entries commit together or not at all.
    Rows changed inside ``atomic()`` must be fetched with ``get_row`` or
    written with ``insert``.
    """

    def __init__(self, seed: bool = False):
        self.users: dict[UUID, dict] = {}
        self.teams: dict[UUID, dict] = {}
        self.team_members: dict[tuple[UUID, UUID], str] = {}
        self.matches: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.campaigns: dict[UUID, dict] = {}
        self.campaign_participants: dict[tuple[UUID, UUID], dict] = {}
        self.campaign_matches: dict[UUID, dict] = {}
        self.withdrawal_requests: dict[UUID, dict] = {}
        self.credit_purchases: dict[UUID, dict] = {}
        self.share_token_index: dict[str, UUID] = {}
        self.purchase_reference_index: dict[str, UUID] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._journal: Optional[dict[tuple[str, Hashable], Any]] = None
        self._journal_owner: Optional[int] = None
        if seed:
            self._seed_data()

    @contextmanager
    def atomic(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            self._journal = {}
            self._journal_owner = threading.get_ident()
            self._depth = 1
            try:
                yield self
            except WageringError:
                self._rollback()
                raise
            except Exception as exc:
                self._rollback()
                logger.error("Transaction rolled back after unexpected failure: %s", exc)
                raise PersistenceError("Storage failure; no changes were applied") from exc
            except BaseException:
                self._rollback()
                raise
            finally:
                self._journal = None
                self._journal_owner = None
                self._depth = 0

    def try_adjust(self, table: str, row_id: UUID, field: str, delta: int) -> Optional[int]:
        """Apply ``delta`` to one integer column unless the result would be negative."""
        with self._lock:
            row = self.get_row(table, row_id)
            new_value = row[field] + delta
            if new_value < 0:
                return None
            row[field] = new_value
            return new_value

    def try_decrement_pool(self, campaign_id: UUID, amount: int) -> bool:
        with self._lock:
            campaign = self.get_row("campaigns", campaign_id)
            if campaign["remaining_pool_credits"] < amount:
                return False
            campaign["remaining_pool_credits"] -= amount
            return True

    def get_row(self, table: str, row_id: Hashable) -> dict:
        row = getattr(self, table).get(row_id)
        if row is None:
            raise NotFoundError(f"{ROW_LABELS.get(table, table)} {row_id} not found")
        self._remember(table, row_id)
        return row

    def insert(self, table: str, key: Hashable, value: Any) -> Any:
        self._remember(table, key)
        getattr(self, table)[key] = value
        return value

    def _remember(self, table: str, key: Hashable) -> None:
        # Reads from other threads never enter the lock holder's journal.
        if self._journal_owner != threading.get_ident() or (table, key) in self._journal:
            return
        before = getattr(self, table).get(key, _ABSENT)
        self._journal[(table, key)] = dict(before) if isinstance(before, dict) else before

    def _rollback(self) -> None:
        for (table_name, key), before in self._journal.items():
            table = getattr(self, table_name)
            current = table.get(key)
            if before is _ABSENT:
                table.pop(key, None)
            elif isinstance(before, dict) and isinstance(current, dict):
                # Restore in place so rows already handed out stay consistent.
                current.clear()
                current.update(before)
            else:
                table[key] = before
        logger.debug("Transaction rolled back, %d rows restored", len(self._journal))

    # Roster registration. Team and user management live outside this core;
    # these only seed the accounts the core settles against.

    def create_user(
        self,
        name: str = "",
        email: Optional[str] = None,
        credits: int = 0,
        withdrawable_credits: int = 0,
        is_admin: bool = False,
        user_id: Optional[UUID] = None,
    ) -> dict:
        user_id = user_id or uuid4()
        self.users[user_id] = {
            "id": user_id, "email": email, "name": name,
            "credits": credits, "withdrawable_credits": withdrawable_credits,
            "is_admin": is_admin, "created_at": datetime.now(timezone.utc),
        }
        return self.users[user_id]

    def create_team(
        self,
        owner_id: UUID,
        name: str,
        tag: str = "",
        credits: int = 0,
        members: tuple[UUID, ...] = (),
        team_id: Optional[UUID] = None,
    ) -> dict:
        team_id = team_id or uuid4()
        self.teams[team_id] = {
            "id": team_id, "name": name, "tag": tag, "owner_id": owner_id,
            "credits": credits, "wins": 0, "losses": 0,
            "created_at": datetime.now(timezone.utc),
        }
        self.team_members[(team_id, owner_id)] = "owner"
        for member_id in members:
            self.add_team_member(team_id, member_id)
        return self.teams[team_id]

    def add_team_member(self, team_id: UUID, user_id: UUID, role: str = "member") -> None:
        self.team_members.setdefault((team_id, user_id), role)

    def is_team_member(self, team_id: UUID, user_id: UUID) -> bool:
        return (team_id, user_id) in self.team_members

    def team_ids_for_user(self, user_id: UUID) -> list[UUID]:
        return [team_id for (team_id, member_id) in self.team_members if member_id == user_id]

    def _seed_data(self):
        self.create_user(name="Platform Admin", email="admin@example.com", is_admin=True, user_id=ADMIN_USER_ID)
        self.create_user(name="Alpha Captain", email="alpha@example.com", credits=1000, user_id=DEMO_CAPTAIN_A_ID)
        self.create_user(name="Bravo Captain", email="bravo@example.com", credits=1000, user_id=DEMO_CAPTAIN_B_ID)
        self.create_team(DEMO_CAPTAIN_A_ID, "Alpha Squad", tag="ALP", credits=500, team_id=DEMO_TEAM_A_ID)
        self.create_team(DEMO_CAPTAIN_B_ID, "Bravo Squad", tag="BRV", credits=300, team_id=DEMO_TEAM_B_ID)
