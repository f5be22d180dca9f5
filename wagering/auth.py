from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .errors import ForbiddenError, NotFoundError
from .storage import InMemoryStorage


class Caller(BaseModel):
    """Identity resolved by the identity provider for the current request."""
    user_id: UUID
    is_admin: bool = False

    model_config = ConfigDict(frozen=True)


def caller_for(storage: InMemoryStorage, user_id: UUID) -> Caller:
    user = storage.users.get(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return Caller(user_id=user_id, is_admin=user["is_admin"])


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise ForbiddenError("Admin access required")


def require_member(storage: InMemoryStorage, caller: Caller, team_id: UUID, message: str) -> None:
    if not storage.is_team_member(team_id, caller.user_id):
        raise ForbiddenError(message)


def require_owner(storage: InMemoryStorage, caller: Caller, team_id: UUID, message: str) -> None:
    if storage.get_row("teams", team_id)["owner_id"] != caller.user_id:
        raise ForbiddenError(message)
