"""Principal model and the role names the core knows about."""

from typing import Optional

from pydantic import BaseModel, ConfigDict

SUPER_ADMIN = "super_admin"
ADMIN = "admin"
MANAGER = "manager"
USER = "user"

# Higher rank satisfies any requirement of lower rank. Roles outside this table
# (free-form claims such as "editor") only satisfy a requirement for themselves.
ROLE_RANK = {
    USER: 1,
    MANAGER: 2,
    ADMIN: 3,
    SUPER_ADMIN: 4,
}


def role_satisfies(actual: Optional[str], required: str) -> bool:
    if not actual:
        return False
    if actual == required:
        return True
    actual_rank = ROLE_RANK.get(actual)
    required_rank = ROLE_RANK.get(required)
    if actual_rank is None or required_rank is None:
        return False
    return actual_rank >= required_rank


class Principal(BaseModel):
    """The current user as supplied by the session provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    role: Optional[str] = None  # explicit role claim, if the provider sent one
    session_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
