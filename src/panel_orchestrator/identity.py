"""Requester identity resolved from the users table."""

from dataclasses import dataclass

from panel_orchestrator.models.database import get_db_manager
from panel_orchestrator.models.users import User, UserRole
from panel_orchestrator.repositories.users import UserRepository
from panel_orchestrator.utils.exceptions import UserNotFoundError


@dataclass(frozen=True)
class Identity:
    """Authenticated user acting on the orchestrator."""

    user_id: str
    username: str
    role: UserRole = UserRole.MEMBER

    @property
    def is_admin(self) -> bool:
        """Whether the user is an administrator."""
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        """Build an identity from a user row."""
        return cls(user_id=user.id, username=user.username, role=UserRole(user.role))


async def load_identity(user_id: str) -> Identity:
    """
    Resolve an active user into an identity.

    Args:
        user_id: User ID

    Returns:
        Identity of the user

    Raises:
        UserNotFoundError: If the user does not exist or is inactive
    """
    async with get_db_manager().get_session() as session:
        user = await UserRepository(session).get_active(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return Identity.from_user(user)
