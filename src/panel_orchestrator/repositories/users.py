"""Repository for User model operations."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from panel_orchestrator.models.users import User

from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for user lookups."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, User)

    async def get_active(self, user_id: str) -> User | None:
        """
        Get a user only if the account is active.

        Args:
            user_id: User ID

        Returns:
            User or None if missing or inactive
        """
        user = await self.get(user_id)
        if user is None or not user.is_active:
            return None
        return user

    async def get_by_username(self, username: str) -> User | None:
        """Get user by username."""
        stmt = select(User).where(User.username == username)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
