"""Unit tests for requester identities."""

from unittest.mock import patch

import pytest

from panel_orchestrator.identity import Identity, load_identity
from panel_orchestrator.models.users import UserRole
from panel_orchestrator.utils.exceptions import UserNotFoundError


def test_is_admin():
    """Test the administrator flag."""
    assert Identity("u1", "root", UserRole.ADMIN).is_admin
    assert not Identity("u2", "dev").is_admin


@pytest.mark.asyncio
async def test_load_identity(db_manager, users):
    """Test resolving active users."""
    with patch("panel_orchestrator.identity.get_db_manager", return_value=db_manager):
        admin = await load_identity("u_admin")
        alice = await load_identity("u_alice")

    assert admin == users["admin"]
    assert alice.role == UserRole.MEMBER


@pytest.mark.asyncio
async def test_load_identity_inactive_or_missing(db_manager, users):
    """Test that inactive and unknown users are rejected."""
    with patch("panel_orchestrator.identity.get_db_manager", return_value=db_manager):
        with pytest.raises(UserNotFoundError):
            await load_identity("u_gone")
        with pytest.raises(UserNotFoundError):
            await load_identity("u_nobody")
