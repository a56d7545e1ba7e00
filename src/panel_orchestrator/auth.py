"""Authentication for the operator tools and the real-time console channel."""

from typing import Any

import jwt
from starlette.requests import HTTPConnection

from panel_orchestrator.config import get_settings
from panel_orchestrator.identity import Identity, load_identity
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.exceptions import AuthenticationError, UserNotFoundError

logger = get_logger(__name__)


def create_auth_provider() -> Any | None:
    """
    Create the authentication provider of the operator tool surface.

    Returns:
        Authentication provider instance or None for no authentication
    """
    settings = get_settings()

    if settings.auth_mode == "none":
        logger.info("No authentication configured")
        return None

    if settings.auth_mode == "bearer":
        if not settings.bearer_token:
            raise ValueError("Bearer token authentication requires PANEL_BEARER_TOKEN to be set")

        from fastmcp.server.auth import StaticTokenVerifier

        logger.info("Configuring bearer token authentication with StaticTokenVerifier")

        tokens = {settings.bearer_token: {"sub": "operator", "scope": "api:full"}}
        return StaticTokenVerifier(tokens=tokens)

    raise ValueError(f"Invalid auth_mode: {settings.auth_mode}")


def extract_token(conn: HTTPConnection) -> str | None:
    """
    Extract a bearer token from a connection.

    Checks the ``token`` query parameter first (browsers cannot set headers
    on WebSocket upgrades), then the Authorization header.

    Returns:
        Token or None
    """
    token = conn.query_params.get("token")

    if not token:
        auth_header = conn.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    return token or None


def decode_token(token: str) -> str:
    """
    Verify a client JWT and return its user ID.

    The user ID is read from the ``userId`` claim, falling back to ``sub``.

    Raises:
        AuthenticationError: If the token is invalid, expired or carries no user
    """
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.warning("Rejected client token", extra={"error": str(e)})
        raise AuthenticationError()

    user_id = claims.get("userId") or claims.get("sub")
    if not user_id:
        raise AuthenticationError("Token carries no user")
    return str(user_id)


async def authenticate(conn: HTTPConnection) -> Identity:
    """
    Authenticate a real-time connection.

    Args:
        conn: Incoming WebSocket connection

    Returns:
        Identity of the active user behind the token

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user is inactive
    """
    token = extract_token(conn)
    if not token:
        raise AuthenticationError("Authentication token required")

    user_id = decode_token(token)
    try:
        return await load_identity(user_id)
    except UserNotFoundError:
        raise AuthenticationError("User not found or inactive")
