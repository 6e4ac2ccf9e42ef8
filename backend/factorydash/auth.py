"""Access-token verification for the human-facing API and the push channel.

Tokens are minted elsewhere; this module only verifies them (PyJWT, HS256 by
default) and exposes the verified identity as (login, role).
"""

import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Request

from factorydash.config import AuthConfig
from factorydash.errors import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    login: str
    role: Optional[str] = None


def verify_token(token: str, auth: AuthConfig) -> Identity:
    """Decode and verify an access token.

    Raises:
        AuthenticationError: If the token is expired, malformed or signed
            with a different secret.
    """
    try:
        payload = jwt.decode(token, auth.jwt_secret, algorithms=[auth.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired, sign in again")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected access token: {type(e).__name__}: {e}")
        raise AuthenticationError("Invalid token")

    login = payload.get("login") or payload.get("username") or payload.get("sub")
    if not login:
        raise AuthenticationError("Invalid token")
    return Identity(login=str(login), role=payload.get("role"))


def extract_token(
    authorization: Optional[str],
    cookies: dict,
    query_params,
) -> Optional[str]:
    """Pick the token from the Bearer header, the ``token`` cookie or query."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    if cookies.get("token"):
        return cookies["token"]
    return query_params.get("token") or None


async def require_identity(request: Request) -> Identity:
    """FastAPI dependency for routes that need a signed-in human."""
    token = extract_token(
        request.headers.get("authorization"), request.cookies, request.query_params
    )
    if token is None:
        raise AuthenticationError("Authorization required")
    return verify_token(token, request.app.state.settings.auth)
