import logging

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from siro.core.config import Settings
from siro.core.container import Services


logger = logging.getLogger(__name__)
security = HTTPBearer()


def get_services(connection: HTTPConnection) -> Services:
    return connection.app.state.services


def get_settings(connection: HTTPConnection) -> Settings:
    return connection.app.state.services.settings


def decode_token(token: str, settings: Settings) -> dict:
    """
    Verify a Supabase access token and return its claims.

    Raises ``jwt.ExpiredSignatureError`` / ``jwt.InvalidTokenError``.
    """
    if not settings.jwt_secret:
        raise jwt.InvalidTokenError("SUPABASE_JWT_SECRET is not configured")

    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        options={"verify_aud": False},
        leeway=60,
    )


def verify_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
):
    token = credentials.credentials

    try:
        return decode_token(token, settings)

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")

    except jwt.InvalidTokenError as error:
        logger.warning(f"jwt_verification_failed error={error}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user_id(payload: dict = Depends(verify_token)) -> str:
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id
