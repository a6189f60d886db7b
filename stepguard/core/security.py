# stepguard/core/security.py

from typing import Optional

import jwt
from fastapi import Cookie, Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from pydantic import BaseModel

from stepguard.core.config import settings
from stepguard.db.models.device_session_model import LoginMethod

# Verification and backup codes are short, so they get a slow hash at rest
code_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# -----------------------------
# CODE HASHING
# -----------------------------
def hash_code(code: str) -> str:
    return code_context.hash(code)


def verify_code(plain: str, hashed: str) -> bool:
    try:
        return code_context.verify(plain, hashed)
    except ValueError:
        return False


# -----------------------------
# VERIFY / DECODE JWT TOKEN
# -----------------------------
class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    session_id: Optional[str] = None
    login_method: LoginMethod = LoginMethod.PASSWORD


# password-style providers; anything else in app_metadata.provider is a social login
FIRST_PARTY_PROVIDERS = {"email", "phone"}


def login_method_from_claims(decoded: dict) -> LoginMethod:
    """
    How the identity provider authenticated this token, from the signed
    ``amr`` claim or, failing that, ``app_metadata.provider``.
    """
    for entry in decoded.get("amr") or []:
        method = entry.get("method") if isinstance(entry, dict) else entry
        if method == "oauth":
            return LoginMethod.OAUTH

    provider = (decoded.get("app_metadata") or {}).get("provider")
    if provider and provider not in FIRST_PARTY_PROVIDERS:
        return LoginMethod.OAUTH

    return LoginMethod.PASSWORD


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )

    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing"
        )

    decoded = decode_access_token(token)

    # identity provider tokens carry the user id as "sub"; older tokens as "id"
    user_id = decoded.get("sub") or decoded.get("id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    return CurrentUser(
        id=str(user_id),
        email=decoded.get("email"),
        session_id=decoded.get("session_id"),
        login_method=login_method_from_claims(decoded),
    )


def get_device_session_id(
    x_device_session_id: Optional[str] = Header(None),
    session_cookie: Optional[str] = Cookie(None, alias="device_session_id"),
) -> str:
    """
    Device session of the caller, from the X-Device-Session-Id header or the
    device_session_id cookie.
    """
    session_id = x_device_session_id or session_cookie
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No device session found"
        )
    return session_id
