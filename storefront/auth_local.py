from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from fastapi import HTTPException, Request
from .core_settings import get_settings
from .core import set_request_context

BEARER_PREFIX = "Bearer "

def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    """Issue an admin token; the external auth service does this in production."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def require_admin(request: Request) -> dict:
    """Dependency gating inventory mutations to authenticated administrators."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header[len(BEARER_PREFIX):])
    if not token_data or not token_data.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    set_request_context(actor=token_data["sub"])
    return token_data
