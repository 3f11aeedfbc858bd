
from typing import Optional
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from storefront.core.config import Settings, get_settings

security = HTTPBearer(auto_error=False)

def get_current_identity(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> dict:
    # Gateway return URLs are plain browser navigations, so the cookie is accepted too
    token = creds.credentials if creds else request.cookies.get(settings.SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    return payload  # contains sub (user id), role

def get_current_user_id(identity: dict = Depends(get_current_identity)) -> int:
    try:
        return int(identity.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid subject")
