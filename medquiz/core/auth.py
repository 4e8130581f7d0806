from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import List, Optional
import jwt
from datetime import datetime, timedelta, timezone
from medquiz.core.config import Settings, settings as default_settings

class TokenData(BaseModel):
    sub: str
    roles: List[str]

bearer = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)

def create_token(user_id: str, roles: List[str], ttl_minutes: Optional[int] = None, settings: Optional[Settings] = None) -> str:
    settings = settings or default_settings
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {"sub": user_id, "roles": roles, "iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl)).timestamp())}
    return jwt.encode(payload, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)

def decode_token(token: str, settings: Optional[Settings] = None) -> TokenData:
    settings = settings or default_settings
    payload = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
    return TokenData(sub=payload["sub"], roles=payload.get("roles", []))

def app_settings(request: Request) -> Settings:
    # the settings the app was built with, not whatever the environment held at import
    return getattr(request.app.state, "settings", None) or default_settings

def get_current_user(request: Request, creds: HTTPAuthorizationCredentials = Depends(bearer)) -> TokenData:
    try:
        return decode_token(creds.credentials, app_settings(request))
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

def get_optional_user(request: Request, creds: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer)) -> Optional[TokenData]:
    # anonymous callers are allowed; a bad token is treated as no token
    if not creds or not creds.credentials:
        return None
    try:
        return decode_token(creds.credentials, app_settings(request))
    except (jwt.PyJWTError, KeyError):
        return None

def require_roles(*required: str):
    def checker(user: TokenData = Depends(get_current_user)):
        roles = set(user.roles)
        if not roles.intersection(set(required)):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return user
    return checker
