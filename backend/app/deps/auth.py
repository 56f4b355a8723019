from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel
from typing import Callable
from app.core.security import decode_token
from app.models.enums import UserRole

class CurrentUser(BaseModel):
    id: int
    role: UserRole

def get_current_user(authorization: str | None = Header(default=None)) -> CurrentUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
        return CurrentUser(id=int(data["sub"]), role=UserRole(data.get("role")))
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")

def require_role(*allowed: UserRole) -> Callable:
    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if allowed and user.role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return checker
