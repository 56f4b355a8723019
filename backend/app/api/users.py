from typing import Optional
from pydantic import BaseModel
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.crud.directory import set_push_token
from app.deps.auth import CurrentUser, get_current_user

router = APIRouter(prefix="/api/users", tags=["users"])

class PushTokenIn(BaseModel):
    push_token: Optional[str] = None   # null clears the registration

@router.put("/me/push-token", response_model=dict)
def register_push_token(body: PushTokenIn, db: Session = Depends(get_db),
                        user: CurrentUser = Depends(get_current_user)):
    u = set_push_token(db, user.id, body.push_token)
    return {"user_id": u.id, "registered": bool(u.push_token)}
