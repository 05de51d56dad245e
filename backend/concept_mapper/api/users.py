"""User registry endpoints.

Users are the identities behind X-User-Id and the names that archive imports
are resolved against.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select

from concept_mapper.api.deps import DbSession
from concept_mapper.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


class UserCreate(BaseModel):
    login: str = Field(..., min_length=1, max_length=100)
    first_name: str = ""
    last_name: str = ""


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    login: str
    first_name: str
    last_name: str
    display_name: str
    created_at: datetime | None = None


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED, summary="Register a user")
def create_user(request: UserCreate, db: DbSession) -> UserResponse:
    existing = db.execute(select(User).where(User.login == request.login)).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Login '{request.login}' is already taken",
        )
    user = User(
        login=request.login,
        first_name=request.first_name.strip(),
        last_name=request.last_name.strip(),
    )
    db.add(user)
    db.flush()
    db.refresh(user)
    logger.info(f"User {user.login} registered")
    return UserResponse.model_validate(user)


@router.get("", response_model=list[UserResponse], summary="List users")
def list_users(db: DbSession) -> list[UserResponse]:
    users = db.execute(select(User).order_by(User.login)).scalars()
    return [UserResponse.model_validate(u) for u in users]
