"""Shared API dependencies and error translation."""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from concept_mapper.core.database import get_db
from concept_mapper.core.errors import (
    DuplicateMappingError,
    ImportValidationError,
    MappingEngineError,
    NotFoundError,
    OwnershipError,
    TransactionFailure,
)
from concept_mapper.models import User

logger = logging.getLogger(__name__)

# Type alias for database session dependency (avoids B008 linting issue)
DbSession = Annotated[Session, Depends(get_db)]

_ERROR_STATUS = {
    ImportValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateMappingError: status.HTTP_409_CONFLICT,
    OwnershipError: status.HTTP_403_FORBIDDEN,
    TransactionFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_http_exception(error: MappingEngineError) -> HTTPException:
    """Translate a service error into the matching HTTP error."""
    status_code = _ERROR_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"Request failed: {error}")
    return HTTPException(status_code=status_code, detail=str(error))


def get_optional_user_id(
    db: DbSession,
    x_user_id: Annotated[str | None, Header(description="Acting user id")] = None,
) -> str | None:
    """Acting user from the X-User-Id header, or None when absent."""
    if not x_user_id:
        return None
    if db.get(User, x_user_id) is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown user {x_user_id}",
        )
    return x_user_id


def get_required_user_id(
    user_id: Annotated[str | None, Depends(get_optional_user_id)],
) -> str:
    """Acting user, required for votes, comments and deletions."""
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return user_id


OptionalUserId = Annotated[str | None, Depends(get_optional_user_id)]
RequiredUserId = Annotated[str, Depends(get_required_user_id)]
