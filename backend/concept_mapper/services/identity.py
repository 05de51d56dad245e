"""Identity registry: resolve author/evaluator names to registered users.

Portable archives carry names rather than user ids, since installations do not
share a user registry. Names that match nobody are kept as display-only
placeholders.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from concept_mapper.models import User

logger = logging.getLogger(__name__)


def format_display_name(first_name: str | None, last_name: str | None) -> str:
    """'First Last' with surrounding whitespace removed."""
    return " ".join(part.strip() for part in (first_name or "", last_name or "") if part.strip())


@dataclass(frozen=True)
class ResolvedIdentity:
    """Outcome of a name lookup."""

    display_name: str
    user_id: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.user_id is not None


class IdentityRegistry:
    """Case-insensitive lookup of users by first and last name.

    Lookups are cached for the lifetime of the registry, which is one
    import batch.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._cache: dict[tuple[str, str], str | None] = {}

    def lookup(self, first_name: str | None, last_name: str | None) -> ResolvedIdentity | None:
        """Resolve a (first_name, last_name) pair.

        Returns None when both parts are blank, otherwise a ResolvedIdentity
        whose user_id is None if no registered user matches.
        """
        display_name = format_display_name(first_name, last_name)
        if not display_name:
            return None

        key = ((first_name or "").strip().lower(), (last_name or "").strip().lower())
        if key not in self._cache:
            self._cache[key] = self._find_user_id(*key)
        return ResolvedIdentity(display_name=display_name, user_id=self._cache[key])

    def _find_user_id(self, first_name: str, last_name: str) -> str | None:
        user_ids = self._session.execute(
            select(User.id)
            .where(
                func.lower(User.first_name) == first_name,
                func.lower(User.last_name) == last_name,
            )
            .order_by(User.created_at)
        ).scalars().all()

        if len(user_ids) > 1:
            logger.warning(
                f"{len(user_ids)} users named '{first_name} {last_name}', using the oldest account"
            )
        return user_ids[0] if user_ids else None
