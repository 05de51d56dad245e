"""SQLAlchemy model for registered users (identity registry)."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from concept_mapper.core.database import Base


class User(Base):
    """A registered reviewer.

    Only the name fields matter to the mapping engine: portable archives
    identify authors and evaluators by first and last name.
    """

    __tablename__ = "users"

    login: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )
    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        index=True,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        index=True,
    )

    @property
    def display_name(self) -> str:
        """'First Last', or the login when no name is set."""
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.login

    def __repr__(self) -> str:
        return f"<User(login='{self.login}', name='{self.display_name}')>"
