"""Local set catalog, filled from the set list feed."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.models.base import Base

SET_FEED_COLUMNS = (
    "code",
    "name",
    "set_type",
    "released_at",
    "card_count",
    "digital",
    "icon_filename",
    "parent_set_code",
)


class CardSet(Base):
    """A card set with its locally cached icon."""

    __tablename__ = "card_sets"

    scryfall_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(10), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    set_type: Mapped[str | None] = mapped_column(String(50), index=True)
    released_at: Mapped[str | None] = mapped_column(String(10))  # YYYY-MM-DD
    card_count: Mapped[int] = mapped_column(default=0)
    digital: Mapped[bool] = mapped_column(default=False)
    icon_filename: Mapped[str | None] = mapped_column(String(255))
    parent_set_code: Mapped[str | None] = mapped_column(String(10))

    def __repr__(self) -> str:
        return f"<CardSet {self.code}: {self.name}>"
