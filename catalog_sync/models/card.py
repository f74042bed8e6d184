"""Local card catalog, filled from the bulk data feed."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.models.base import Base

# Columns an import is allowed to overwrite on an existing row
CARD_FEED_COLUMNS = ("oracle_id", "name", "set_code", "raw_json")


class Card(Base):
    """A card printing; the complete feed record is kept as JSON."""

    __tablename__ = "cards"

    scryfall_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    oracle_id: Mapped[str | None] = mapped_column(String(255), index=True)  # empty for some tokens
    name: Mapped[str] = mapped_column(String(500), index=True)
    set_code: Mapped[str | None] = mapped_column(String(20), index=True)
    raw_json: Mapped[str] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Card {self.set_code}: {self.name[:50]}>"
