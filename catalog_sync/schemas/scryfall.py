"""Scryfall payload shapes.

Only the fields the catalog stores are declared; everything else is kept
(``extra="allow"``) so the raw record round-trips into ``Card.raw_json``.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class BulkDataInfo(BaseModel):
    """One entry of the bulk data catalog."""

    model_config = ConfigDict(extra="ignore")

    type: str
    download_uri: str
    updated_at: datetime | None = None
    name: str | None = None
    size: int | None = None


class BulkDataListResponse(BaseModel):
    """Response from the bulk data catalog endpoint."""

    model_config = ConfigDict(extra="ignore")

    data: list[BulkDataInfo] = Field(default_factory=list)


class ScryfallCard(BaseModel):
    """A card record from the ``all_cards`` feed."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    oracle_id: str | None = None
    set: str | None = None


class ScryfallSet(BaseModel):
    """A set record from the sets list."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    code: str = Field(min_length=1, max_length=10)
    name: str = Field(min_length=1)
    set_type: str | None = None
    released_at: date | None = None
    card_count: int = 0
    digital: bool = False
    icon_svg_uri: str | None = None
    parent_set_code: str | None = None
