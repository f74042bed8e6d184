"""Card catalog import from Scryfall's ``all_cards`` bulk data feed."""

import json
from typing import Any

from catalog_sync.models.card import CARD_FEED_COLUMNS, Card
from catalog_sync.models.job import JobType
from catalog_sync.schemas.scryfall import ScryfallCard
from catalog_sync.services.importer import StreamingImporter

ZERO_TIME = "0001-01-01T00:00:00Z"


def _null_zero_times(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _null_zero_times(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_null_zero_times(v) for v in value]
    if value == ZERO_TIME:
        return None
    return value


def clean_raw_json(record: dict[str, Any]) -> dict[str, Any]:
    """Normalize date fields of a card record before it is stored.

    Zero timestamps become null, ``released_at`` and
    ``preview.previewed_at`` are truncated to ``YYYY-MM-DD``.

    Args:
        record: Card record as decoded from the feed

    Returns:
        A cleaned copy; ``record`` is not modified
    """
    cleaned = _null_zero_times(record)

    released_at = cleaned.get("released_at")
    if isinstance(released_at, str) and len(released_at) > 10:
        cleaned["released_at"] = released_at[:10]

    preview = cleaned.get("preview")
    if isinstance(preview, dict):
        previewed_at = preview.get("previewed_at")
        if isinstance(previewed_at, str) and len(previewed_at) > 10:
            preview["previewed_at"] = previewed_at[:10]

    return cleaned


class BulkDataService(StreamingImporter):
    """Keeps the ``cards`` table in sync with the bulk data feed."""

    job_type = JobType.BULK_DATA_IMPORT
    settings_prefix = "bulk_data"
    dataset_type = "all_cards"
    label = "cards"
    model = Card
    update_columns = CARD_FEED_COLUMNS

    def convert(self, raw: Any) -> dict[str, Any]:
        card = ScryfallCard.model_validate(raw)
        return {
            "scryfall_id": card.id,
            "oracle_id": card.oracle_id,
            "name": card.name,
            "set_code": card.set,
            "raw_json": json.dumps(clean_raw_json(raw), ensure_ascii=False),
        }

    def describe(self, raw: Any) -> str:
        if not isinstance(raw, dict):
            return f"Card {str(raw)[:40]}"
        return f"Card {raw.get('id') or '?'} ({raw.get('name') or '?'})"
