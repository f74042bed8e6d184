"""Set catalog import, with each set's SVG icon cached under ``data_dir``.

Scryfall serves sets as a plain list response (``{"data": [...]}``) rather
than a bulk feed, so the configured ``set_data_url`` is streamed directly.
"""

import asyncio
import re
from pathlib import Path
from typing import Any

import httpx

from catalog_sync.config import get_settings
from catalog_sync.core.errors import DownloadError
from catalog_sync.core.logging import get_logger
from catalog_sync.models.card_set import SET_FEED_COLUMNS, CardSet
from catalog_sync.models.job import JobType
from catalog_sync.schemas.scryfall import ScryfallSet
from catalog_sync.services.importer import ImportBatchResult, StreamingImporter

logger = get_logger(__name__)

ICON_DIR_NAME = "set-icons"
SET_CODE_PATTERN = re.compile(r"^[a-z0-9]+$")


class SetDataService(StreamingImporter):
    """Keeps the ``card_sets`` table and the icon cache in sync."""

    job_type = JobType.SET_DATA_IMPORT
    settings_prefix = "set_data"
    array_path = "data"
    label = "sets"
    counter_names = ("icons_downloaded", "icons_skipped")
    model = CardSet
    update_columns = SET_FEED_COLUMNS

    def __init__(self, *args: Any, data_dir: str | Path | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.icon_dir = Path(data_dir or get_settings().data_dir) / ICON_DIR_NAME

    async def resolve_download_uri(self) -> str:
        return await self._catalog_url()

    def convert(self, raw: Any) -> dict[str, Any]:
        card_set = ScryfallSet.model_validate(raw)
        return {
            "scryfall_id": card_set.id,
            "code": card_set.code,
            "name": card_set.name,
            "set_type": card_set.set_type,
            "released_at": card_set.released_at.isoformat() if card_set.released_at else None,
            "card_count": card_set.card_count,
            "digital": card_set.digital,
            "icon_filename": None,
            "parent_set_code": card_set.parent_set_code,
            # Not a column; consumed by enrich()
            "_icon_svg_uri": card_set.icon_svg_uri,
        }

    def describe(self, raw: Any) -> str:
        if not isinstance(raw, dict):
            return f"Set {str(raw)[:40]}"
        return f"Set {raw.get('code') or raw.get('id') or '?'}"

    async def enrich(self, row: dict[str, Any], result: ImportBatchResult) -> None:
        """Download the set icon unless it is already cached.

        Raises:
            DownloadError: if the icon cannot be fetched or written; the row
                is kept without an icon
        """
        icon_uri = row.pop("_icon_svg_uri", None)
        if not icon_uri:
            return

        code = row["code"]
        # The code becomes a filename under icon_dir
        if not SET_CODE_PATTERN.match(code):
            raise DownloadError(f"icon download failed: unsafe set code {code!r}")

        filename = f"{code}.svg"
        icon_path = self.icon_dir / filename
        if icon_path.exists():
            row["icon_filename"] = filename
            result.count("icons_skipped")
            return

        try:
            response = await self._http.get(icon_uri)
        except httpx.HTTPError as e:
            raise DownloadError(f"icon download failed: {e}") from e
        if not response.is_success:
            raise DownloadError(
                f"icon download failed: status {response.status_code}",
                status_code=response.status_code,
            )

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_icon, icon_path, response.content)
        except OSError as e:
            raise DownloadError(f"icon download failed: cannot write {icon_path}: {e}") from e

        row["icon_filename"] = filename
        result.count("icons_downloaded")
        logger.bind(set_code=code).debug("set_icon_downloaded")

    def _write_icon(self, icon_path: Path, content: bytes) -> None:
        self.icon_dir.mkdir(parents=True, exist_ok=True)
        icon_path.write_bytes(content)
