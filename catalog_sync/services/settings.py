"""Typed access to the runtime ``settings`` table.

Values are stored as text. The typed getters fall back to the caller's
default when a key is missing or unparsable; ``get_time`` is stricter and
raises on a malformed timestamp so that a bad value is noticed.
"""

from collections.abc import Mapping
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.core.database import session_scope
from catalog_sync.core.datetime_utils import to_aware_utc
from catalog_sync.core.errors import SettingNotFoundError, SettingValueError
from catalog_sync.core.logging import get_logger
from catalog_sync.models.setting import Setting

logger = get_logger(__name__)

DEFAULT_SETTINGS: dict[str, str] = {
    "bulk_data_auto_update": "true",
    "bulk_data_update_time": "03:00",
    "bulk_data_url": "https://api.scryfall.com/bulk-data",
    "bulk_data_last_update": "",
    "bulk_data_last_update_status": "",
    "set_data_auto_update": "true",
    "set_data_update_time": "02:30",
    "set_data_url": "https://api.scryfall.com/sets",
    "set_data_last_update": "",
    "set_data_last_update_status": "",
    "job_cleanup_last_run": "",
    "job_cleanup_retention_days": "30",
    "scheduler_check_interval_minutes": "5",
    "scheduler_catchup_enabled": "true",
    "scheduler_catchup_delay_seconds": "60",
}

VALID_SETTING_KEYS = frozenset(DEFAULT_SETTINGS)

_TRUE_VALUES = frozenset({"1", "t", "true", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "f", "false", "no", "n", "off"})


def parse_bool(value: str) -> bool:
    """Parse a boolean setting value.

    Raises:
        ValueError: if the value is not a recognised boolean
    """
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


class SettingsService:
    """Key/value settings with defaulting accessors."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        defaults: Mapping[str, str] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.defaults = dict(DEFAULT_SETTINGS)
        if defaults:
            self.defaults.update(defaults)

    async def initialize_defaults(self) -> int:
        """Create default settings that do not exist yet.

        Existing values are never overwritten.

        Returns:
            Number of settings created
        """
        async with session_scope(self._session_factory) as db:
            result = await db.execute(select(Setting.key))
            existing = set(result.scalars().all())

            missing = {k: v for k, v in self.defaults.items() if k not in existing}
            for key, value in missing.items():
                db.add(Setting(key=key, value=value))

        if missing:
            logger.bind(keys=sorted(missing)).info("default_settings_created")
        return len(missing)

    async def get(self, key: str) -> str:
        """Get a raw setting value.

        Raises:
            SettingNotFoundError: if the key does not exist
        """
        async with self._session_factory() as db:
            result = await db.execute(select(Setting.value).where(Setting.key == key))
            value = result.scalar_one_or_none()

        if value is None:
            raise SettingNotFoundError(key)
        return value

    async def get_all(self) -> dict[str, str]:
        """Get all settings as a mapping."""
        async with self._session_factory() as db:
            result = await db.execute(select(Setting.key, Setting.value))
            return {key: value for key, value in result.all()}

    async def get_bool(self, key: str, default: bool) -> bool:
        try:
            return parse_bool(await self.get(key))
        except (SettingNotFoundError, ValueError):
            return default

    async def get_int(self, key: str, default: int) -> int:
        try:
            return int((await self.get(key)).strip())
        except (SettingNotFoundError, ValueError):
            return default

    async def get_time(self, key: str) -> datetime | None:
        """Get a timestamp setting as an aware UTC datetime.

        Returns:
            None if the key is missing or empty

        Raises:
            SettingValueError: if the stored value is not an ISO-8601 timestamp
        """
        try:
            value = await self.get(key)
        except SettingNotFoundError:
            return None

        if not value.strip():
            return None

        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise SettingValueError(f"setting {key!r} is not a timestamp: {value!r}") from e
        return to_aware_utc(parsed)

    async def set(self, key: str, value: str) -> None:
        """Create or update a setting."""
        async with session_scope(self._session_factory) as db:
            await self._upsert(db, key, value)

    async def set_time(self, key: str, value: datetime) -> None:
        """Store a timestamp as RFC3339 in UTC."""
        stamp = to_aware_utc(value).replace(microsecond=0).astimezone(UTC)
        await self.set(key, stamp.isoformat().replace("+00:00", "Z"))

    async def set_bulk(self, settings: Mapping[str, str]) -> None:
        """Update several settings in one transaction.

        Raises:
            SettingValueError: if any key is not a known setting
        """
        unknown = sorted(set(settings) - VALID_SETTING_KEYS)
        if unknown:
            raise SettingValueError(f"unknown setting keys: {', '.join(unknown)}")

        async with session_scope(self._session_factory) as db:
            for key, value in settings.items():
                await self._upsert(db, key, value)

    @staticmethod
    async def _upsert(db: AsyncSession, key: str, value: str) -> None:
        result = await db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()
        if setting is None:
            db.add(Setting(key=key, value=value))
        else:
            setting.value = value
