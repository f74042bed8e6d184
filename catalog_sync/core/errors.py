"""Exception types raised by the settings store and the import engine.

Only the import errors end up on a job record: their ``str()`` is what the
ledger stores in ``Job.error``.
"""


class CatalogSyncError(Exception):
    """Base class for catalog sync errors."""


class SettingNotFoundError(CatalogSyncError):
    """A settings key has no stored value."""

    def __init__(self, key: str) -> None:
        super().__init__(f"setting {key!r} not found")
        self.key = key


class SettingValueError(CatalogSyncError):
    """A stored setting cannot be parsed, or a key is not accepted."""


class ImportFailedError(CatalogSyncError):
    """An import run failed as a whole."""


class DatasetNotFoundError(ImportFailedError):
    """The catalog-of-datasets response has no entry for the wanted type."""


class DownloadError(ImportFailedError):
    """Transport failure or non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FramingError(ImportFailedError):
    """The payload is not a well-formed JSON array."""


class FailureThresholdExceededError(ImportFailedError):
    """Too many records failed conversion; committed batches are kept."""

    def __init__(self, failed: int, total: int, max_rate: float) -> None:
        self.failed = failed
        self.total = total
        self.rate = failed / total if total else 0.0
        self.max_rate = max_rate
        super().__init__(
            f"import failed: {failed}/{total} records failed "
            f"({self.rate * 100:.2f}% > {max_rate * 100:.2f}% threshold)"
        )
