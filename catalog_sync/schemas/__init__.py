from catalog_sync.schemas.job import JobListResponse, JobResponse
from catalog_sync.schemas.scryfall import (
    BulkDataInfo,
    BulkDataListResponse,
    ScryfallCard,
    ScryfallSet,
)

__all__ = [
    "BulkDataInfo",
    "BulkDataListResponse",
    "JobListResponse",
    "JobResponse",
    "ScryfallCard",
    "ScryfallSet",
]
