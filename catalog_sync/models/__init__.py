from catalog_sync.models.base import Base
from catalog_sync.models.card import Card
from catalog_sync.models.card_set import CardSet
from catalog_sync.models.job import Job, JobStatus, JobType
from catalog_sync.models.setting import Setting

__all__ = [
    "Base",
    "Card",
    "CardSet",
    "Job",
    "JobStatus",
    "JobType",
    "Setting",
]
