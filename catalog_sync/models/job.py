"""Background job ledger model."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.models.base import Base, TimestampMixin


class JobType(str, enum.Enum):
    """Kinds of long-running operations tracked by the ledger."""

    BULK_DATA_IMPORT = "bulk_data_import"
    SET_DATA_IMPORT = "set_data_import"


class JobStatus(str, enum.Enum):
    """Job lifecycle: pending -> in_progress -> completed | failed | cancelled."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.IN_PROGRESS})


def _enum_column(enum_cls: type[enum.Enum], name: str, length: int) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda e: [x.value for x in e],
        name=name,
        native_enum=False,
        length=length,
    )


class Job(TimestampMixin, Base):
    """Records one execution of a long-running background operation."""

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[JobType] = mapped_column(_enum_column(JobType, "jobtype", 50), index=True)
    status: Mapped[JobStatus] = mapped_column(
        _enum_column(JobStatus, "jobstatus", 20), default=JobStatus.PENDING, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    job_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    trigger: Mapped[str] = mapped_column(String(20), default="manual")

    def __repr__(self) -> str:
        return f"<Job {self.type.value} {self.status.value} {self.id}>"
