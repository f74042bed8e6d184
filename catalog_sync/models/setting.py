"""Key/value runtime settings."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.models.base import Base, TimestampMixin


class Setting(TimestampMixin, Base):
    """A single user-editable setting, stored as text."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    value: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<Setting {self.key}={self.value!r}>"
