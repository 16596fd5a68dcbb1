"""
Module: patronage_kernel.models.trip
Responsibility: Read-side mapping of the trips table that patronage is
    counted from.
Architecture position: Kernel > Models.  Trips are written by the scheduling
    and dispatch side of the application; the dividend engine only reads them.

Invariants relied upon:
    - completed_at is set when and only when status is COMPLETED, and is
      held in UTC; aware values are converted and naive values are taken
      as UTC.  SQLite stores the wall-clock time without its offset.
    - customer_id is always set; driver_id may be NULL for unassigned trips.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from patronage_kernel.db.base import TrackedBase
from patronage_kernel.db.types import ExternalId, ShortCode


class TripStatus(str, Enum):
    """Trip lifecycle status.  Only COMPLETED trips count as patronage."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class Trip(TrackedBase):
    """A single trip taken by a customer and (optionally) driven by a driver."""

    __tablename__ = "trips"

    __table_args__ = (
        Index("idx_trip_tenant_completed", "tenant_id", "status", "completed_at"),
    )

    tenant_id: Mapped[ExternalId] = mapped_column(nullable=False)
    customer_id: Mapped[ExternalId] = mapped_column(nullable=False)
    driver_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=TripStatus.SCHEDULED.value,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @validates("completed_at")
    def _completed_at_utc(self, key: str, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def __repr__(self) -> str:
        return f"<Trip {self.customer_id}/{self.driver_id}: {self.status}>"
