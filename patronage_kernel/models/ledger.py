"""
Module: patronage_kernel.models.ledger
Responsibility: Read-side mapping of the per-service revenue/cost entries and
    the ledger close marker that the surplus calculation draws on.
Architecture position: Kernel > Models.  Written by invoicing and cost
    tracking; read-only to the dividend engine.

Invariants relied upon:
    - Amounts are integer minor units.
    - A tenant's figures are complete for every date <= closed_through.
"""

from datetime import date

from sqlalchemy import Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from patronage_kernel.db.base import TrackedBase
from patronage_kernel.db.types import Currency, ExternalId, MinorUnits


class ServiceCostEntry(TrackedBase):
    """Revenue and operating costs booked against one service day."""

    __tablename__ = "service_cost_entries"

    __table_args__ = (
        Index("idx_service_cost_tenant_date", "tenant_id", "service_date"),
    )

    tenant_id: Mapped[ExternalId] = mapped_column(nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    revenue: Mapped[MinorUnits] = mapped_column(nullable=False, default=0)
    operating_costs: Mapped[MinorUnits] = mapped_column(nullable=False, default=0)
    currency: Mapped[Currency] = mapped_column(nullable=False, default="GBP")
    description: Mapped[str | None] = mapped_column(String(255))


class LedgerClose(TrackedBase):
    """Date through which a tenant's books are closed (figures complete)."""

    __tablename__ = "ledger_closes"

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_ledger_close_tenant"),
    )

    tenant_id: Mapped[ExternalId] = mapped_column(nullable=False)
    closed_through: Mapped[date] = mapped_column(Date, nullable=False)

    def covers(self, period_end: date) -> bool:
        return self.closed_through >= period_end
