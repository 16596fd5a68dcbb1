"""
Module: patronage_kernel.models.tenant_settings
Responsibility: Per-tenant dividend configuration (rate, cooperative model,
    hybrid split and scheduling).
Architecture position: Kernel > Models.  Maintained by tenant administration;
    read by the settings collaborator and the scheduler.

Invariants relied upon:
    - 0 <= dividend_rate <= 1 and 0 <= customer_share <= 1.  Checked again
      when read, so a bad row fails loudly instead of distributing nonsense.
"""

from decimal import Decimal

from sqlalchemy import Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from patronage_kernel.db.base import TrackedBase
from patronage_kernel.db.types import Currency, ExternalId, Rate, ShortCode
from patronage_kernel.domain.values import CooperativeModel, ScheduleFrequency


class TenantDividendSettings(TrackedBase):
    """Dividend settings of one cooperative tenant."""

    __tablename__ = "tenant_dividend_settings"

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_dividend_settings_tenant"),
    )

    tenant_id: Mapped[ExternalId] = mapped_column(nullable=False)
    dividend_rate: Mapped[Rate] = mapped_column(nullable=False, default=Decimal("0"))
    cooperative_model: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=CooperativeModel.PASSENGER.value,
    )
    # Share of a hybrid pool that goes to customers; drivers get the rest
    customer_share: Mapped[Rate] = mapped_column(nullable=False, default=Decimal("0.5"))
    schedule_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    schedule_frequency: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=ScheduleFrequency.MONTHLY.value,
    )
    auto_finalize: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    currency: Mapped[Currency] = mapped_column(nullable=False, default="GBP")

    def __repr__(self) -> str:
        return f"<TenantDividendSettings {self.tenant_id}: {self.cooperative_model}>"
