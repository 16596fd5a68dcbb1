"""
Request and response bodies of the dividend HTTP API.

Money is always integer minor units.  Percentages and rates are Decimals,
serialized as strings so clients display exactly what the engine stored.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from patronage_kernel.domain.values import (
    DistributionStatus,
    MemberType,
    PaymentMethod,
    PaymentStatus,
)


class DistributionCreateRequest(BaseModel):
    member_type: MemberType
    period_start: date
    period_end: date
    triggered_by: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def check_period(self) -> "DistributionCreateRequest":
        if self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        return self


class DistributionVoidRequest(BaseModel):
    reason: str = Field(min_length=1)


class PaymentUpdateRequest(BaseModel):
    """Body of ``PATCH /dividends/{id}/payment``."""

    status: Literal["paid", "cancelled"]
    payment_method: Optional[PaymentMethod] = None
    payment_date: Optional[date] = None
    reason: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_status_fields(self) -> "PaymentUpdateRequest":
        if self.status == PaymentStatus.PAID.value and self.payment_method is None:
            raise ValueError("payment_method is required when marking a dividend paid")
        if self.status == PaymentStatus.CANCELLED.value and not self.reason:
            raise ValueError("reason is required when cancelling a dividend")
        return self


class BulkPaymentRequest(BaseModel):
    payment_method: PaymentMethod
    payment_date: Optional[date] = None


class DistributionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    distribution_id: UUID
    tenant_id: str
    member_type: MemberType
    period_start: date
    period_end: date
    currency: str
    total_revenue: int
    total_operating_costs: int
    gross_surplus: int
    dividend_rate: Decimal
    dividend_pool: int
    undistributed_amount: int
    total_patronage: int
    eligible_members: int
    status: DistributionStatus
    review_required: bool
    computed_at: Optional[datetime] = None
    distributed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    triggered_by: Optional[str] = None


class NoticeResponse(BaseModel):
    code: str
    category: str
    message: str


class DistributionCreatedResponse(DistributionResponse):
    notices: list[NoticeResponse] = []


class DividendResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dividend_id: UUID
    distribution_id: UUID
    member_id: str
    member_type: MemberType
    patronage_value: int
    patronage_percentage: Decimal
    dividend_amount: int
    currency: str
    payment_status: PaymentStatus
    version: int
    payment_method: Optional[str] = None
    payment_date: Optional[date] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None


class DividendSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_distributions: int
    total_dividends: int
    total_paid: int
    total_pending: int
    total_patronage: int


class MemberDividendsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    member_type: MemberType
    member_id: str
    dividends: list[DividendResponse]
    summary: DividendSummaryResponse


class DistributionDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    distribution: DistributionResponse
    dividends: list[DividendResponse]


class BulkPaymentResponse(BaseModel):
    distribution_id: UUID
    records_paid: int
