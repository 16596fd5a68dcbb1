"""
HTTP routes of the dividend API.

Handlers are thin: parse the request, call one selector or service inside a
session scope, map the frozen DTO to a response model.  Engine exceptions
propagate to the handlers registered in ``patronage_api.errors``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from patronage_api.dependencies import (
    get_clock,
    get_config,
    get_distribution_service,
    get_session_factory,
)
from patronage_api.schemas import (
    BulkPaymentRequest,
    BulkPaymentResponse,
    DistributionCreatedResponse,
    DistributionCreateRequest,
    DistributionDetailResponse,
    DistributionResponse,
    DistributionVoidRequest,
    DividendResponse,
    MemberDividendsResponse,
    NoticeResponse,
    PaymentUpdateRequest,
)
from patronage_config.schema import EngineConfig
from patronage_kernel.db.base import coerce_uuid
from patronage_kernel.db.engine import session_scope
from patronage_kernel.domain.clock import Clock
from patronage_kernel.domain.values import MemberType, PaymentStatus
from patronage_kernel.selectors.dividend_selector import DividendSelector
from patronage_kernel.services.distribution_store import DistributionRecordStore
from patronage_kernel.services.payment_status import PaymentStatusManager
from patronage_services.distribution_service import DistributionService

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["dividends"])

SessionFactoryDep = Annotated[Callable[[], Session], Depends(get_session_factory)]
ConfigDep = Annotated[EngineConfig, Depends(get_config)]
ClockDep = Annotated[Clock, Depends(get_clock)]


def _resolve_limit(limit: Optional[int], config: EngineConfig) -> int:
    if limit is None:
        return config.distribution.history_limit
    if limit > config.distribution.max_history_limit:
        raise ValueError(
            f"limit must not exceed {config.distribution.max_history_limit}, got {limit}"
        )
    return limit


# ----------------------------------------------------------------------
# Member history
# ----------------------------------------------------------------------


@router.get(
    "/{member_collection}/{member_id}/dividends",
    response_model=MemberDividendsResponse,
)
def get_member_dividends(
    tenant_id: str,
    member_collection: Annotated[str, Path(pattern="^(customers|drivers)$")],
    member_id: str,
    session_factory: SessionFactoryDep,
    config: ConfigDep,
    limit: Annotated[Optional[int], Query(ge=1)] = None,
):
    """A member's most recent dividends with totals over them."""
    member_type = MemberType.from_path_segment(member_collection)
    with session_factory() as session:
        history = DividendSelector(session).get_member_history(
            tenant_id, member_type, member_id, limit=_resolve_limit(limit, config)
        )
    return MemberDividendsResponse.model_validate(history)


# ----------------------------------------------------------------------
# Distributions
# ----------------------------------------------------------------------


@router.post(
    "/dividend-distributions",
    response_model=DistributionCreatedResponse,
    status_code=201,
)
def create_distribution(
    tenant_id: str,
    body: DistributionCreateRequest,
    service: Annotated[DistributionService, Depends(get_distribution_service)],
):
    outcome = service.compute_distribution(
        tenant_id,
        body.member_type,
        body.period_start,
        body.period_end,
        triggered_by=body.triggered_by or "api",
    )
    distribution = DistributionResponse.model_validate(outcome.distribution)
    return DistributionCreatedResponse(
        **distribution.model_dump(),
        notices=[
            NoticeResponse(code=n.code, category=n.category, message=str(n))
            for n in outcome.notices
        ],
    )


@router.get("/dividend-distributions", response_model=list[DistributionResponse])
def list_distributions(
    tenant_id: str,
    session_factory: SessionFactoryDep,
    config: ConfigDep,
    member_type: Optional[MemberType] = None,
    include_voided: bool = False,
    limit: Annotated[Optional[int], Query(ge=1)] = None,
):
    with session_factory() as session:
        distributions = DividendSelector(session).get_distribution_history(
            tenant_id,
            member_type=member_type,
            limit=_resolve_limit(limit, config),
            include_voided=include_voided,
        )
    return [DistributionResponse.model_validate(d) for d in distributions]


@router.get(
    "/dividend-distributions/{distribution_id}",
    response_model=DistributionDetailResponse,
)
def get_distribution(tenant_id: str, distribution_id: str, session_factory: SessionFactoryDep):
    with session_factory() as session:
        detail = DividendSelector(session).get_distribution(tenant_id, distribution_id)
    return DistributionDetailResponse.model_validate(detail)


@router.post(
    "/dividend-distributions/{distribution_id}/finalize",
    response_model=DistributionResponse,
)
def finalize_distribution(
    tenant_id: str,
    distribution_id: str,
    session_factory: SessionFactoryDep,
    clock: ClockDep,
):
    with session_scope(session_factory) as session:
        info = DistributionRecordStore(session, clock).finalize_distribution(
            tenant_id, distribution_id
        )
    return DistributionResponse.model_validate(info)


@router.post(
    "/dividend-distributions/{distribution_id}/void",
    response_model=DistributionResponse,
)
def void_distribution(
    tenant_id: str,
    distribution_id: str,
    body: DistributionVoidRequest,
    session_factory: SessionFactoryDep,
    clock: ClockDep,
):
    with session_scope(session_factory) as session:
        info = DistributionRecordStore(session, clock).void_distribution(
            tenant_id, distribution_id, body.reason
        )
    return DistributionResponse.model_validate(info)


@router.post(
    "/dividend-distributions/{distribution_id}/payments",
    response_model=BulkPaymentResponse,
)
def pay_distribution(
    tenant_id: str,
    distribution_id: str,
    body: BulkPaymentRequest,
    session_factory: SessionFactoryDep,
    clock: ClockDep,
):
    """Mark every pending dividend of a finalized distribution paid."""
    with session_scope(session_factory) as session:
        records_paid = PaymentStatusManager(session, clock).mark_distribution_paid(
            tenant_id,
            distribution_id,
            body.payment_method.value,
            payment_date=body.payment_date,
        )
    return BulkPaymentResponse(
        distribution_id=coerce_uuid(distribution_id),
        records_paid=records_paid,
    )


# ----------------------------------------------------------------------
# Individual dividends
# ----------------------------------------------------------------------


@router.get("/dividends/{dividend_id}", response_model=DividendResponse)
def get_dividend(tenant_id: str, dividend_id: str, session_factory: SessionFactoryDep):
    with session_factory() as session:
        record = DividendSelector(session).get_dividend(tenant_id, dividend_id)
    return DividendResponse.model_validate(record)


@router.patch("/dividends/{dividend_id}/payment", response_model=DividendResponse)
def update_payment_status(
    tenant_id: str,
    dividend_id: str,
    body: PaymentUpdateRequest,
    session_factory: SessionFactoryDep,
    clock: ClockDep,
):
    """
    Move a pending dividend to paid or cancelled.

    A record that is no longer pending (or whose version moved past
    ``expected_version``) answers 409; re-fetch before retrying.
    """
    with session_scope(session_factory) as session:
        manager = PaymentStatusManager(session, clock)
        if body.status == PaymentStatus.PAID.value:
            record = manager.mark_paid(
                tenant_id,
                dividend_id,
                body.payment_method.value,
                payment_date=body.payment_date,
                expected_version=body.expected_version,
            )
        else:
            record = manager.cancel(
                tenant_id,
                dividend_id,
                body.reason,
                expected_version=body.expected_version,
            )
    return DividendResponse.model_validate(record)
