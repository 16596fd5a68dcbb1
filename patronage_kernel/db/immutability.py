"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Dividend records are money owed to members.  Once computed, the amount a
member is owed must never be silently edited: a change in entitlement is
made by voiding the whole distribution (before finalization) and computing a
fresh one, which leaves both versions in the table for audit.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners below intercept them:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Payment transitions are issued as guarded Core UPDATE statements by
PaymentStatusManager and only touch lifecycle columns, so they never trip
these listeners.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | What is frozen                       | When
--------------------|--------------------------------------|------------------------
DividendRecord      | member, amount, patronage, parent    | Always (after INSERT)
DividendRecord      | the row itself (DELETE)              | Parent finalized
DistributionPeriod  | every field                          | After status=finalized
DistributionPeriod  | the row itself (DELETE)              | Unless voided

===============================================================================
USAGE
===============================================================================

    from patronage_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from patronage_kernel.exceptions import ImmutabilityViolationError
from patronage_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_DIVIDEND_FROZEN_FIELDS = frozenset({
    "distribution_id",
    "tenant_id",
    "member_id",
    "member_type",
    "patronage_value",
    "patronage_percentage",
    "dividend_amount",
    "currency",
})

_AUDIT_FIELDS = frozenset({"updated_at"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_dividend_record_immutability(mapper, connection, target):
    """Financial fields of a DividendRecord never change after INSERT."""
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _DIVIDEND_FROZEN_FIELDS and attr.history.has_changes():
            _blocked(
                "DividendRecord",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a dividend record",
                field=attr.key,
            )


def _check_dividend_record_delete(mapper, connection, target):
    """Records of a finalized distribution are never deleted."""
    from patronage_kernel.models.distribution import DistributionPeriod, DistributionStatus

    status = connection.execute(
        DistributionPeriod.__table__.select()
        .with_only_columns(DistributionPeriod.__table__.c.status)
        .where(DistributionPeriod.__table__.c.id == str(target.distribution_id))
    ).scalar_one_or_none()

    if status == DistributionStatus.FINALIZED:
        _blocked(
            "DividendRecord",
            target.id,
            "DELETE",
            "Dividend records of a finalized distribution cannot be deleted",
        )


def _check_distribution_immutability(mapper, connection, target):
    """
    A finalized DistributionPeriod is frozen.

    The computed -> finalized transition itself is allowed (status and
    distributed_at change in the same flush); any change after that is not.
    """
    from patronage_kernel.models.distribution import DistributionStatus

    status_history = inspect(target).attrs.status.history
    if status_history.deleted:
        was_finalized = status_history.deleted[0] == DistributionStatus.FINALIZED
    else:
        was_finalized = target.status == DistributionStatus.FINALIZED

    if not was_finalized:
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "DistributionPeriod",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a finalized distribution",
                field=attr.key,
            )


def _check_distribution_delete(mapper, connection, target):
    """Distributions are superseded by voiding, never deleted (unless voided)."""
    from patronage_kernel.models.distribution import DistributionStatus

    if target.status != DistributionStatus.VOIDED:
        _blocked(
            "DistributionPeriod",
            target.id,
            "DELETE",
            f"Distribution in status '{target.status}' cannot be deleted",
        )


_LISTENERS = []


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    from patronage_kernel.models.distribution import DistributionPeriod, DividendRecord

    if _LISTENERS:
        return

    _LISTENERS.extend([
        (DividendRecord, "before_update", _check_dividend_record_immutability),
        (DividendRecord, "before_delete", _check_dividend_record_delete),
        (DistributionPeriod, "before_update", _check_distribution_immutability),
        (DistributionPeriod, "before_delete", _check_distribution_delete),
    ])
    for target, name, fn in _LISTENERS:
        event.listen(target, name, fn)

    logger.info("immutability_listeners_registered", extra={"count": len(_LISTENERS)})


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for target, name, fn in _LISTENERS:
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
    _LISTENERS.clear()
