"""Kernel services - write side (flush-only, caller owns the transaction)."""

from patronage_kernel.services.base import BaseService
from patronage_kernel.services.distribution_store import DistributionRecordStore
from patronage_kernel.services.payment_status import PaymentStatusManager

__all__ = [
    "BaseService",
    "DistributionRecordStore",
    "PaymentStatusManager",
]
