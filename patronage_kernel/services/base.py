"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every write-side
    service in the kernel.  Concrete services receive a SQLAlchemy
    ``Session`` and persist with ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction.
      The caller (DistributionService, the HTTP layer, a test) owns commit.
      The one exception is IntegrityError translation: a failed flush leaves
      the session unusable, so the service rolls it back before raising the
      typed error.

Failure modes:
    - If a subclass commits on its own, a hybrid distribution (two period
      rows written together) could become half-visible.
"""

from abc import ABC
from typing import Generic, TypeVar
from sqlalchemy.orm import Session

from patronage_kernel.db.base import Base
from patronage_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` (and optionally a Clock) from the
        caller and uses ``session.flush()`` to persist changes within the
        active transaction.

    Non-goals:
        - Does NOT provide read models -- those belong in
          ``patronage_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()
