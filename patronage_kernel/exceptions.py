"""
Typed Exception Hierarchy for the Patronage Dividend Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (the HTTP layer, the scheduler, operators at a shell)
must react to failures by TYPE, never by parsing message text:

  - a duplicate distribution is answered with "already computed",
  - a payment conflict is answered with "re-fetch and decide",
  - a rounding defect is answered with an alert and nothing persisted.

Every exception therefore has:
  1. a ``code`` class attribute (machine-readable, API-safe),
  2. a ``category`` class attribute (how the caller should react),
  3. structured attributes carrying the context (never only a message).

Example:
    try:
        manager.mark_paid(dividend_id, "bank_transfer", date.today())
    except StateConflictError as e:
        record = selector.get_dividend(tenant_id, e.dividend_id)   # re-fetch
        api_response(code=e.code, current_status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PatronageEngineError (base)
    |
    +-- InputError
    |   +-- InsufficientDataError
    |   +-- InvalidPeriodError
    |   +-- InvalidDividendRateError
    |
    +-- DistributionError
    |   +-- DistributionNotFoundError
    |   +-- DuplicateDistributionError
    |   +-- DistributionStateError
    |   +-- ZeroPatronageError            (informational, returned not raised)
    |
    +-- PaymentError
    |   +-- DividendNotFoundError
    |   +-- StateConflictError
    |   +-- InvalidPaymentMethodError
    |
    +-- AllocationError
    |   +-- RoundingInvariantViolation
    |   +-- AllocationPoolMismatchError
    |
    +-- CollaboratorError
    |   +-- TransientCollaboratorError
    |   |   +-- CollaboratorTimeoutError
    |   +-- ComputationCancelledError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category           | Code                          | When Raised
-------------------|-------------------------------|------------------------------------
insufficient_data  | INSUFFICIENT_DATA             | Ledger/patronage inputs incomplete
invalid            | INVALID_PERIOD                | period_start after period_end
invalid            | INVALID_DIVIDEND_RATE         | Rate outside [0, 1]
not_found          | DISTRIBUTION_NOT_FOUND        | Unknown distribution id
duplicate          | DUPLICATE_DISTRIBUTION        | Period key already computed
conflict           | DISTRIBUTION_STATE_CONFLICT   | Void/finalize from wrong status
informational      | ZERO_PATRONAGE                | No eligible members in period
not_found          | DIVIDEND_NOT_FOUND            | Unknown dividend id
conflict           | PAYMENT_STATE_CONFLICT        | Record not pending / stale version
invalid            | INVALID_PAYMENT_METHOD        | Unknown payment method
internal           | ROUNDING_INVARIANT_VIOLATION  | Sum of amounts != pool (defect)
internal           | ALLOCATION_POOL_MISMATCH      | Allocation built for another pool
unavailable        | TRANSIENT_COLLABORATOR_ERROR  | Ledger/trip store hiccup
unavailable        | COLLABORATOR_TIMEOUT          | Input gathering exceeded timeout
unavailable        | COMPUTATION_CANCELLED         | Caller cancelled before persisting
internal           | IMMUTABILITY_VIOLATION        | Financial field modified after write
"""


class PatronageEngineError(Exception):
    """
    Base exception for all patronage engine errors.

    All subclasses must have ``code`` and ``category`` class attributes.
    """

    code: str = "PATRONAGE_ENGINE_ERROR"
    category: str = "internal"

    def to_dict(self) -> dict:
        """Structured representation (kind + message + public attributes)."""
        payload = {
            "code": self.code,
            "category": self.category,
            "message": str(self),
        }
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            payload[key] = value if isinstance(value, (int, bool)) or value is None else str(value)
        return payload


# Input-related exceptions


class InputError(PatronageEngineError):
    """Base exception for invalid or incomplete computation inputs."""

    code: str = "INPUT_ERROR"
    category: str = "invalid"


class InsufficientDataError(InputError):
    """
    Ledger or patronage inputs are incomplete for the requested range.

    No partial or estimated computation is permitted: the computation is
    aborted and nothing is persisted.
    """

    code: str = "INSUFFICIENT_DATA"
    category: str = "insufficient_data"

    def __init__(self, tenant_id: str, source: str, reason: str):
        self.tenant_id = tenant_id
        self.source = source
        self.reason = reason
        super().__init__(
            f"Insufficient {source} data for tenant {tenant_id}: {reason}"
        )


class InvalidPeriodError(InputError):
    """Distribution period bounds are not a valid inclusive range."""

    code: str = "INVALID_PERIOD"

    def __init__(self, period_start: str, period_end: str):
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"Invalid period: start {period_start} is after end {period_end}"
        )


class InvalidDividendRateError(InputError):
    """Tenant dividend rate is outside the closed interval [0, 1]."""

    code: str = "INVALID_DIVIDEND_RATE"

    def __init__(self, tenant_id: str, rate: str):
        self.tenant_id = tenant_id
        self.rate = rate
        super().__init__(
            f"Dividend rate {rate} for tenant {tenant_id} must be within [0, 1]"
        )


# Distribution-related exceptions


class DistributionError(PatronageEngineError):
    """Base exception for distribution period errors."""

    code: str = "DISTRIBUTION_ERROR"


class DistributionNotFoundError(DistributionError):
    """Distribution with given ID was not found (for this tenant)."""

    code: str = "DISTRIBUTION_NOT_FOUND"
    category: str = "not_found"

    def __init__(self, distribution_id: str):
        self.distribution_id = distribution_id
        super().__init__(f"Distribution not found: {distribution_id}")


class DuplicateDistributionError(DistributionError):
    """Period key already has a non-voided distribution."""

    code: str = "DUPLICATE_DISTRIBUTION"
    category: str = "duplicate"

    def __init__(
        self,
        tenant_id: str,
        member_type: str,
        period_start: str,
        period_end: str,
        existing_distribution_id: str | None = None,
    ):
        self.tenant_id = tenant_id
        self.member_type = member_type
        self.period_start = period_start
        self.period_end = period_end
        self.existing_distribution_id = existing_distribution_id
        super().__init__(
            f"A {member_type} distribution for tenant {tenant_id} "
            f"covering {period_start}..{period_end} already exists"
        )


class DistributionStateError(DistributionError):
    """Lifecycle transition not permitted from the current status."""

    code: str = "DISTRIBUTION_STATE_CONFLICT"
    category: str = "conflict"

    def __init__(self, distribution_id: str, current_status: str, attempted: str):
        self.distribution_id = distribution_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} distribution {distribution_id} "
            f"in status '{current_status}'"
        )


class ZeroPatronageError(DistributionError):
    """
    No member recorded eligible patronage in the period.

    Informational: attached to a computation outcome, not raised. The
    distribution is persisted with eligible_members = 0 and flagged for
    manual review; the pool is left undistributed.
    """

    code: str = "ZERO_PATRONAGE"
    category: str = "informational"

    def __init__(self, tenant_id: str, member_type: str, undistributed_amount: int):
        self.tenant_id = tenant_id
        self.member_type = member_type
        self.undistributed_amount = undistributed_amount
        super().__init__(
            f"No eligible {member_type} patronage for tenant {tenant_id}; "
            f"{undistributed_amount} minor units left undistributed"
        )


# Payment-related exceptions


class PaymentError(PatronageEngineError):
    """Base exception for dividend payment lifecycle errors."""

    code: str = "PAYMENT_ERROR"


class DividendNotFoundError(PaymentError):
    """Dividend record with given ID was not found (for this tenant)."""

    code: str = "DIVIDEND_NOT_FOUND"
    category: str = "not_found"

    def __init__(self, dividend_id: str):
        self.dividend_id = dividend_id
        super().__init__(f"Dividend not found: {dividend_id}")


class StateConflictError(PaymentError):
    """
    Payment transition rejected: the record is not pending, its version
    is stale, or its distribution does not accept payments.

    Callers should re-fetch the record rather than blindly retry.
    """

    code: str = "PAYMENT_STATE_CONFLICT"
    category: str = "conflict"

    def __init__(
        self,
        dividend_id: str,
        attempted: str,
        current_status: str | None,
        current_version: int | None = None,
        reason: str | None = None,
    ):
        self.dividend_id = dividend_id
        self.attempted = attempted
        self.current_status = current_status
        self.current_version = current_version
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Cannot mark dividend {dividend_id} {attempted} "
            f"(current status '{current_status}', version {current_version}){detail}"
        )


class InvalidPaymentMethodError(PaymentError):
    """Payment method is not one the cooperative pays dividends by."""

    code: str = "INVALID_PAYMENT_METHOD"
    category: str = "invalid"

    def __init__(self, payment_method: str, allowed: tuple[str, ...]):
        self.payment_method = payment_method
        self.allowed = ", ".join(allowed)
        super().__init__(
            f"Unknown payment method '{payment_method}' (allowed: {self.allowed})"
        )


# Allocation-related exceptions


class AllocationError(PatronageEngineError):
    """Base exception for apportionment errors."""

    code: str = "ALLOCATION_ERROR"


class RoundingInvariantViolation(AllocationError):
    """
    Sum of member dividend amounts differs from the dividend pool.

    This is an internal defect. The computation is aborted, logged, and
    never partially committed.
    """

    code: str = "ROUNDING_INVARIANT_VIOLATION"
    category: str = "internal"

    def __init__(self, dividend_pool: int, allocated_total: int):
        self.dividend_pool = dividend_pool
        self.allocated_total = allocated_total
        super().__init__(
            f"Allocation conservation violated: allocated {allocated_total} "
            f"!= pool {dividend_pool}"
        )


class AllocationPoolMismatchError(AllocationError):
    """An allocation was persisted against a surplus with a different pool (defect)."""

    code: str = "ALLOCATION_POOL_MISMATCH"
    category: str = "internal"

    def __init__(self, allocation_pool: int, surplus_pool: int):
        self.allocation_pool = allocation_pool
        self.surplus_pool = surplus_pool
        super().__init__(
            f"Allocation pool {allocation_pool} does not match surplus pool {surplus_pool}"
        )


# Collaborator-related exceptions


class CollaboratorError(PatronageEngineError):
    """Base exception for failures of the trip, ledger or settings stores."""

    code: str = "COLLABORATOR_ERROR"
    category: str = "unavailable"


class TransientCollaboratorError(CollaboratorError):
    """Infrastructure hiccup that is safe to retry (nothing was written)."""

    code: str = "TRANSIENT_COLLABORATOR_ERROR"

    def __init__(self, collaborator: str, reason: str):
        self.collaborator = collaborator
        self.reason = reason
        super().__init__(f"Transient failure in {collaborator}: {reason}")


class CollaboratorTimeoutError(TransientCollaboratorError):
    """Input gathering did not complete within the configured timeout."""

    code: str = "COLLABORATOR_TIMEOUT"

    def __init__(self, collaborator: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(collaborator, f"timed out after {timeout_seconds}s")


class ComputationCancelledError(CollaboratorError):
    """The caller cancelled the computation before anything was persisted."""

    code: str = "COMPUTATION_CANCELLED"

    def __init__(self, tenant_id: str, member_type: str):
        self.tenant_id = tenant_id
        self.member_type = member_type
        super().__init__(
            f"Distribution computation for tenant {tenant_id} ({member_type}) was cancelled"
        )


# Immutability-related exceptions


class ImmutabilityError(PatronageEngineError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable financial field or record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
