"""
Module: patronage_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.  This is
    the canonical import surface for patronage_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import patronage_kernel domain DTOs, helpers and exceptions.
    MUST NOT import patronage_services or patronage_api.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Integer minor units for money; Decimal only for rates and percentages.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting a
    PATRONAGE_ENGINE_TRACE log record with engine name, version, input
    fingerprint and duration.
"""

from patronage_engines.allocation import AllocationEngine, largest_remainder
from patronage_engines.surplus import SurplusFigures, compute_surplus, normalize_rate
from patronage_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllocationEngine",
    "largest_remainder",
    "SurplusFigures",
    "compute_surplus",
    "normalize_rate",
    "compute_input_fingerprint",
    "traced_engine",
]
