"""
Patronage Kernel - cooperative dividend distribution core.

The kernel persists distribution periods and their per-member dividend
records, manages their lifecycle, and exposes the read model:

- Distributions are created atomically: the period row and every dividend
  record exist together or not at all.
- At most one non-voided distribution exists per
  (tenant, member type, period) key.
- Money is integer minor currency units end-to-end.
- Payment transitions are at-most-once and serialized per record.
"""

__version__ = "0.1.0"
