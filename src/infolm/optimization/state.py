# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Mutable state of a Levenberg–Marquardt run.

The state is owned by one optimizer. The estimate and its error change
only when a step is accepted; lambda and the lambda factor change on
every trial. The cached damping diagonal is valid for a single
linearization and is dropped whenever a step is accepted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..core.values import Values
from ..linear.vector_values import VectorValues


class IterationStatus(Enum):
    ACCEPTED = "accepted"          # a step was taken
    CONVERGED = "converged"        # cost change below tolerance, no step taken
    GAVE_UP = "gave_up"            # lambda exceeded its upper bound


@dataclass
class LMState:
    values: Values
    error: float
    lambda_: float
    lambda_factor: float
    iterations: int = 0
    total_inner_iterations: int = 0
    hessian_diagonal: Optional[VectorValues] = None  # sqrt of clamped diag(Hessian)
    reuse_diagonal: bool = False
    last_status: Optional[IterationStatus] = None
    start_time: float = field(default_factory=time.perf_counter)

    def invalidate_diagonal(self) -> None:
        self.hessian_diagonal = None
        self.reuse_diagonal = False

    @property
    def gave_up(self) -> bool:
        return self.last_status is IterationStatus.GAVE_UP
