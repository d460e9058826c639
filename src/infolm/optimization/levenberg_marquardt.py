# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Levenberg–Marquardt optimizer over information-form elimination.

One outer iteration (`LevenbergMarquardtOptimizer.iterate`) runs

    LINEARIZE
      └─> TRY_LAMBDA ──> solve damped system
            ├─ solve failed (singular)        -> reject, increase lambda
            └─ solve ok -> EVALUATE
                  ├─ predicted reduction < 0  -> reject, increase lambda
                  ├─ |true change| < rtol·err -> stop searching (CONVERGED)
                  ├─ fidelity > threshold     -> ACCEPT, decrease lambda
                  └─ otherwise                -> reject, increase lambda
      ... until a step is accepted, the search stops, or lambda reaches
      its upper bound (GAVE_UP, estimate left untouched).

Model fidelity is ``true reduction / predicted reduction``. When the
predicted reduction is at most 1e-15 the quadratic model is degenerate
and the step is accepted without consulting the fidelity threshold.

Lambda schedule
---------------
    accept:  λ ← max(λ_min, λ · max(1/3, 1 − (2ρ − 1)³)), factor ← 2
             (fixed-factor mode: λ ← λ / factor)
    reject:  λ ← λ · factor, factor ← 2·factor
             (fixed-factor mode: factor unchanged)

`optimize` repeats `iterate` until the error-decrease criteria of
`check_convergence` hold, the iteration budget is spent, or the inner
loop gives up.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..core.factor_graph import FactorGraph
from ..core.types import Key
from ..core.values import Values
from ..linear.elimination import try_solve
from ..linear.graph import LinearFactorGraph
from ..linear.ordering import min_degree_ordering, natural_ordering
from ..utils.diagnostics import Diagnostics, maybe_section
from .config import LMConfig, LMVerbosity
from .damping import build_damped_system, compute_damping_diagonal
from .state import IterationStatus, LMState

logger = logging.getLogger(__name__)

# Predicted reductions at or below this are treated as a degenerate model.
DEGENERATE_LINEAR_CHANGE = 1e-15


@dataclass(frozen=True)
class StepAssessment:
    accepted: bool
    stop_searching: bool
    model_fidelity: float


def assess_step(
    linearized_cost_change: float,
    cost_change: float,
    error: float,
    config: LMConfig,
) -> StepAssessment:
    """Accept/reject decision for a valid trial step (predicted reduction ≥ 0)."""
    if abs(cost_change) < config.relative_error_tol * error:
        return StepAssessment(accepted=False, stop_searching=True, model_fidelity=0.0)
    if linearized_cost_change > DEGENERATE_LINEAR_CHANGE:
        fidelity = cost_change / linearized_cost_change
        return StepAssessment(
            accepted=fidelity > config.min_model_fidelity,
            stop_searching=False,
            model_fidelity=fidelity,
        )
    return StepAssessment(accepted=True, stop_searching=False, model_fidelity=0.0)


def check_convergence(
    relative_error_tol: float,
    absolute_error_tol: float,
    error_tol: float,
    current_error: float,
    new_error: float,
) -> bool:
    if current_error <= error_tol:
        return True
    absolute_decrease = current_error - new_error
    relative_decrease = absolute_decrease / current_error
    if absolute_decrease < 0.0:
        logger.warning("Error increased from %g to %g", current_error, new_error)
    return (
        abs(relative_decrease) <= relative_error_tol
        or abs(absolute_decrease) <= absolute_error_tol
        or new_error <= error_tol
    )


class LevenbergMarquardtOptimizer:
    """Damped Gauss–Newton with adaptive trust control.

    :param graph: Nonlinear factor graph to minimize.
    :param initial: Starting estimate; defaults to the graph's variable values.
    :param config: Optimizer options.
    :param ordering: Elimination ordering. When omitted it is computed
        from the first damped system, as selected by ``config.ordering_type``.
    :param diagnostics: Optional timing context shared with the linear solver.
    """

    def __init__(
        self,
        graph: FactorGraph,
        initial: Optional[Values] = None,
        config: Optional[LMConfig] = None,
        ordering: Optional[Sequence[Key]] = None,
        diagnostics: Optional[Diagnostics] = None,
    ) -> None:
        self.graph = graph
        self.config = config if config is not None else LMConfig()
        self.diagnostics = diagnostics
        self._ordering: Optional[List[Key]] = list(ordering) if ordering is not None else None
        values = initial if initial is not None else graph.initial_values()
        self.state = LMState(
            values=values,
            error=graph.error(values),
            lambda_=self.config.lambda_initial,
            lambda_factor=self.config.lambda_factor,
        )

    # --- Accessors for a caller-owned convergence check ---

    @property
    def values(self) -> Values:
        return self.state.values

    @property
    def error(self) -> float:
        return self.state.error

    @property
    def lambda_(self) -> float:
        return self.state.lambda_

    @property
    def iterations(self) -> int:
        return self.state.iterations

    @property
    def inner_iterations(self) -> int:
        return self.state.total_inner_iterations

    # --- Building blocks ---

    def linearize(self) -> LinearFactorGraph:
        with maybe_section(self.diagnostics, "lm/linearize"):
            return self.graph.linearize(self.state.values)

    def _compute_ordering(self, damped: LinearFactorGraph) -> List[Key]:
        if self.config.ordering_type == "natural":
            return natural_ordering(damped.keys())
        with maybe_section(self.diagnostics, "lm/ordering"):
            return min_degree_ordering(damped)

    def increase_lambda(self) -> None:
        state = self.state
        state.lambda_ *= state.lambda_factor
        if not self.config.use_fixed_lambda_factor:
            state.lambda_factor *= 2.0
        state.reuse_diagonal = True

    def decrease_lambda(self, model_fidelity: float) -> None:
        state = self.state
        if self.config.use_fixed_lambda_factor:
            state.lambda_ /= state.lambda_factor
        else:
            state.lambda_ *= max(1.0 / 3.0, 1.0 - (2.0 * model_fidelity - 1.0) ** 3)
            state.lambda_factor = 2.0
        state.lambda_ = max(self.config.lambda_lower_bound, state.lambda_)
        state.invalidate_diagonal()

    def build_damped_system(self, linear: LinearFactorGraph) -> LinearFactorGraph:
        cfg, state = self.config, self.state
        if cfg.verbosity >= LMVerbosity.DAMPED:
            logger.info("building damped system with lambda %g", state.lambda_)
        diagonal = None
        if cfg.diagonal_damping:
            if not state.reuse_diagonal or state.hessian_diagonal is None:
                state.hessian_diagonal = compute_damping_diagonal(linear, cfg.min_diagonal, cfg.max_diagonal)
            diagonal = state.hessian_diagonal
        with maybe_section(self.diagnostics, "lm/damp"):
            return build_damped_system(linear, state.values.dims(), state.lambda_, diagonal)

    def _log_inner_iteration(self) -> None:
        if not self.config.log_file:
            return
        state = self.state
        with open(self.config.log_file, "a", encoding="utf-8") as fh:
            fh.write(
                f"{state.total_inner_iterations},{time.perf_counter() - state.start_time},"
                f"{state.error},{state.lambda_}\n"
            )

    # --- Main loop ---

    def iterate(self) -> IterationStatus:
        """Advance one outer iteration; never raises on a failed trial."""
        cfg, state = self.config, self.state
        verbosity = cfg.verbosity

        if verbosity >= LMVerbosity.DAMPED:
            logger.info("linearizing")
        linear = self.linearize()

        while True:
            if verbosity >= LMVerbosity.TRYLAMBDA:
                logger.info("trying lambda = %g", state.lambda_)

            damped = self.build_damped_system(linear)
            if self._ordering is None:
                self._ordering = self._compute_ordering(damped)
            self._log_inner_iteration()
            state.total_inner_iterations += 1

            assessment = StepAssessment(accepted=False, stop_searching=False, model_fidelity=0.0)
            new_values: Optional[Values] = None
            new_error = float("nan")

            with maybe_section(self.diagnostics, "lm/solve"):
                result = try_solve(damped, self._ordering, self.diagnostics)

            if result.ok:
                state.reuse_diagonal = True
                delta = result.delta
                if verbosity >= LMVerbosity.TRYLAMBDA:
                    logger.info("linear delta norm = %g", delta.norm())
                if verbosity >= LMVerbosity.TRYDELTA:
                    logger.info("delta = %s", dict(delta))

                linearized_cost_change = state.error - linear.error(delta)
                if linearized_cost_change >= 0.0:
                    new_values = state.values.retract(delta)
                    with maybe_section(self.diagnostics, "lm/error"):
                        new_error = self.graph.error(new_values)
                    if verbosity >= LMVerbosity.TRYCONFIG:
                        logger.info("trial values = %s", new_values)
                    assessment = assess_step(
                        linearized_cost_change, state.error - new_error, state.error, cfg
                    )
            elif verbosity >= LMVerbosity.TRYLAMBDA:
                logger.info("linear solve failed: %s", result.error)

            if assessment.accepted:
                state.values = new_values
                state.error = new_error
                self.decrease_lambda(assessment.model_fidelity)
                status = IterationStatus.ACCEPTED
                break
            if assessment.stop_searching:
                status = IterationStatus.CONVERGED
                break

            if verbosity >= LMVerbosity.TRYLAMBDA:
                logger.info(
                    "increasing lambda: old error (%g) new error (%g)", state.error, new_error
                )
            self.increase_lambda()
            if state.lambda_ >= cfg.lambda_upper_bound:
                if verbosity >= LMVerbosity.TERMINATION:
                    logger.warning(
                        "Levenberg-Marquardt giving up because cannot decrease error with maximum lambda"
                    )
                status = IterationStatus.GAVE_UP
                break

        state.iterations += 1
        state.last_status = status
        if verbosity >= LMVerbosity.LAMBDA:
            logger.info(
                "iteration %d: %s, error %g, lambda %g",
                state.iterations, status.value, state.error, state.lambda_,
            )
        return status

    def optimize(self) -> Values:
        """Iterate until convergence, the iteration budget, or giving up."""
        cfg, state = self.config, self.state
        if state.error <= cfg.error_tol:
            return state.values
        while state.iterations < cfg.max_iterations:
            current_error = state.error
            status = self.iterate()
            if status is IterationStatus.GAVE_UP:
                break
            if check_convergence(
                cfg.relative_error_tol, cfg.absolute_error_tol, cfg.error_tol,
                current_error, state.error,
            ):
                break
        if cfg.verbosity >= LMVerbosity.TERMINATION:
            logger.info(
                "terminated after %d iterations (%d inner), error %g",
                state.iterations, state.total_inner_iterations, state.error,
            )
        return state.values
