# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Elimination driver: Gaussian factor graph -> Bayes net -> solution.

One elimination step (`eliminate_cholesky`) works on the factors that
touch a set of frontal variables:

    1. Build a `Scatter` over every key those factors touch, frontals
       first in elimination order, constant slot last.
    2. Allocate a zeroed joint `InformationFactor` laid out by it.
    3. Convert every factor with `to_information_form` and accumulate it
       into the joint factor with `InformationFactor.update`.
    4. Partially Cholesky-factor the frontal blocks, then split the
       result into conditionals and a remainder over the separator.

`eliminate_sequential` repeats the step along a full ordering, putting
each remainder back into the pool of factors, and `solve`
back-substitutes the resulting Bayes net.

Failure modes
-------------
A singular or indefinite system raises `IndeterminantSystemError` from
`solve`. `try_solve` returns the same outcome as a `SolveResult` value,
which is how the Levenberg–Marquardt loop consumes it: a failed trial is
ordinary control flow there, not an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from ..core.errors import DimensionError, IndeterminantSystemError
from ..core.types import Key
from ..utils.diagnostics import Diagnostics, maybe_section
from .conditional import GaussianBayesNet
from .graph import LinearFactorGraph
from .information import GaussianFactor, InformationFactor, to_information_form
from .ordering import min_degree_ordering
from .scatter import Scatter
from .vector_values import VectorValues

logger = logging.getLogger(__name__)


def eliminate_cholesky(
    factors: Iterable[GaussianFactor],
    frontal_keys: Sequence[Key],
    ordering: Optional[Sequence[Key]] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> Tuple[GaussianBayesNet, InformationFactor]:
    """Eliminate ``frontal_keys`` from ``factors``.

    :param factors: Every factor touching the frontal keys.
    :param frontal_keys: Variables to eliminate, in order.
    :param ordering: Global elimination ordering, used to lay out the
        separator keys.
    :returns: The conditionals on the frontal keys and the remainder
        factor over the separator (which may have no keys left).
    """
    with maybe_section(diagnostics, "eliminate/convert"):
        factors = [to_information_form(factor) for factor in factors]

    with maybe_section(diagnostics, "eliminate/scatter"):
        scatter = Scatter.from_factors(factors, frontal_keys, ordering)
    joint = InformationFactor.joint(factors, scatter, diagnostics)
    n_frontals = len(frontal_keys)
    with maybe_section(diagnostics, "eliminate/cholesky"):
        joint.partial_cholesky(n_frontals)
    with maybe_section(diagnostics, "eliminate/split"):
        return joint.split_eliminated(n_frontals)


def eliminate_sequential(
    graph: LinearFactorGraph,
    ordering: Optional[Sequence[Key]] = None,
    frontals_per_step: int = 1,
    diagnostics: Optional[Diagnostics] = None,
) -> GaussianBayesNet:
    """Eliminate every variable of ``graph`` along ``ordering``.

    :param frontals_per_step: How many consecutive keys of the ordering
        are eliminated together in one joint factor.
    """
    if frontals_per_step < 1:
        raise ValueError("frontals_per_step must be at least 1")
    if ordering is None:
        with maybe_section(diagnostics, "eliminate/ordering"):
            ordering = min_degree_ordering(graph)
    ordering = list(ordering)
    uncovered = set(graph.keys()) - set(ordering)
    if uncovered:
        raise DimensionError(f"Ordering does not cover variables {sorted(uncovered)}")

    pool: List[GaussianFactor] = list(graph)
    bayes_net = GaussianBayesNet()
    for start in range(0, len(ordering), frontals_per_step):
        frontals = ordering[start:start + frontals_per_step]
        involved = [f for f in pool if any(k in f.keys for k in frontals)]
        for key in frontals:
            if not any(key in f.keys for f in involved):
                raise IndeterminantSystemError("Variable is not constrained by any factor", key=key)
        involved_ids = {id(f) for f in involved}
        pool = [f for f in pool if id(f) not in involved_ids]

        conditionals, remainder = eliminate_cholesky(involved, frontals, ordering, diagnostics)
        bayes_net.extend(conditionals)
        if remainder.size > 0:
            pool.append(remainder)
        if diagnostics is not None:
            diagnostics.count("eliminate/steps")

    logger.debug("Eliminated %d variables into %d conditionals", len(ordering), len(bayes_net))
    return bayes_net


def solve(
    graph: LinearFactorGraph,
    ordering: Optional[Sequence[Key]] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> VectorValues:
    """Minimize the quadratic cost of ``graph``; raises `IndeterminantSystemError`."""
    bayes_net = eliminate_sequential(graph, ordering, diagnostics=diagnostics)
    with maybe_section(diagnostics, "solve/back_substitute"):
        return bayes_net.optimize()


@dataclass
class SolveResult:
    """Either a solution ``delta`` or the reason the system could not be solved."""
    delta: Optional[VectorValues] = None
    error: Optional[IndeterminantSystemError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> VectorValues:
        if self.error is not None:
            raise self.error
        return self.delta


def try_solve(
    graph: LinearFactorGraph,
    ordering: Optional[Sequence[Key]] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> SolveResult:
    try:
        return SolveResult(delta=solve(graph, ordering, diagnostics))
    except IndeterminantSystemError as exc:
        logger.debug("Linear solve failed: %s", exc)
        return SolveResult(error=exc)
