# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Nonlinear factor graph for InfoLM.

This module implements the nonlinear side of the problem: variables,
factors and the registry of residual functions by factor type. It is
the collaborator the Levenberg–Marquardt loop talks to:

    linearize(values) -> LinearFactorGraph
        One `MeasurementFactor` per nonlinear factor, with Jacobian
        blocks taken with respect to each variable's tangent space.

    error(values) -> float
        0.5 · Σ ‖whiten(r_k(x))‖², the true nonlinear cost.

The FactorGraph stores:
    - Variables (nodes in the optimization graph)
    - Factors (constraints between variables)
    - Registered residual functions (by factor type)

Key Features
------------
• Automatic Jacobians
    Residuals are written in JAX, so Jacobians come from `jax.jacfwd`,
    evaluated through the manifold retraction at δ = 0.

• JIT-compiled linearization
    The linearization of each (factor type, manifolds) combination is
    compiled once with `jax.jit` and cached on the graph.

Notes
-----
The FactorGraph is intentionally implemented as a Python object for
usability. Heavy numerical work happens in the jitted linearization
functions and in the `linear/` elimination machinery.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

import jax
import jax.numpy as jnp

from ..linear.graph import LinearFactorGraph
from ..linear.measurement import MeasurementFactor
from ..linear.noise import NoiseModel
from ..slam.manifold import get_manifold_for_var_type, retract
from .types import Key, FactorId, Variable, Factor
from .values import Values


# Type aliases for clarity
ResidualFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], jnp.ndarray]
LinearizeFn = Callable[[Tuple[jnp.ndarray, ...], Dict[str, jnp.ndarray]], Tuple[jnp.ndarray, Tuple[jnp.ndarray, ...]]]


def _make_linearize_fn(residual_fn: ResidualFn, manifolds: Tuple[str, ...]) -> LinearizeFn:
    def local_residual(deltas, xs, params):
        moved = [retract(m, x, d) for m, x, d in zip(manifolds, xs, deltas)]
        return residual_fn(jnp.concatenate(moved), params)

    def linearize(xs, params):
        zeros = tuple(jnp.zeros_like(x) for x in xs)
        r = local_residual(zeros, xs, params)
        blocks = jax.jacfwd(local_residual)(zeros, xs, params)
        return r, blocks

    return jax.jit(linearize)


@dataclass
class FactorGraph:
    """
    Nonlinear factor graph.

    - variables: mapping from Key -> Variable
    - factors: mapping from FactorId -> Factor
    - residual_fns: mapping factor.type -> callable that computes residuals
    """
    variables: Dict[Key, Variable] = field(default_factory=dict)
    factors: Dict[FactorId, Factor] = field(default_factory=dict)
    residual_fns: Dict[str, ResidualFn] = field(default_factory=dict)
    _linearize_fns: Dict[Tuple[str, Tuple[str, ...]], LinearizeFn] = field(
        default_factory=dict, init=False, repr=False
    )

    def add_variable(self, var: Variable) -> None:
        if var.id in self.variables:
            raise ValueError(f"Variable {var.id} already exists")
        self.variables[var.id] = var

    def add_factor(self, factor: Factor) -> None:
        if factor.id in self.factors:
            raise ValueError(f"Factor {factor.id} already exists")
        unknown = [vid for vid in factor.var_ids if vid not in self.variables]
        if unknown:
            raise ValueError(f"Factor {factor.id} references unknown variables {unknown}")
        self.factors[factor.id] = factor

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.residual_fns[factor_type] = fn
        for cache_key in [k for k in self._linearize_fns if k[0] == factor_type]:
            del self._linearize_fns[cache_key]

    def _residual_fn(self, factor: Factor) -> ResidualFn:
        residual_fn = self.residual_fns.get(factor.type, None)
        if residual_fn is None:
            raise ValueError(f"No residual fn registered for factor type '{factor.type}'")
        return residual_fn

    def _linearize_fn(self, factor: Factor) -> LinearizeFn:
        manifolds = tuple(get_manifold_for_var_type(self.variables[v].type) for v in factor.var_ids)
        cache_key = (factor.type, manifolds)
        if cache_key not in self._linearize_fns:
            self._linearize_fns[cache_key] = _make_linearize_fn(self._residual_fn(factor), manifolds)
        return self._linearize_fns[cache_key]

    # --- Estimates ---

    def initial_values(self) -> Values:
        """Current variable values, tagged with their manifolds."""
        values = Values()
        for nid in sorted(self.variables):
            var = self.variables[nid]
            values.insert(nid, var.value, get_manifold_for_var_type(var.type))
        return values

    # --- Nonlinear cost ---

    def residual(self, factor: Factor, values: Values) -> jnp.ndarray:
        stacked = jnp.concatenate([values[vid] for vid in factor.var_ids])
        return jnp.reshape(self._residual_fn(factor)(stacked, factor.params), (-1,))

    def unwhitened_residuals(self, values: Values) -> Dict[FactorId, jnp.ndarray]:
        return {fid: self.residual(factor, values) for fid, factor in self.factors.items()}

    def _noise(self, factor: Factor, rows: int) -> NoiseModel:
        return NoiseModel.unit(rows) if factor.noise is None else factor.noise

    def error(self, values: Values) -> float:
        total = 0.0
        for factor in self.factors.values():
            r = self.residual(factor, values)
            e = self._noise(factor, r.shape[0]).whiten(r)
            total += 0.5 * float(jnp.dot(e, e))
        return total

    # --- Linearization ---

    def linearize(self, values: Values) -> LinearFactorGraph:
        """First-order model of every factor at ``values``."""
        linear = LinearFactorGraph()
        for factor in self.factors.values():
            xs = tuple(values[vid] for vid in factor.var_ids)
            r, blocks = self._linearize_fn(factor)(xs, factor.params)
            r = jnp.reshape(r, (-1,))
            blocks = [jnp.reshape(A, (r.shape[0], -1)) for A in blocks]
            linear.add(MeasurementFactor(factor.var_ids, blocks, -r, self._noise(factor, r.shape[0])))
        return linear
