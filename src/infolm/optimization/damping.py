# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Damped-system builder.

Levenberg–Marquardt damping is realized by appending one synthetic
zero-mean prior per variable to a copy of the linearized graph:

    ‖ D_j · δ_j ‖² / σ²,   σ = 1/√λ

With plain damping ``D_j = I``. With diagonal damping ``D_j`` is the
square root of the (clamped) diagonal of the joint information matrix,
which makes the damping invariant to variable scaling. The diagonal is
computed once per linearization and cached by the caller.

The base linear graph is never mutated, so the same linearization can be
retried at several lambdas.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import jax.numpy as jnp

from ..core.types import Key
from ..linear.graph import LinearFactorGraph
from ..linear.measurement import MeasurementFactor
from ..linear.noise import NoiseModel
from ..linear.vector_values import VectorValues

logger = logging.getLogger(__name__)


def compute_damping_diagonal(
    linear: LinearFactorGraph,
    min_diagonal: float = 1e-6,
    max_diagonal: float = 1e32,
) -> VectorValues:
    """√clamp(diag(Σ AᵗWA)) per variable."""
    diag = linear.hessian_diagonal()
    return VectorValues({
        key: jnp.sqrt(jnp.clip(d, min_diagonal, max_diagonal)) for key, d in diag.items()
    })


def build_damped_system(
    linear: LinearFactorGraph,
    dims: Mapping[Key, int],
    lambda_: float,
    diagonal: Optional[VectorValues] = None,
) -> LinearFactorGraph:
    """Copy of ``linear`` with one damping prior per variable.

    :param dims: Tangent dimension of every variable to damp (plain
        damping).
    :param diagonal: Output of `compute_damping_diagonal`; when given,
        diagonal damping is used for the keys it contains.
    """
    if lambda_ <= 0.0:
        raise ValueError(f"lambda must be positive, got {lambda_}")
    sigma = 1.0 / jnp.sqrt(lambda_)
    damped = linear.copy()
    if diagonal is not None:
        for key, d in diagonal.items():
            dim = int(d.shape[0])
            damped.add(MeasurementFactor((key,), [jnp.diag(d)], jnp.zeros(dim), NoiseModel.isotropic(dim, sigma)))
    else:
        for key, dim in dims.items():
            damped.add(MeasurementFactor((key,), [jnp.eye(dim)], jnp.zeros(dim), NoiseModel.isotropic(dim, sigma)))
    logger.debug("Built damped system with lambda %g (%d factors)", lambda_, len(damped))
    return damped
