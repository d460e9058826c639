# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Residual models (measurement factors) for InfoLM.

Each function here implements a residual

    r(x; params) ∈ ℝᵏ

where ``x`` is the concatenation of the factor's variables in
``var_ids`` order. Residuals are plain JAX functions: the nonlinear
factor graph differentiates them (through the manifold retraction) to
produce the Jacobian blocks of each `MeasurementFactor`. Noise is not
applied here; it is carried by the factor's `NoiseModel`.

Families
--------
    • `prior_residual`          r = x − target
    • `between_residual`        r = (x_j − x_i) − measurement
    • `pose2_prior_residual`    prior on [x, y, θ] with wrapped heading
    • `pose2_between_residual`  relative planar pose in the frame of i
    • `range_residual`          planar distance between two positions
    • `bearing_residual`        planar bearing from a pose to a landmark

Adding a new factor type
------------------------
    1. Implement ``def my_residual(x, params) -> jnp.ndarray`` here.
    2. Register it: ``fg.register_residual("my_type", my_residual)``.

Parameters must be arrays (or scalars). The graph jit-compiles the
linearization of each factor type, so values in ``params`` are traced
and must not drive Python control flow or slicing.
"""

from __future__ import annotations

from typing import Dict

import jax.numpy as jnp

from .manifold import wrap_angle


def prior_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Simple prior on a single variable:
        residual = x - target
    Works for any vector dimension.
    """
    return x - params["target"]


def between_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Euclidean odometry-style residual:

        x = [x_i, x_j]
        residual = (x_j - x_i) - measurement
    """
    dim = x.shape[0] // 2
    return (x[dim:] - x[:dim]) - params["measurement"]


def pose2_prior_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    r = x - params["target"]
    return r.at[2].set(wrap_angle(r[2]))


def pose2_between_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Relative planar pose, measured in the frame of pose i:

        x = [x_i, y_i, θ_i, x_j, y_j, θ_j]
        predicted = [R(θ_i)ᵀ (t_j − t_i), θ_j − θ_i]
    """
    ti, thi = x[0:2], x[2]
    tj, thj = x[3:5], x[5]
    c, s = jnp.cos(thi), jnp.sin(thi)
    d = tj - ti
    dt = jnp.array([c * d[0] + s * d[1], -s * d[0] + c * d[1]])
    meas = params["measurement"]
    return jnp.concatenate([dt - meas[:2], wrap_angle(thj - thi - meas[2:3])])


def range_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Planar range between the first two coordinates of the first variable
    and the last two coordinates of the second (pose2 or point2d to a
    point2d landmark):

        residual = ‖p_j − p_i‖ − range
    """
    diff = x[-2:] - x[:2]
    return jnp.reshape(jnp.sqrt(jnp.dot(diff, diff)) - params["range"], (1,))


def bearing_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Bearing from a pose2 ``[x, y, θ]`` to a point2d landmark, relative to
    the pose heading, wrapped to (−π, π]:

        residual = wrap(atan2(dy, dx) − θ − bearing)
    """
    diff = x[3:5] - x[0:2]
    predicted = jnp.arctan2(diff[1], diff[0]) - x[2]
    return jnp.reshape(wrap_angle(predicted - params["bearing"]), (1,))
