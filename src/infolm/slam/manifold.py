# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Manifold utilities for the variables InfoLM optimizes.

The optimizer computes steps in a local tangent space while the state
lives on a manifold. This module maps variable types to a manifold tag
and implements, per tag:

    • `retract(manifold, x, delta)`  (x ⊕ δ)
    • `local(manifold, x, y)`        (y ⊖ x, the inverse of retract)

Supported manifolds
-------------------
euclidean
    ℝⁿ, updated additively.

so2
    A single heading angle, kept in (−π, π].

pose2
    Planar pose ``[x, y, θ]``. The translational part of δ is expressed
    in the body frame of ``x``:

        t' = t + R(θ)·δt,   θ' = wrap(θ + δθ)

All functions are written in JAX so that the nonlinear factor graph can
differentiate residuals through the retraction.
"""

from __future__ import annotations

from typing import Dict

import jax.numpy as jnp

TYPE_TO_MANIFOLD: Dict[str, str] = {
    "scalar": "euclidean",
    "point1d": "euclidean",
    "point2d": "euclidean",
    "point3d": "euclidean",
    "landmark2d": "euclidean",
    "heading": "so2",
    "pose2": "pose2",
}


def get_manifold_for_var_type(var_type: str) -> str:
    return TYPE_TO_MANIFOLD.get(var_type, "euclidean")


def wrap_angle(theta: jnp.ndarray) -> jnp.ndarray:
    return jnp.arctan2(jnp.sin(theta), jnp.cos(theta))


def _rot2(theta: jnp.ndarray) -> jnp.ndarray:
    c, s = jnp.cos(theta), jnp.sin(theta)
    return jnp.array([[c, -s], [s, c]])


def retract(manifold: str, x: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    if manifold == "euclidean":
        return x + delta
    if manifold == "so2":
        return wrap_angle(x + delta)
    if manifold == "pose2":
        t = x[:2] + _rot2(x[2]) @ delta[:2]
        return jnp.concatenate([t, wrap_angle(x[2:3] + delta[2:3])])
    raise ValueError(f"Unknown manifold '{manifold}'")


def local(manifold: str, x: jnp.ndarray, y: jnp.ndarray) -> jnp.ndarray:
    if manifold == "euclidean":
        return y - x
    if manifold == "so2":
        return wrap_angle(y - x)
    if manifold == "pose2":
        dt = _rot2(x[2]).T @ (y[:2] - x[:2])
        return jnp.concatenate([dt, wrap_angle(y[2:3] - x[2:3])])
    raise ValueError(f"Unknown manifold '{manifold}'")
