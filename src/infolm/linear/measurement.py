# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Linearized measurement factors.

A `MeasurementFactor` is the first-order model of one nonlinear factor
around the current estimate:

    e(δ) = 0.5 · ‖ W½ (A·δ − b) ‖²

where ``A = [A_1 … A_k]`` holds one coefficient block per variable,
``b`` is the (negated) residual and ``W½`` the whitening of the attached
noise model. Factors are immutable once built; the elimination driver
turns them into information form through
`linear.information.to_information_form`.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp

from ..core.errors import DimensionError
from ..core.types import Key
from .noise import NoiseModel
from .vector_values import VectorValues


class MeasurementFactor:
    """Linear residual ``A·δ − b`` over ``keys`` with a diagonal noise model."""

    def __init__(
        self,
        keys: Sequence[Key],
        blocks: Sequence[jnp.ndarray],
        b: jnp.ndarray,
        noise: Optional[NoiseModel] = None,
    ) -> None:
        keys = tuple(keys)
        if len(keys) != len(blocks):
            raise DimensionError(f"Got {len(keys)} keys but {len(blocks)} coefficient blocks")
        if len(set(keys)) != len(keys):
            raise DimensionError(f"Duplicate keys in measurement factor: {keys}")

        b = jnp.asarray(b, dtype=jnp.float64).reshape(-1)
        rows = b.shape[0]
        mats = []
        for key, A in zip(keys, blocks):
            A = jnp.asarray(A, dtype=jnp.float64)
            if A.ndim == 1:
                A = A.reshape(rows, -1)
            if A.ndim != 2 or A.shape[0] != rows:
                raise DimensionError(
                    f"Block for variable {key} has shape {A.shape}, expected ({rows}, d)"
                )
            mats.append(A)

        if noise is None:
            noise = NoiseModel.unit(rows)
        if noise.dim != rows:
            raise DimensionError(f"Noise model dimension {noise.dim} does not match {rows} rows")

        self.keys: Tuple[Key, ...] = keys
        self.blocks: Tuple[jnp.ndarray, ...] = tuple(mats)
        self.b = b
        self.noise = noise

    @property
    def dims(self) -> Tuple[int, ...]:
        return tuple(int(A.shape[1]) for A in self.blocks)

    @property
    def rows(self) -> int:
        return int(self.b.shape[0])

    def dims_by_key(self) -> Dict[Key, int]:
        return dict(zip(self.keys, self.dims))

    def augmented_matrix(self) -> jnp.ndarray:
        """``[A_1 … A_k | b]``, unwhitened."""
        return jnp.concatenate(list(self.blocks) + [self.b[:, None]], axis=1)

    def _residual(self, delta: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        r = -self.b
        for key, A in zip(self.keys, self.blocks):
            r = r + A @ delta[key]
        return r

    def whitened_error(self, delta: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        return self.noise.whiten(self._residual(delta))

    def error(self, delta: Mapping[Key, jnp.ndarray]) -> float:
        e = self.whitened_error(delta)
        return 0.5 * float(jnp.dot(e, e))

    def hessian_diagonal(self) -> VectorValues:
        w = self.noise.weights
        return VectorValues({
            key: jnp.sum(w[:, None] * A * A, axis=0) for key, A in zip(self.keys, self.blocks)
        })

    def __repr__(self) -> str:
        return f"MeasurementFactor(keys={self.keys}, dims={self.dims}, rows={self.rows})"
