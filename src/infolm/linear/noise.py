# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Gaussian noise models for measurement factors.

A noise model is a vector of per-row standard deviations. Unit and
isotropic models are special cases of a diagonal model; a sigma of
exactly zero marks the row as a hard constraint. Constrained models have
no information-form representation (their weight is infinite), so
`inv_sigmas` and `weights` refuse them with `UnsupportedNoiseModel`.
"""

from __future__ import annotations

import jax.numpy as jnp

from ..core.errors import DimensionError, UnsupportedNoiseModel


class NoiseModel:
    """Diagonal Gaussian noise, parameterized by standard deviations."""

    def __init__(self, sigmas) -> None:
        sigmas = jnp.asarray(sigmas, dtype=jnp.float64).reshape(-1)
        if bool(jnp.any(sigmas < 0.0)) or not bool(jnp.all(jnp.isfinite(sigmas))):
            raise DimensionError(f"Noise sigmas must be finite and non-negative, got {sigmas}")
        self.sigmas = sigmas

    @classmethod
    def unit(cls, dim: int) -> "NoiseModel":
        return cls(jnp.ones(dim))

    @classmethod
    def isotropic(cls, dim: int, sigma: float) -> "NoiseModel":
        return cls(jnp.full((dim,), float(sigma)))

    @classmethod
    def diagonal(cls, sigmas) -> "NoiseModel":
        return cls(sigmas)

    @classmethod
    def constrained(cls, sigmas) -> "NoiseModel":
        """Diagonal model where zero sigmas denote hard constraints."""
        return cls(sigmas)

    @property
    def dim(self) -> int:
        return int(self.sigmas.shape[0])

    @property
    def is_constrained(self) -> bool:
        return bool(jnp.any(self.sigmas == 0.0))

    @property
    def is_unit(self) -> bool:
        return bool(jnp.all(self.sigmas == 1.0))

    @property
    def inv_sigmas(self) -> jnp.ndarray:
        if self.is_constrained:
            raise UnsupportedNoiseModel(
                "Constrained (zero-sigma) noise model has no information-form weighting"
            )
        return 1.0 / self.sigmas

    @property
    def weights(self) -> jnp.ndarray:
        """Diagonal of W = Σ⁻¹."""
        inv = self.inv_sigmas
        return inv * inv

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return self.inv_sigmas * v

    def whiten_matrix(self, A: jnp.ndarray) -> jnp.ndarray:
        return self.inv_sigmas[:, None] * A

    def __repr__(self) -> str:
        return f"NoiseModel(sigmas={self.sigmas})"
