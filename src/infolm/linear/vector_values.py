# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Per-variable vectors (linear deltas, right-hand sides, diagonals).

`VectorValues` is a plain dictionary from `Key` to a 1-D JAX array with
the handful of vector-space operations the solver needs. Binary
operations require both operands to hold the same keys with the same
dimensions.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Sequence

import jax.numpy as jnp

from ..core.errors import DimensionError
from ..core.types import Key


class VectorValues(dict):
    """Mapping Key -> 1-D vector."""

    @classmethod
    def zero(cls, dims: Mapping[Key, int]) -> "VectorValues":
        return cls({k: jnp.zeros(d) for k, d in dims.items()})

    @classmethod
    def from_vector(cls, x: jnp.ndarray, keys: Sequence[Key], dims: Mapping[Key, int]) -> "VectorValues":
        """Split a stacked vector back into per-key blocks, in ``keys`` order."""
        total = sum(dims[k] for k in keys)
        if x.shape[0] != total:
            raise DimensionError(f"Stacked vector has length {x.shape[0]}, expected {total}")
        out = cls()
        offset = 0
        for k in keys:
            d = dims[k]
            out[k] = x[offset:offset + d]
            offset += d
        return out

    def dims(self) -> Dict[Key, int]:
        return {k: int(v.shape[0]) for k, v in self.items()}

    def vector(self, keys: Iterable[Key] = None) -> jnp.ndarray:
        """Stack the blocks of ``keys`` (ascending key order by default)."""
        keys = sorted(self.keys()) if keys is None else list(keys)
        if not keys:
            return jnp.zeros((0,))
        return jnp.concatenate([jnp.asarray(self[k]).reshape(-1) for k in keys])

    def _check_same_structure(self, other: "VectorValues") -> None:
        if self.dims() != other.dims():
            raise DimensionError("VectorValues operands have different keys or dimensions")

    def dot(self, other: "VectorValues") -> float:
        self._check_same_structure(other)
        return float(sum(jnp.dot(self[k], other[k]) for k in self))

    def norm(self) -> float:
        return float(jnp.sqrt(self.dot(self))) if self else 0.0

    def __add__(self, other: "VectorValues") -> "VectorValues":
        self._check_same_structure(other)
        return VectorValues({k: self[k] + other[k] for k in self})

    def __sub__(self, other: "VectorValues") -> "VectorValues":
        self._check_same_structure(other)
        return VectorValues({k: self[k] - other[k] for k in self})

    def __mul__(self, alpha: float) -> "VectorValues":
        return VectorValues({k: alpha * v for k, v in self.items()})

    __rmul__ = __mul__

    def equals(self, other: "VectorValues", tol: float = 1e-9) -> bool:
        if self.dims() != other.dims():
            return False
        return all(bool(jnp.allclose(self[k], other[k], atol=tol, rtol=0.0)) for k in self)
