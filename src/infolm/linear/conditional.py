# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Gaussian conditionals and the Bayes net they form.

Eliminating a frontal variable ``x`` from an information factor leaves
the linear relation

    R · x + Σ_k S_k · y_k = d

where ``R`` is upper triangular and the ``y_k`` are variables that are
eliminated later (or never). A `GaussianBayesNet` is the ordered chain of
such conditionals; back-substitution visits it in reverse, so every
parent is already solved when its child is reached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from ..core.errors import DimensionError, IndeterminantSystemError
from ..core.types import Key
from .vector_values import VectorValues


class GaussianConditional:
    """p(x_frontal | parents) in square-root information form."""

    def __init__(
        self,
        frontal: Key,
        R: jnp.ndarray,
        parents: Sequence[Key],
        S: Sequence[jnp.ndarray],
        d: jnp.ndarray,
        sigmas: Optional[jnp.ndarray] = None,
    ) -> None:
        R = jnp.triu(jnp.asarray(R, dtype=jnp.float64))
        d = jnp.asarray(d, dtype=jnp.float64).reshape(-1)
        n = d.shape[0]
        if R.shape != (n, n):
            raise DimensionError(f"R has shape {R.shape}, expected ({n}, {n})")
        if len(parents) != len(S):
            raise DimensionError(f"Got {len(parents)} parents but {len(S)} S blocks")
        S = tuple(jnp.asarray(s, dtype=jnp.float64) for s in S)
        for key, s in zip(parents, S):
            if s.ndim != 2 or s.shape[0] != n:
                raise DimensionError(f"S block for parent {key} has shape {s.shape}")

        self.frontal = frontal
        self.R = R
        self.parents: Tuple[Key, ...] = tuple(parents)
        self.S: Tuple[jnp.ndarray, ...] = S
        self.d = d
        self.sigmas = jnp.ones(n) if sigmas is None else jnp.asarray(sigmas, dtype=jnp.float64)

    @property
    def dim(self) -> int:
        return int(self.d.shape[0])

    @property
    def keys(self) -> Tuple[Key, ...]:
        return (self.frontal,) + self.parents

    def solve(self, values: Mapping[Key, jnp.ndarray], rhs: Optional[jnp.ndarray] = None) -> jnp.ndarray:
        """Solve for the frontal variable given already-solved parents.

        :param values: Parent solutions; every parent must be present.
        :param rhs: Replacement for ``d`` (used to back-substitute an
            arbitrary right-hand side through the same factorization).
        """
        rhs = self.d if rhs is None else jnp.asarray(rhs, dtype=jnp.float64).reshape(-1)
        if rhs.shape[0] != self.dim:
            raise DimensionError(f"rhs has length {rhs.shape[0]}, expected {self.dim}")
        for key, s in zip(self.parents, self.S):
            rhs = rhs - s @ values[key]
        x = solve_triangular(self.R, rhs, lower=False)
        if not bool(jnp.all(jnp.isfinite(x))):
            raise IndeterminantSystemError("Back-substitution produced non-finite values", key=self.frontal)
        return x

    def __repr__(self) -> str:
        return f"GaussianConditional(frontal={self.frontal}, parents={self.parents}, dim={self.dim})"


@dataclass
class GaussianBayesNet:
    """Ordered chain of conditionals, in elimination order."""
    conditionals: List[GaussianConditional] = field(default_factory=list)

    def append(self, conditional: GaussianConditional) -> None:
        self.conditionals.append(conditional)

    def extend(self, other: "GaussianBayesNet") -> None:
        self.conditionals.extend(other.conditionals)

    def __iter__(self) -> Iterator[GaussianConditional]:
        return iter(self.conditionals)

    def __len__(self) -> int:
        return len(self.conditionals)

    def __getitem__(self, i: int) -> GaussianConditional:
        return self.conditionals[i]

    @property
    def frontals(self) -> List[Key]:
        return [c.frontal for c in self.conditionals]

    def back_substitute(self, rhs: Optional[Mapping[Key, jnp.ndarray]] = None) -> VectorValues:
        """Solve the chain from its last conditional to its first.

        :param rhs: Optional per-frontal right-hand sides replacing each
            conditional's ``d``.
        """
        solution = VectorValues()
        for conditional in reversed(self.conditionals):
            r = None if rhs is None else rhs[conditional.frontal]
            solution[conditional.frontal] = conditional.solve(solution, r)
        return solution

    def optimize(self) -> VectorValues:
        return self.back_substitute()
