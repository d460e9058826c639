# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Linear (Gaussian) factor graphs.

A `LinearFactorGraph` is an ordered list of factors from the closed set
{`InformationFactor`, `MeasurementFactor`}. It is what the nonlinear
graph produces at each linearization, what the damped-system builder
augments, and what the elimination driver consumes.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Mapping, Optional

import jax.numpy as jnp

from ..core.errors import DimensionError
from ..core.types import Key
from .information import GaussianFactor, check_factor_type
from .vector_values import VectorValues


class LinearFactorGraph:
    """Ordered collection of Gaussian factors."""

    def __init__(self, factors: Optional[Iterable[GaussianFactor]] = None) -> None:
        self.factors: List[GaussianFactor] = []
        if factors is not None:
            self.extend(factors)

    def add(self, factor: GaussianFactor) -> None:
        check_factor_type(factor)
        self.factors.append(factor)

    def extend(self, factors: Iterable[GaussianFactor]) -> None:
        for factor in factors:
            self.add(factor)

    def copy(self) -> "LinearFactorGraph":
        """Shallow copy: a new list over the same (immutable) factors."""
        return LinearFactorGraph(self.factors)

    def __iter__(self) -> Iterator[GaussianFactor]:
        return iter(self.factors)

    def __len__(self) -> int:
        return len(self.factors)

    def __getitem__(self, i: int) -> GaussianFactor:
        return self.factors[i]

    def keys(self) -> List[Key]:
        return sorted({k for factor in self.factors for k in factor.keys})

    def dims(self) -> Dict[Key, int]:
        dims: Dict[Key, int] = {}
        for factor in self.factors:
            for key, d in zip(factor.keys, factor.dims):
                if dims.setdefault(key, d) != d:
                    raise DimensionError(
                        f"Variable {key} appears with dimensions {dims[key]} and {d}"
                    )
        return dims

    def involving(self, key: Key) -> List[GaussianFactor]:
        return [f for f in self.factors if key in f.keys]

    def error(self, delta: Mapping[Key, jnp.ndarray]) -> float:
        """Total quadratic cost at ``delta``."""
        return float(sum(factor.error(delta) for factor in self.factors))

    def hessian_diagonal(self) -> VectorValues:
        """Per-variable diagonal of the joint information matrix ``Σ AᵗWA``."""
        diag = VectorValues()
        for factor in self.factors:
            for key, d in factor.hessian_diagonal().items():
                diag[key] = diag[key] + d if key in diag else d
        return diag

    def __repr__(self) -> str:
        return f"LinearFactorGraph({len(self.factors)} factors, keys={self.keys()})"
