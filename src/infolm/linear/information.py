# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Information-form (Hessian) factors and their Cholesky elimination.

An `InformationFactor` represents the quadratic cost

    e(x) = 0.5 · (f − 2·xᵗg + xᵗGx)

over an ordered list of variables. It is stored as one augmented block
matrix

        ┌ G   g ┐
        └ gᵗ  f ┘

of size ``Σ dims + 1`` whose trailing row/column is the constant block.
Only the upper triangle is meaningful; the strictly lower triangle is
kept at zero.

This module is the arithmetic heart of elimination:

    • Accumulation
        `update` adds another information factor into this one through
        a `Scatter` (key -> slot). Blocks that land below the diagonal
        are transposed into the upper triangle; blocks landing on a
        diagonal slot contribute only their upper triangle. Measurement
        factors reach this path only through `to_information_form`.

    • Partial Cholesky
        `partial_cholesky(n)` factors the leading ``n`` variable blocks
        in place. Afterwards the leading rows hold ``[R11 R12 d1]`` and
        the trailing block holds the exact Schur complement
        ``G22 − G12ᵗ G11⁻¹ G12`` (and the matching linear and constant
        terms).

    • Splitting
        `split_eliminated(n)` turns the leading rows into one
        `GaussianConditional` per frontal variable and returns the
        trailing block as a new, smaller factor.

The "arena" is a single JAX array per factor. JAX arrays are immutable,
so in-place updates are expressed with ``.at[...]`` and the factor simply
rebinds its buffer. A joint factor built for one elimination step is
owned by that step alone.

Equality
--------
`equals` compares the symmetric augmented matrices up to an absolute
tolerance but ignores the constant cell ``f``. Two factors that differ
only by an absolute cost offset compare equal. Optimizer decisions only
use cost differences, which such offsets do not affect.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from ..core.errors import (
    DimensionError,
    InconsistentFactorTypeError,
    IndeterminantSystemError,
)
from ..core.types import Key
from ..utils.diagnostics import Diagnostics, maybe_section
from .conditional import GaussianBayesNet, GaussianConditional
from .measurement import MeasurementFactor
from .scatter import Scatter
from .vector_values import VectorValues

logger = logging.getLogger(__name__)

# A pivot whose squared value falls below this fraction of the original
# diagonal entry is treated as numerically zero.
PIVOT_RELATIVE_TOL = 1e-12


def _symmetric_from_upper(M: jnp.ndarray) -> jnp.ndarray:
    upper = jnp.triu(M)
    return upper + jnp.triu(M, 1).T


def _first_bad_pivot(A: jnp.ndarray) -> int:
    """Row at which an unblocked Cholesky of ``A`` breaks down.

    The blocked factorization reports failure for the whole matrix, so
    the offending row is located by replaying the elimination one pivot
    at a time.
    """
    original = jnp.abs(jnp.diag(A))
    n = A.shape[0]
    for i in range(n):
        pivot = float(A[i, i])
        if not jnp.isfinite(pivot) or pivot <= PIVOT_RELATIVE_TOL * float(original[i]):
            return i
        r = A[i, i + 1:] / jnp.sqrt(pivot)
        A = A.at[i + 1:, i + 1:].add(-jnp.outer(r, r))
    return 0


def _offsets(dims: Sequence[int]) -> List[int]:
    offsets = [0]
    for d in dims:
        offsets.append(offsets[-1] + d)
    offsets.append(offsets[-1] + 1)
    return offsets


class InformationFactor:
    """Quadratic factor over ``keys`` stored as an upper-triangular augmented matrix."""

    def __init__(self, keys: Sequence[Key], dims: Sequence[int], matrix: jnp.ndarray) -> None:
        keys = tuple(keys)
        dims = tuple(int(d) for d in dims)
        if len(keys) != len(dims):
            raise DimensionError(f"Got {len(keys)} keys but {len(dims)} dimensions")
        if len(set(keys)) != len(keys):
            raise DimensionError(f"Duplicate keys in information factor: {keys}")
        n = sum(dims) + 1
        matrix = jnp.asarray(matrix, dtype=jnp.float64)
        if matrix.shape != (n, n):
            raise DimensionError(f"Information matrix has shape {matrix.shape}, expected ({n}, {n})")

        self.keys: Tuple[Key, ...] = keys
        self.dims: Tuple[int, ...] = dims
        self._offsets = _offsets(dims)
        self._matrix = jnp.triu(matrix)
        self._eliminated: Optional[int] = None
        self.assert_invariants()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, keys: Sequence[Key], dims: Sequence[int]) -> "InformationFactor":
        n = sum(int(d) for d in dims) + 1
        return cls(keys, dims, jnp.zeros((n, n)))

    @classmethod
    def from_dense(
        cls,
        keys: Sequence[Key],
        dims: Sequence[int],
        G: jnp.ndarray,
        g: jnp.ndarray,
        f: float,
    ) -> "InformationFactor":
        """Build from a full symmetric ``G``, linear term ``g`` and constant ``f``."""
        G = jnp.asarray(G, dtype=jnp.float64)
        g = jnp.asarray(g, dtype=jnp.float64).reshape(-1)
        n = sum(int(d) for d in dims)
        if G.shape != (n, n) or g.shape[0] != n:
            raise DimensionError(
                f"Inconsistent matrix and/or vector dimensions: G {G.shape}, g {g.shape}, dims {tuple(dims)}"
            )
        M = jnp.zeros((n + 1, n + 1))
        M = M.at[:n, :n].set(G).at[:n, n].set(g).at[n, n].set(f)
        return cls(keys, dims, M)

    @classmethod
    def single(cls, key: Key, G: jnp.ndarray, g: jnp.ndarray, f: float) -> "InformationFactor":
        G = jnp.asarray(G, dtype=jnp.float64)
        g = jnp.asarray(g, dtype=jnp.float64).reshape(-1)
        if G.ndim != 2 or G.shape[0] != G.shape[1] or G.shape[0] != g.shape[0]:
            raise DimensionError(
                f"Inconsistent matrix and/or vector dimensions: G {G.shape}, g {g.shape}"
            )
        return cls.from_dense((key,), (G.shape[0],), G, g, f)

    @classmethod
    def pair(
        cls,
        key1: Key,
        key2: Key,
        G11: jnp.ndarray,
        G12: jnp.ndarray,
        g1: jnp.ndarray,
        G22: jnp.ndarray,
        g2: jnp.ndarray,
        f: float,
    ) -> "InformationFactor":
        G11, G12, G22 = (jnp.asarray(m, dtype=jnp.float64) for m in (G11, G12, G22))
        g1 = jnp.asarray(g1, dtype=jnp.float64).reshape(-1)
        g2 = jnp.asarray(g2, dtype=jnp.float64).reshape(-1)
        if (G11.shape[0] != G11.shape[1] or G11.shape[0] != G12.shape[0]
                or G11.shape[0] != g1.shape[0] or G22.shape[0] != G22.shape[1]
                or G22.shape[1] != G12.shape[1] or G22.shape[1] != g2.shape[0]):
            raise DimensionError("Inconsistent matrix and/or vector dimensions in pair factor")
        G = jnp.block([[G11, G12], [G12.T, G22]])
        g = jnp.concatenate([g1, g2])
        return cls.from_dense((key1, key2), (G11.shape[0], G22.shape[0]), G, g, f)

    @classmethod
    def from_measurement(cls, factor: MeasurementFactor) -> "InformationFactor":
        """Weighted normal equations ``[A b]ᵗ W [A b]`` of a measurement factor.

        Raises `UnsupportedNoiseModel` for constrained noise.
        """
        WAb = factor.noise.whiten_matrix(factor.augmented_matrix())
        return cls(factor.keys, factor.dims, WAb.T @ WAb)

    @classmethod
    def from_conditional(cls, conditional: GaussianConditional) -> "InformationFactor":
        Rd = jnp.concatenate(
            [conditional.R, *conditional.S, conditional.d[:, None]], axis=1
        ) / conditional.sigmas[:, None]
        dims = (conditional.dim,) + tuple(int(s.shape[1]) for s in conditional.S)
        return cls(conditional.keys, dims, Rd.T @ Rd)

    @classmethod
    def joint(
        cls,
        factors: Iterable,
        scatter: Scatter,
        diagnostics: Optional[Diagnostics] = None,
    ) -> "InformationFactor":
        """Allocate a zero factor laid out by ``scatter`` and accumulate ``factors``."""
        with maybe_section(diagnostics, "joint/allocate"):
            combined = cls.zeros(scatter.keys_in_order, scatter.dims())
        with maybe_section(diagnostics, "joint/update"):
            for factor in factors:
                combined.update(to_information_form(factor), scatter)
        if diagnostics is not None:
            diagnostics.dump_matrix("Joint augmented information:", combined.augmented_information())
        return combined

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Number of variables (excluding the constant block)."""
        return len(self.keys)

    @property
    def matrix(self) -> jnp.ndarray:
        return self._matrix

    def offset(self, block: int) -> int:
        return self._offsets[block]

    def assert_invariants(self) -> None:
        if not bool(jnp.all(jnp.isfinite(self._matrix))):
            raise DimensionError("InformationFactor contains non-finite matrix entries")

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def update(self, other: "InformationFactor", scatter: Scatter) -> None:
        """Add ``other`` into this factor; ``scatter`` maps its keys to our slots.

        Every row/column of ``other`` is mapped to its target index
        through `Scatter.block_range`, and the whole contribution lands
        in one scatter-add. Entries that would fall below the diagonal
        are taken from the transposed position instead, which is what
        the symmetric source matrix already holds there.
        """
        if scatter.keys_in_order != self.keys:
            raise DimensionError("Scatter layout does not match the factor being updated")

        index: List[int] = []
        for key, dim in zip(other.keys, other.dims):
            if scatter[key].dimension != dim:
                raise DimensionError(
                    f"Variable {key} has dimension {dim} in update but {scatter[key].dimension} here"
                )
            row, _, rows, _ = scatter.block_range(key, None)
            index.extend(range(row, row + rows))
        index.append(scatter.block_range(None, None)[0])

        idx = jnp.asarray(index)
        rows, cols = idx[:, None], idx[None, :]
        upper = jnp.where(rows <= cols, other.augmented_information(), 0.0)
        self._matrix = self._matrix.at[rows, cols].add(upper)
        self.assert_invariants()

    # ------------------------------------------------------------------
    # Elimination
    # ------------------------------------------------------------------

    def _block_of(self, index: int) -> int:
        for j in range(self.size):
            if index < self._offsets[j + 1]:
                return j
        return self.size

    def partial_cholesky(self, n_frontals: int) -> None:
        """Factor the leading ``n_frontals`` blocks against the remainder, in place."""
        if not 0 <= n_frontals <= self.size:
            raise DimensionError(f"Cannot eliminate {n_frontals} of {self.size} variables")
        if self._eliminated is not None:
            raise ValueError("Factor has already been eliminated")
        p = self._offsets[n_frontals]
        if p == 0:
            self._eliminated = 0
            return

        M = self._matrix
        A11 = _symmetric_from_upper(M[:p, :p])
        R11 = jnp.linalg.cholesky(A11).T
        pivots = jnp.diag(R11)
        scale = jnp.maximum(jnp.abs(jnp.diag(A11)), jnp.finfo(jnp.float64).tiny)
        bad = (~jnp.isfinite(pivots)) | (pivots <= 0.0) | (pivots * pivots < PIVOT_RELATIVE_TOL * scale)
        if bool(jnp.any(bad)) or not bool(jnp.all(jnp.isfinite(R11))):
            first = _first_bad_pivot(A11)
            key = self.keys[self._block_of(first)]
            logger.debug("Non-positive pivot at row %d (variable %s)", first, key)
            raise IndeterminantSystemError(
                "Indeterminant linear system: information matrix is not positive definite", key=key
            )

        R12 = solve_triangular(R11, M[:p, p:], trans="T", lower=False)
        schur = jnp.triu(M[p:, p:] - R12.T @ R12)
        M = M.at[:p, :p].set(jnp.triu(R11)).at[:p, p:].set(R12).at[p:, p:].set(schur)
        self._matrix = M
        self._eliminated = n_frontals
        self.assert_invariants()

    def split_eliminated(self, n_frontals: int) -> Tuple[GaussianBayesNet, "InformationFactor"]:
        """Extract the conditionals of the eliminated frontals and the remainder factor."""
        if self._eliminated != n_frontals:
            raise ValueError(
                f"split_eliminated({n_frontals}) requires partial_cholesky({n_frontals}) first"
            )
        o = self._offsets
        last = o[-2]
        conditionals = GaussianBayesNet()
        for j in range(n_frontals):
            r0, r1 = o[j], o[j + 1]
            R = jnp.triu(self._matrix[r0:r1, r0:r1])
            S = [self._matrix[r0:r1, o[k]:o[k + 1]] for k in range(j + 1, self.size)]
            d = self._matrix[r0:r1, last]
            conditionals.append(GaussianConditional(self.keys[j], R, self.keys[j + 1:], S, d))

        p = o[n_frontals]
        remainder = InformationFactor(
            self.keys[n_frontals:], self.dims[n_frontals:], self._matrix[p:, p:]
        )
        return conditionals, remainder

    def eliminate(self, n_frontals: int) -> Tuple[GaussianBayesNet, "InformationFactor"]:
        self.partial_cholesky(n_frontals)
        return self.split_eliminated(n_frontals)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def constant_term(self) -> float:
        return float(self._matrix[-1, -1])

    def linear_term(self) -> jnp.ndarray:
        return self._matrix[:-1, -1]

    def information(self) -> jnp.ndarray:
        """Full symmetric ``G``."""
        return _symmetric_from_upper(self._matrix[:-1, :-1])

    def augmented_information(self) -> jnp.ndarray:
        return _symmetric_from_upper(self._matrix)

    def hessian_diagonal(self) -> VectorValues:
        diag = jnp.diag(self._matrix)
        o = self._offsets
        return VectorValues({k: diag[o[j]:o[j + 1]] for j, k in enumerate(self.keys)})

    def error(self, delta: Mapping[Key, jnp.ndarray]) -> float:
        """0.5·(f − 2·xᵗg + xᵗGx) at ``x = delta``."""
        if self.size == 0:
            return 0.5 * self.constant_term()
        x = jnp.concatenate([jnp.asarray(delta[k]).reshape(-1) for k in self.keys])
        f = self.constant_term()
        xtg = jnp.dot(x, self.linear_term())
        xGx = x @ self.information() @ x
        return 0.5 * float(f - 2.0 * xtg + xGx)

    def equals(self, other, tol: float = 1e-9) -> bool:
        """Structural equality; the constant cell is ignored."""
        if not isinstance(other, InformationFactor) or other.keys != self.keys or other.dims != self.dims:
            return False
        mine = self.augmented_information().at[-1, -1].set(0.0)
        theirs = other.augmented_information().at[-1, -1].set(0.0)
        return bool(jnp.allclose(mine, theirs, atol=tol, rtol=0.0))

    def __repr__(self) -> str:
        dims = " ".join(f"{k}({d})" for k, d in zip(self.keys, self.dims))
        return f"InformationFactor(keys: {dims})"


GaussianFactor = Union[InformationFactor, MeasurementFactor]


def check_factor_type(factor) -> None:
    """Raise `InconsistentFactorTypeError` unless ``factor`` is a `GaussianFactor`."""
    if not isinstance(factor, (InformationFactor, MeasurementFactor)):
        raise InconsistentFactorTypeError(
            f"{type(factor).__name__} is neither an InformationFactor nor a MeasurementFactor"
        )


def to_information_form(factor: GaussianFactor) -> InformationFactor:
    """The single conversion from either factor representation to information form."""
    check_factor_type(factor)
    if isinstance(factor, MeasurementFactor):
        return InformationFactor.from_measurement(factor)
    return factor
