# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Exception taxonomy for InfoLM.

Unrecoverable construction and integration errors derive from the
built-in exception they specialize, so callers that already catch
`ValueError` or `TypeError` keep working. `IndeterminantSystemError` is
the only error the optimizer recovers from: a singular damped system is
treated as a rejected trial and lambda is increased.
"""

from __future__ import annotations

from typing import Optional

from .types import Key


class InfoLMError(Exception):
    """Base class for all InfoLM errors."""


class DimensionError(InfoLMError, ValueError):
    """Factor matrices or vectors have mutually inconsistent sizes, or
    an assembled information matrix holds non-finite entries."""


class UnsupportedNoiseModel(InfoLMError, ValueError):
    """A noise model cannot be expressed in information form."""


class IndeterminantSystemError(InfoLMError, RuntimeError):
    """A linear system is singular or not positive definite.

    :param key: Variable being eliminated when the bad pivot was found,
        if known.
    """

    def __init__(self, message: str, key: Optional[Key] = None) -> None:
        super().__init__(message)
        self.key = key

    def __str__(self) -> str:
        base = super().__str__()
        if self.key is None:
            return base
        return f"{base} (near variable {self.key})"


class InconsistentFactorTypeError(InfoLMError, TypeError):
    """A factor is neither an information-form nor a measurement factor."""
