# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Explicit timing and diagnostics context.

Elimination and optimization routines accept an optional `Diagnostics`
object instead of consulting process-wide debug flags. When none is
passed, nothing is timed and nothing extra is logged.

Usage
-----
    diag = Diagnostics(log_matrices=True)
    bayes_net = eliminate_sequential(graph, ordering, diagnostics=diag)
    print(diag.summary())
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class SectionStats:
    calls: int = 0
    total_seconds: float = 0.0

    @property
    def mean_seconds(self) -> float:
        return self.total_seconds / self.calls if self.calls else 0.0


@dataclass
class Diagnostics:
    """Accumulates per-section wall-clock timings and optional matrix dumps.

    :param enabled: When ``False`` sections are not timed.
    :param log_matrices: Dump joint information matrices at DEBUG level.
    """
    enabled: bool = True
    log_matrices: bool = False
    sections: Dict[str, SectionStats] = field(default_factory=dict)
    counters: Dict[str, int] = field(default_factory=dict)

    @contextmanager
    def section(self, name: str) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            stats = self.sections.setdefault(name, SectionStats())
            stats.calls += 1
            stats.total_seconds += time.perf_counter() - start

    def count(self, name: str, amount: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + amount

    def dump_matrix(self, label: str, matrix) -> None:
        if self.log_matrices:
            logger.debug("%s\n%s", label, matrix)

    def reset(self) -> None:
        self.sections.clear()
        self.counters.clear()

    def summary(self) -> str:
        lines = [f"{'section':<32}{'calls':>8}{'total [ms]':>14}{'mean [ms]':>12}"]
        for name in sorted(self.sections):
            s = self.sections[name]
            lines.append(
                f"{name:<32}{s.calls:>8}{1e3 * s.total_seconds:>14.3f}{1e3 * s.mean_seconds:>12.4f}"
            )
        for name in sorted(self.counters):
            lines.append(f"{name:<32}{self.counters[name]:>8}")
        return "\n".join(lines)


@contextmanager
def maybe_section(diagnostics: Optional[Diagnostics], name: str) -> Iterator[None]:
    """Time ``name`` on ``diagnostics`` if one was passed in."""
    if diagnostics is None:
        yield
    else:
        with diagnostics.section(name):
            yield
