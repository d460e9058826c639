# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Scatter map: variable key -> block slot in a joint information matrix.

One `Scatter` is built per elimination step from the keys touched by the
factors being combined. Frontal keys come first, in elimination order,
followed by the separator keys. A trailing slot of dimension one holds
the scalar constant term, so the joint matrix has size ``Σ dims + 1``.

The scatter doubles as the index table of the joint arena: `block_range`
translates a (key, key) pair into (row offset, column offset, rows,
columns) of the dense buffer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core.errors import DimensionError
from ..core.types import Key


@dataclass(frozen=True)
class SlotEntry:
    slot: int
    dimension: int


class Scatter(Mapping[Key, SlotEntry]):
    """Ordered, densely packed assignment of keys to matrix slots."""

    def __init__(self, keys: Sequence[Key], dims: Mapping[Key, int]) -> None:
        self._keys: Tuple[Key, ...] = tuple(keys)
        if len(set(self._keys)) != len(self._keys):
            raise DimensionError(f"Duplicate keys in scatter: {self._keys}")
        self._entries: Dict[Key, SlotEntry] = {}
        self._offsets: List[int] = [0]
        for slot, key in enumerate(self._keys):
            d = int(dims[key])
            if d <= 0:
                raise DimensionError(f"Variable {key} has non-positive dimension {d}")
            self._entries[key] = SlotEntry(slot=slot, dimension=d)
            self._offsets.append(self._offsets[-1] + d)
        # constant slot
        self._offsets.append(self._offsets[-1] + 1)

    @classmethod
    def from_factors(
        cls,
        factors: Iterable,
        frontal_keys: Sequence[Key],
        ordering: Optional[Sequence[Key]] = None,
    ) -> "Scatter":
        """Build the scatter for eliminating ``frontal_keys`` from ``factors``.

        Separator keys are ranked by their position in ``ordering``; keys
        missing from it (or all keys, when no ordering is given) follow in
        ascending key order.
        """
        dims: Dict[Key, int] = {}
        for factor in factors:
            for key, d in zip(factor.keys, factor.dims):
                if dims.setdefault(key, d) != d:
                    raise DimensionError(
                        f"Variable {key} appears with dimensions {dims[key]} and {d}"
                    )
        missing = [k for k in frontal_keys if k not in dims]
        if missing:
            raise DimensionError(f"Frontal keys {missing} are not touched by any factor")

        frontal = set(frontal_keys)
        rank = {k: i for i, k in enumerate(ordering)} if ordering is not None else {}
        separators = sorted(
            (k for k in dims if k not in frontal),
            key=lambda k: (rank.get(k, len(rank)), k),
        )
        return cls(list(frontal_keys) + separators, dims)

    # --- Mapping protocol ---

    def __getitem__(self, key: Key) -> SlotEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[Key]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    # --- Layout ---

    @property
    def keys_in_order(self) -> Tuple[Key, ...]:
        return self._keys

    @property
    def constant_slot(self) -> int:
        return len(self._keys)

    @property
    def total_dim(self) -> int:
        return self._offsets[-1]

    def dims(self) -> List[int]:
        return [self._entries[k].dimension for k in self._keys]

    def block_dims(self) -> List[int]:
        return self.dims() + [1]

    def offset(self, slot: int) -> int:
        return self._offsets[slot]

    def block_range(self, key1: Optional[Key], key2: Optional[Key]) -> Tuple[int, int, int, int]:
        """(row_offset, col_offset, rows, cols) of block (key1, key2).

        ``None`` addresses the constant slot.
        """
        s1 = self.constant_slot if key1 is None else self._entries[key1].slot
        s2 = self.constant_slot if key2 is None else self._entries[key2].slot
        r0, c0 = self._offsets[s1], self._offsets[s2]
        return r0, c0, self._offsets[s1 + 1] - r0, self._offsets[s2 + 1] - c0

    def __repr__(self) -> str:
        body = ", ".join(f"{k}:({e.slot},{e.dimension})" for k, e in self._entries.items())
        return f"Scatter({body})"
