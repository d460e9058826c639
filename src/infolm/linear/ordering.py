# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Elimination orderings.

The order in which variables are eliminated decides how much fill-in the
Bayes net accumulates. `min_degree_ordering` is a greedy minimum-degree
heuristic on the variable interaction graph (two variables interact when
a factor touches both), built with networkx. Ties are broken by the
smaller key so the ordering is deterministic.
"""

from __future__ import annotations

from itertools import combinations
from typing import Iterable, List

import networkx as nx

from ..core.types import Key


def natural_ordering(keys: Iterable[Key]) -> List[Key]:
    return sorted(set(keys))


def interaction_graph(graph) -> nx.Graph:
    """Undirected graph with one node per key and an edge per co-occurrence."""
    g = nx.Graph()
    for factor in graph:
        g.add_nodes_from(factor.keys)
        g.add_edges_from(combinations(factor.keys, 2))
    return g


def min_degree_ordering(graph) -> List[Key]:
    g = interaction_graph(graph)
    ordering: List[Key] = []
    while g.number_of_nodes() > 0:
        key = min(g.nodes, key=lambda k: (g.degree(k), k))
        neighbors = list(g.neighbors(key))
        # eliminating a node connects all its neighbors (fill-in)
        g.add_edges_from(combinations(neighbors, 2))
        g.remove_node(key)
        ordering.append(key)
    return ordering
