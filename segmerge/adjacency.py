"""Region adjacency graph over the labels of a labeled result."""
import logging
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple
import numpy as np
import networkx as nx

from segmerge.types import Edge, InconsistentResult, InvalidLabel, InvalidParameter, LabeledResult
from segmerge.connectivity import Connectivity, neighbor_offsets, neighbor_pairs

logger = logging.getLogger(__name__)

WeightFn = Callable[[int, int], float]


def mean_dissimilarity(result: LabeledResult) -> WeightFn:
    """
    Default label dissimilarity: distance between the current segment means.

    Stats are read at call time, so weights follow merges applied to the result.
    """
    def weight(a: int, b: int) -> float:
        ma = np.asarray(result.segment_mean(a), dtype=np.float64)
        mb = np.asarray(result.segment_mean(b), dtype=np.float64)
        return float(np.sqrt(np.sum((ma - mb) ** 2)))
    return weight


def _pair_key(a: int, b: int) -> Tuple[int, int]:
    return (a, b) if a < b else (b, a)


class RegionAdjacencyGraph:
    """
    Simple undirected graph whose vertices are labels.

    Edge weights come from a caller-supplied function and are computed
    lazily, once per unique pair, then cached until one of the endpoints
    changes through `merge`.
    """

    def __init__(self, labels, weight_fn: WeightFn):
        if not callable(weight_fn):
            raise InvalidParameter(f"Weight function must be callable, got {type(weight_fn).__name__}")
        self.weight_fn = weight_fn
        self._adjacency: Dict[int, Set[int]] = {int(l): set() for l in labels}
        self._weights: Dict[Tuple[int, int], float] = {}

    def __contains__(self, label: int) -> bool:
        return label in self._adjacency

    def __len__(self) -> int:
        return len(self._adjacency)

    @property
    def vertices(self) -> List[int]:
        return sorted(self._adjacency)

    def add_edge(self, a: int, b: int):
        if a == b:
            return
        self._adjacency[a].add(b)
        self._adjacency[b].add(a)

    def has_edge(self, a: int, b: int) -> bool:
        return a in self._adjacency and b in self._adjacency[a]

    def neighbors(self, label: int) -> List[int]:
        """Adjacent labels in ascending order."""
        if label not in self._adjacency:
            raise InvalidLabel(f"Label {label} is not a vertex of the graph")
        return sorted(self._adjacency[label])

    def degree(self, label: int) -> int:
        return len(self.neighbors(label))

    def weight(self, a: int, b: int) -> float:
        """Weight of edge (a, b), evaluated on first access."""
        if not self.has_edge(a, b):
            raise InvalidLabel(f"No edge between {a} and {b}")
        key = _pair_key(a, b)
        if key not in self._weights:
            self._weights[key] = float(self.weight_fn(*key))
        return self._weights[key]

    def num_edges(self) -> int:
        return sum(len(n) for n in self._adjacency.values()) // 2

    def edges(self) -> Iterator[Edge]:
        """Yield edges in canonical (a < b) ascending order."""
        for a in self.vertices:
            for b in sorted(self._adjacency[a]):
                if a < b:
                    yield Edge(a, b, self.weight(a, b))

    def merge(self, removed: int, into: int):
        """
        Fold vertex `removed` into `into`.

        Edges of `removed` are transferred onto `into`; cached weights of both
        vertices are dropped and recomputed on next access.
        """
        if removed not in self._adjacency:
            raise InvalidLabel(f"Label {removed} is not a vertex of the graph")
        if into not in self._adjacency:
            raise InvalidLabel(f"Label {into} is not a vertex of the graph")

        for other in self._adjacency.pop(removed):
            self._adjacency[other].discard(removed)
            self._weights.pop(_pair_key(removed, other), None)
            if other != into:
                self._adjacency[other].add(into)
                self._adjacency[into].add(other)

        # into's stats changed, so its weights are stale
        for other in self._adjacency[into]:
            self._weights.pop(_pair_key(into, other), None)

    def copy(self) -> "RegionAdjacencyGraph":
        g = RegionAdjacencyGraph([], self.weight_fn)
        g._adjacency = {l: set(n) for l, n in self._adjacency.items()}
        g._weights = dict(self._weights)
        return g

    def restore(self, snapshot: "RegionAdjacencyGraph"):
        """Reset this graph to the state held by `snapshot`."""
        self.weight_fn = snapshot.weight_fn
        self._adjacency = {l: set(n) for l, n in snapshot._adjacency.items()}
        self._weights = dict(snapshot._weights)

    def to_networkx(self, result: Optional[LabeledResult] = None) -> nx.Graph:
        """
        Export as a networkx graph.

        Args:
            result: If given, vertices carry `pixel_count` and `mean` attributes

        Returns:
            nx.Graph with a `weight` attribute on every edge
        """
        graph = nx.Graph()
        for label in self.vertices:
            attrs = {}
            if result is not None:
                region = result.stats[label]
                attrs = {"pixel_count": region.pixel_count, "mean": region.mean_value}
            graph.add_node(label, **attrs)
        for edge in self.edges():
            graph.add_edge(edge.a, edge.b, weight=edge.weight)
        return graph


def adjacent_label_pairs(label_map: np.ndarray, connectivity: Optional[Connectivity] = 1) -> np.ndarray:
    """
    Unique unordered pairs of distinct labels that touch under the kernel.

    Returns:
        (E, 2) array of (a, b) with a < b, sorted lexicographically
    """
    if label_map.size == 0:
        return np.empty((0, 2), dtype=np.int64)

    offsets = neighbor_offsets(label_map.ndim, connectivity)
    src, dst = neighbor_pairs(label_map.shape, offsets)
    flat = label_map.ravel()
    la = flat[src]
    lb = flat[dst]

    differ = la != lb
    la, lb = la[differ], lb[differ]
    if la.size == 0:
        return np.empty((0, 2), dtype=np.int64)

    pairs = np.stack([np.minimum(la, lb), np.maximum(la, lb)], axis=1).astype(np.int64)
    return np.unique(pairs, axis=0)


def build_adjacency_graph(
    result: LabeledResult,
    weight_fn: Optional[WeightFn] = None,
    connectivity: Optional[Connectivity] = 1
) -> RegionAdjacencyGraph:
    """
    Build the region adjacency graph of a labeled result.

    Every present label becomes a vertex, including labels with no differing
    neighbor. The label map is cross-checked against the statistics first.

    Args:
        result: Labeled result to scan
        weight_fn: f(label_a, label_b) -> float, evaluated lazily per pair.
            Defaults to the distance between segment means.
        connectivity: Kernel selection (see connectivity.neighbor_offsets)

    Returns:
        RegionAdjacencyGraph

    Raises:
        InconsistentResult: If the result violates its invariants
        InvalidParameter: If the connectivity or weight function is malformed
    """
    result.check_invariants()
    if weight_fn is None:
        weight_fn = mean_dissimilarity(result)

    graph = RegionAdjacencyGraph(result.labels, weight_fn)
    for a, b in adjacent_label_pairs(result.label_map, connectivity):
        graph.add_edge(int(a), int(b))

    logger.debug(
        f"Adjacency graph: {len(graph)} vertices, {graph.num_edges()} edges"
    )
    return graph


def check_graph_matches(graph: RegionAdjacencyGraph, result: LabeledResult):
    """Raise InconsistentResult if the graph's vertices differ from the result's labels."""
    if graph.vertices != result.labels:
        raise InconsistentResult(
            f"Graph has {len(graph)} vertices but result has {result.num_segments} labels"
        )
