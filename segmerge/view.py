"""Read-only view of a labeled result for downstream consumers."""
from typing import List, Optional, Sequence
import numpy as np
import networkx as nx

from segmerge.types import LabeledResult, MeanValue
from segmerge.connectivity import Connectivity
from segmerge.adjacency import RegionAdjacencyGraph, WeightFn, build_adjacency_graph


class SegmentView:
    """Read accessors over a LabeledResult; never mutates it."""

    def __init__(self, result: LabeledResult):
        self._result = result

    @property
    def label_map(self) -> np.ndarray:
        """Non-writeable view of the label map."""
        view = self._result.label_map.view()
        view.flags.writeable = False
        return view

    @property
    def labels(self) -> List[int]:
        return self._result.labels

    @property
    def shape(self):
        return self._result.shape

    def __len__(self) -> int:
        return self._result.num_segments

    def label_at(self, coord: Sequence[int]) -> int:
        return self._result.label_at(coord)

    def mean(self, label: int) -> MeanValue:
        mean = self._result.segment_mean(label)
        if isinstance(mean, np.ndarray):
            return mean.copy()
        return mean

    def pixel_count(self, label: int) -> int:
        return self._result.segment_pixel_count(label)

    def adjacency_graph(
        self,
        weight_fn: Optional[WeightFn] = None,
        connectivity: Optional[Connectivity] = 1
    ) -> RegionAdjacencyGraph:
        """Adjacency graph with weights evaluated lazily by `weight_fn`."""
        return build_adjacency_graph(self._result, weight_fn, connectivity)

    def to_networkx(
        self,
        weight_fn: Optional[WeightFn] = None,
        connectivity: Optional[Connectivity] = 1
    ) -> nx.Graph:
        """Label vertices with pixel_count/mean, adjacent-label edges with weight."""
        return self.adjacency_graph(weight_fn, connectivity).to_networkx(self._result)
