"""Graph-based region merging and segment pruning over n-d sample grids."""
from segmerge.types import (
    Edge,
    RegionStats,
    LabeledResult,
    SegmentationConfig,
    SegmentationError,
    InvalidParameter,
    InvalidLabel,
    NoNeighbor,
    EmptyInput,
    InconsistentResult,
    compact_labels,
)
from segmerge.adjacency import RegionAdjacencyGraph, build_adjacency_graph, mean_dissimilarity
from segmerge.felzenszwalb import DisjointSetForest, felzenszwalb, felzenszwalb_edges
from segmerge.pruning import prune_segments, remove_segment
from segmerge.view import SegmentView
from segmerge.producers import SegmentationProducer, FelzenszwalbProducer, LabelMapProducer

__all__ = [
    "Edge",
    "RegionStats",
    "LabeledResult",
    "SegmentationConfig",
    "SegmentationError",
    "InvalidParameter",
    "InvalidLabel",
    "NoNeighbor",
    "EmptyInput",
    "InconsistentResult",
    "compact_labels",
    "RegionAdjacencyGraph",
    "build_adjacency_graph",
    "mean_dissimilarity",
    "DisjointSetForest",
    "felzenszwalb",
    "felzenszwalb_edges",
    "prune_segments",
    "remove_segment",
    "SegmentView",
    "SegmentationProducer",
    "FelzenszwalbProducer",
    "LabelMapProducer",
]
