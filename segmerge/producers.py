"""Producers of labeled results.

Any algorithm that yields a dense labeling can feed the adjacency builder
and the pruner, as long as it honors the LabeledResult contract.
"""
import logging
from typing import Any, Callable, Optional, Protocol
import numpy as np
from skimage.segmentation import relabel_sequential

from segmerge.types import LabeledResult, SegmentationConfig
from segmerge.felzenszwalb import SampleDissimilarity, felzenszwalb

logger = logging.getLogger(__name__)


class SegmentationProducer(Protocol):
    """Capability contract: produce(grid) -> LabeledResult."""

    def produce(self, grid: np.ndarray) -> LabeledResult:
        ...


class FelzenszwalbProducer:
    """Produce results with the graph-based merger."""

    def __init__(
        self,
        config: Optional[SegmentationConfig] = None,
        dissimilarity: Optional[SampleDissimilarity] = None
    ):
        self.config = config or SegmentationConfig()
        self.config.validate()
        self.dissimilarity = dissimilarity

    def produce(self, grid: np.ndarray) -> LabeledResult:
        return felzenszwalb(
            grid,
            k=self.config.k,
            min_size=self.config.min_size,
            connectivity=self.config.connectivity,
            dissimilarity=self.dissimilarity,
            channel_axis=self.config.channel_axis,
        )


class LabelMapProducer:
    """
    Adapt an external labeler that returns a label map.

    The labeler is called as labeler(grid, **kwargs), e.g.
    LabelMapProducer(skimage.segmentation.slic, n_segments=100, channel_axis=None).
    Its labels are shifted and renumbered to 1..K before statistics are
    computed, so 0-based labelers are accepted.
    """

    def __init__(
        self,
        labeler: Callable[..., np.ndarray],
        channel_axis: Optional[int] = None,
        **kwargs: Any
    ):
        self.labeler = labeler
        self.channel_axis = channel_axis
        self.kwargs = kwargs

    def produce(self, grid: np.ndarray) -> LabeledResult:
        label_map = np.asarray(self.labeler(grid, **self.kwargs))
        if label_map.size:
            label_map = label_map.astype(np.int64)
            label_map, _, _ = relabel_sequential(label_map - label_map.min() + 1)
        result = LabeledResult.from_label_map(label_map, grid, channel_axis=self.channel_axis)
        logger.info(
            f"{getattr(self.labeler, '__name__', 'labeler')}: {result.num_segments} segments"
        )
        return result
