"""Core types for region-merging segmentation."""
import numbers
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union
import numpy as np
from skimage.segmentation import relabel_sequential

# Type aliases
Coordinate = Tuple[int, ...]
Label = int
MeanValue = Union[float, np.ndarray]


class SegmentationError(Exception):
    """Base exception for segmentation errors."""
    pass


class InvalidParameter(SegmentationError, ValueError):
    """Negative scale/size, bad connectivity or a malformed pluggable function."""
    pass


class InvalidLabel(SegmentationError, KeyError):
    """Operation references a label absent from the current label set."""

    def __str__(self):
        return str(self.args[0]) if self.args else ""


class NoNeighbor(SegmentationError):
    """Removal target has no adjacent region to merge into."""
    pass


class EmptyInput(SegmentationError):
    """Zero-coordinate grid where the caller required non-empty input."""
    pass


class InconsistentResult(SegmentationError):
    """Labeled result whose label map and statistics disagree."""
    pass


@dataclass
class RegionStats:
    """Statistics of one region."""
    label: int
    pixel_count: int
    mean_value: MeanValue

    def merged_with(self, other: "RegionStats") -> "RegionStats":
        """Stats of this region after absorbing `other` (label is kept)."""
        total = self.pixel_count + other.pixel_count
        mean = (
            self.pixel_count * np.asarray(self.mean_value, dtype=np.float64)
            + other.pixel_count * np.asarray(other.mean_value, dtype=np.float64)
        ) / total
        if mean.ndim == 0:
            mean = float(mean)
        return RegionStats(label=self.label, pixel_count=total, mean_value=mean)


@dataclass(frozen=True)
class Edge:
    """Undirected weighted edge between two labels, a < b."""
    a: int
    b: int
    weight: float

    def __post_init__(self):
        if self.a >= self.b:
            raise InvalidParameter(f"Edge endpoints must satisfy a < b, got ({self.a}, {self.b})")


@dataclass
class SegmentationConfig:
    """Call-time parameters of the graph-based merger."""
    # Felzenszwalb scale; larger values favor larger segments
    k: float = 1.0
    # Components below this size are folded into a neighbor
    min_size: int = 0
    # None = full neighborhood (8-connectivity in 2-D)
    connectivity: Optional[Union[int, Sequence[Sequence[int]]]] = None
    # Axis holding per-sample channels, None for scalar grids
    channel_axis: Optional[int] = None

    def validate(self):
        """Raise InvalidParameter on out-of-range values."""
        if not isinstance(self.k, numbers.Real) or isinstance(self.k, bool):
            raise InvalidParameter(f"k must be a real number, got {self.k!r}")
        if not np.isfinite(self.k) or self.k < 0:
            raise InvalidParameter(f"k must be a finite value >= 0, got {self.k}")
        if (not isinstance(self.min_size, numbers.Real) or isinstance(self.min_size, bool)
                or int(self.min_size) != self.min_size or self.min_size < 0):
            raise InvalidParameter(f"min_size must be an integer >= 0, got {self.min_size}")


def as_sample_grid(values: np.ndarray, channel_axis: Optional[int]) -> np.ndarray:
    """Move the channel axis (if any) to the end."""
    values = np.asarray(values)
    if channel_axis is None:
        return values
    try:
        return np.moveaxis(values, channel_axis, -1)
    except ValueError as e:
        raise InvalidParameter(f"Invalid channel_axis {channel_axis}: {e}") from e


def compute_region_stats(label_map: np.ndarray, samples: np.ndarray) -> Dict[int, RegionStats]:
    """
    Compute exact per-label statistics.

    Args:
        label_map: n-d array of positive integer labels
        samples: array of shape label_map.shape or label_map.shape + (C,)

    Returns:
        Mapping label -> RegionStats
    """
    flat_labels = label_map.ravel()
    if flat_labels.size == 0:
        return {}

    counts = np.bincount(flat_labels)
    present = np.flatnonzero(counts)

    flat_samples = samples.reshape(flat_labels.size, -1).astype(np.float64)
    sums = np.stack(
        [np.bincount(flat_labels, weights=flat_samples[:, c], minlength=counts.size)
         for c in range(flat_samples.shape[1])],
        axis=-1
    )

    scalar = samples.ndim == label_map.ndim
    stats = {}
    for lbl in present:
        mean = sums[lbl] / counts[lbl]
        stats[int(lbl)] = RegionStats(
            label=int(lbl),
            pixel_count=int(counts[lbl]),
            mean_value=float(mean[0]) if scalar else mean
        )
    return stats


@dataclass
class LabeledResult:
    """
    Dense label map plus per-label statistics.

    The result is owned by the caller and mutated in place by the pruner.
    Invariants: the labels in `label_map` equal the keys of `stats`, and each
    pixel_count equals the number of coordinates carrying that label.
    """
    label_map: np.ndarray
    stats: Dict[int, RegionStats] = field(default_factory=dict)

    @classmethod
    def from_label_map(
        cls,
        label_map: np.ndarray,
        values: np.ndarray,
        channel_axis: Optional[int] = None
    ) -> "LabeledResult":
        """
        Build a result from an externally produced labeling.

        Args:
            label_map: n-d integer array of positive labels
            values: sample grid matching label_map (plus optional channel axis)
            channel_axis: axis of `values` holding channels, if any

        Returns:
            LabeledResult with exact statistics

        Raises:
            InconsistentResult: If labels are non-integer or not positive, or
                shapes do not match
        """
        label_map = np.asarray(label_map)
        samples = as_sample_grid(values, channel_axis)

        if label_map.size and not np.issubdtype(label_map.dtype, np.integer):
            raise InconsistentResult(f"Label map must hold integers, got {label_map.dtype}")
        if samples.shape[:label_map.ndim] != label_map.shape or samples.ndim > label_map.ndim + 1:
            raise InconsistentResult(
                f"Sample grid shape {samples.shape} does not match label map {label_map.shape}"
            )
        if label_map.size and label_map.min() < 1:
            raise InconsistentResult("Labels must be positive integers")

        label_map = label_map.astype(np.int64)
        return cls(label_map=label_map, stats=compute_region_stats(label_map, samples))

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.label_map.shape

    @property
    def labels(self) -> List[int]:
        """Ordered label list."""
        return sorted(self.stats)

    @property
    def num_segments(self) -> int:
        return len(self.stats)

    @property
    def total_pixel_count(self) -> int:
        return int(self.label_map.size)

    def label_at(self, coord: Sequence[int]) -> int:
        """Label at a grid coordinate."""
        coord = tuple(int(c) for c in coord)
        if len(coord) != self.label_map.ndim:
            raise InvalidParameter(
                f"Coordinate {coord} has {len(coord)} dims, grid has {self.label_map.ndim}"
            )
        for c, n in zip(coord, self.label_map.shape):
            if not 0 <= c < n:
                raise InvalidParameter(f"Coordinate {coord} outside grid {self.label_map.shape}")
        return int(self.label_map[coord])

    def _region(self, label: int) -> RegionStats:
        try:
            return self.stats[label]
        except KeyError:
            raise InvalidLabel(f"Label {label} is not present") from None

    def segment_mean(self, label: int) -> MeanValue:
        return self._region(label).mean_value

    def segment_pixel_count(self, label: int) -> int:
        return self._region(label).pixel_count

    def copy(self) -> "LabeledResult":
        stats = {}
        for lbl, region in self.stats.items():
            mean = region.mean_value
            if isinstance(mean, np.ndarray):
                mean = mean.copy()
            stats[lbl] = RegionStats(region.label, region.pixel_count, mean)
        return LabeledResult(label_map=self.label_map.copy(), stats=stats)

    def check_invariants(self):
        """
        Cross-check the label map against the statistics.

        Raises:
            InconsistentResult: If a label is missing on either side or a
                pixel count disagrees with the map
        """
        if self.label_map.size == 0:
            if self.stats:
                raise InconsistentResult("Empty label map carries statistics")
            return

        present, counts = np.unique(self.label_map, return_counts=True)
        map_labels = set(int(l) for l in present)
        stat_labels = set(self.stats)
        if map_labels != stat_labels:
            missing = sorted(map_labels - stat_labels)
            extra = sorted(stat_labels - map_labels)
            raise InconsistentResult(
                f"Label set mismatch: in map only {missing}, in stats only {extra}"
            )

        for lbl, count in zip(present, counts):
            region = self.stats[int(lbl)]
            if region.pixel_count != int(count):
                raise InconsistentResult(
                    f"Label {lbl}: pixel_count {region.pixel_count} but {count} coordinates in map"
                )
            if region.label != int(lbl):
                raise InconsistentResult(f"Stats keyed {lbl} carry label {region.label}")


def compact_labels(result: LabeledResult) -> LabeledResult:
    """
    Renumber labels in place to 1..K, keeping their relative order.

    Returns:
        The same result, relabeled
    """
    if result.label_map.size == 0:
        return result

    relabeled, forward, _ = relabel_sequential(result.label_map)
    stats = {}
    for old in sorted(result.stats):
        new = int(forward[old])
        region = result.stats[old]
        stats[new] = RegionStats(label=new, pixel_count=region.pixel_count, mean_value=region.mean_value)

    result.label_map[...] = relabeled
    result.stats = stats
    return result
