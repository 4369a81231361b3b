"""Removal of unwanted segments by least-difference merging."""
import logging
import numbers
from collections import deque
from functools import cmp_to_key
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union
import numpy as np
from scipy.ndimage import binary_dilation, find_objects

from segmerge.types import InconsistentResult, InvalidLabel, InvalidParameter, LabeledResult, NoNeighbor
from segmerge.connectivity import Connectivity, structuring_element
from segmerge.adjacency import RegionAdjacencyGraph, build_adjacency_graph, check_graph_matches

logger = logging.getLogger(__name__)

DiffFn = Callable[[int, int], float]
TieBreak = Callable[[int, int], int]
RemovalSpec = Union[Iterable[int], Callable[[int], bool]]


def _check_callables(diff: DiffFn, tie_break: Optional[TieBreak]):
    if not callable(diff):
        raise InvalidParameter(f"diff must be callable, got {type(diff).__name__}")
    if tie_break is not None and not callable(tie_break):
        raise InvalidParameter(f"tie_break must be callable, got {type(tie_break).__name__}")


def _resolve_targets(result: LabeledResult, remove: RemovalSpec) -> List[int]:
    """Labels selected for removal, validated against the current label set."""
    if callable(remove):
        return [label for label in result.labels if remove(label)]

    if isinstance(remove, (numbers.Integral, np.integer)):
        remove = [remove]

    targets = []
    for label in remove:
        label = int(label)
        if label not in result.stats:
            raise InvalidLabel(f"Cannot remove label {label}: not present")
        if label not in targets:
            targets.append(label)
    return targets


def _select_neighbor(label: int, candidates: List[int], diff: DiffFn,
                     tie_break: Optional[TieBreak]) -> int:
    """Neighbor minimizing diff(label, neighbor); ties go to tie_break, else the lowest label."""
    scored = []
    for neighbor in candidates:
        d = diff(label, neighbor)
        if not isinstance(d, numbers.Real) or not np.isfinite(d):
            raise InvalidParameter(
                f"diff({label}, {neighbor}) must return a finite real number, got {d!r}"
            )
        scored.append((float(d), neighbor))

    best = min(d for d, _ in scored)
    tied = sorted(n for d, n in scored if d == best)
    if len(tied) > 1 and tie_break is not None:
        return min(tied, key=cmp_to_key(tie_break))
    return tied[0]


def _final_owner(label: int, absorbed_into: Dict[int, int]) -> int:
    while label in absorbed_into:
        label = absorbed_into[label]
    return label


def _retag(label_map: np.ndarray, owners: Dict[int, int]):
    """Rewrite every coordinate whose label is a key of `owners`, in one pass over the map."""
    present, inverse = np.unique(label_map, return_inverse=True)
    lut = np.array([owners.get(int(l), int(l)) for l in present], dtype=label_map.dtype)
    label_map[...] = lut[inverse].reshape(label_map.shape)


def _padded_box(box: Tuple[slice, ...], radius: int, shape: Tuple[int, ...]) -> Tuple[slice, ...]:
    return tuple(
        slice(max(0, s.start - radius), min(n, s.stop + radius))
        for s, n in zip(box, shape)
    )


def prune_segments(
    result: LabeledResult,
    remove: RemovalSpec,
    diff: DiffFn,
    tie_break: Optional[TieBreak] = None,
    connectivity: Optional[Connectivity] = 1,
    graph: Optional[RegionAdjacencyGraph] = None
) -> LabeledResult:
    """
    Merge every targeted segment into its least-different neighbor.

    Targets are processed in ascending (pixel_count, label) order fixed at
    the start of the batch. Each target merges into the still-present
    neighbor minimizing diff(target, neighbor); a pending target is itself
    eligible, and neighbors are re-read from the live graph after every
    merge. Statistics are updated as merges happen, so a `diff` closure that
    reads the result sees the current counts and means. The label map is
    rewritten once at the end; on any error the result (and a caller
    supplied graph) is left exactly as it was.

    Args:
        result: Labeled result, modified in place
        remove: Iterable of labels, or predicate is_removed(label) -> bool
        diff: f(removed, neighbor) -> real, lower means more similar
        tie_break: Optional cmp(a, b) -> int among equally different neighbors
        connectivity: Kernel used when building the adjacency graph
        graph: Adjacency graph to reuse; it is updated with the merges

    Returns:
        The same result object

    Raises:
        InvalidLabel: If an explicit target is not present
        NoNeighbor: If a target has no adjacent segment
        InvalidParameter: On malformed diff/tie_break or connectivity
        InconsistentResult: If the result (or given graph) is inconsistent
    """
    _check_callables(diff, tie_break)
    targets = _resolve_targets(result, remove)
    if not targets:
        logger.debug("Nothing to prune")
        return result

    snapshot = None
    if graph is None:
        graph = build_adjacency_graph(result, connectivity=connectivity)
    else:
        result.check_invariants()
        check_graph_matches(graph, result)
        snapshot = graph.copy()

    order = sorted(targets, key=lambda label: (result.stats[label].pixel_count, label))
    before = result.num_segments

    original_stats = result.stats
    result.stats = dict(original_stats)
    absorbed_into: Dict[int, int] = {}
    pending = deque(order)
    try:
        while pending:
            removed = pending.popleft()
            candidates = graph.neighbors(removed)
            if not candidates:
                raise NoNeighbor(f"Segment {removed} has no adjacent segment to merge into")

            into = _select_neighbor(removed, candidates, diff, tie_break)
            result.stats[into] = result.stats[into].merged_with(result.stats.pop(removed))
            graph.merge(removed, into)
            absorbed_into[removed] = into
            logger.debug(f"Merged segment {removed} into {into}")
    except Exception:
        result.stats = original_stats
        if snapshot is not None:
            graph.restore(snapshot)
        raise

    # Commit: one relabeling pass over the map
    _retag(result.label_map, {l: _final_owner(l, absorbed_into) for l in absorbed_into})

    logger.info(f"Pruned {len(absorbed_into)} segments: {before} -> {result.num_segments}")
    return result


def remove_segment(
    result: LabeledResult,
    label: int,
    diff: DiffFn,
    tie_break: Optional[TieBreak] = None,
    connectivity: Optional[Connectivity] = 1
) -> int:
    """
    Merge a single segment into its least-different neighbor, in place.

    Neighbors are found by dilating the segment inside its bounding box, but
    retagging its coordinates rewrites the whole map, so k single removals
    cost k map passes where one prune_segments call over the same labels
    costs one.

    Args:
        result: Labeled result, modified in place
        label: Segment to remove
        diff: f(removed, neighbor) -> real, lower means more similar
        tie_break: Optional cmp(a, b) -> int among equally different neighbors
        connectivity: Kernel defining neighbors

    Returns:
        Label of the segment that absorbed `label`

    Raises:
        InvalidLabel: If `label` is not present
        NoNeighbor: If the segment has no adjacent segment
        InconsistentResult: If `label` has statistics but no coordinates
    """
    _check_callables(diff, tie_break)
    label = int(label)
    if label not in result.stats:
        raise InvalidLabel(f"Cannot remove label {label}: not present")

    struct = structuring_element(result.label_map.ndim, connectivity)
    region = result.label_map == label
    boxes = find_objects(region.astype(np.uint8))
    if not boxes or boxes[0] is None:
        raise InconsistentResult(f"Label {label} has statistics but no coordinates")

    # Dilate only around the segment
    box = _padded_box(boxes[0], struct.shape[0] // 2, result.shape)
    mask = region[box]
    ring = binary_dilation(mask, structure=struct) & ~mask
    candidates = [int(n) for n in np.unique(result.label_map[box][ring])]
    if not candidates:
        raise NoNeighbor(f"Segment {label} has no adjacent segment to merge into")

    into = _select_neighbor(label, candidates, diff, tie_break)
    merged = result.stats[into].merged_with(result.stats[label])

    _retag(result.label_map, {label: into})
    result.stats[into] = merged
    del result.stats[label]

    logger.debug(f"Removed segment {label} into {into}")
    return into
