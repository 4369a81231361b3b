"""Debug utilities for auditing labeled results."""
import logging
import numpy as np

from segmerge.types import LabeledResult

logger = logging.getLogger(__name__)


def audit_result(result: LabeledResult, phase: str = "segmentation") -> dict:
    """
    Audit a labeled result and log any invariant violations.

    Args:
        result: Result to audit
        phase: Description of the phase (for logging)

    Returns:
        Dictionary with audit statistics
    """
    stats = {
        "total_segments": result.num_segments,
        "total_pixels": result.total_pixel_count,
        "counted_pixels": 0,
        "missing_stats": [],
        "missing_in_map": [],
        "count_mismatches": [],
        "smallest_segment": None,
        "largest_segment": None,
    }

    if result.label_map.size:
        present, counts = np.unique(result.label_map, return_counts=True)
        map_counts = {int(l): int(c) for l, c in zip(present, counts)}
    else:
        map_counts = {}

    for label, count in map_counts.items():
        if label not in result.stats:
            stats["missing_stats"].append(label)
            logger.warning(f"Label {label}: {count} pixels in map but no statistics")

    for label, region in sorted(result.stats.items()):
        stats["counted_pixels"] += region.pixel_count
        if label not in map_counts:
            stats["missing_in_map"].append(label)
            logger.warning(f"Label {label}: statistics present but no pixels in map")
        elif map_counts[label] != region.pixel_count:
            stats["count_mismatches"].append(label)
            logger.warning(
                f"Label {label}: pixel_count={region.pixel_count}, map has {map_counts[label]}"
            )

    if result.stats:
        sizes = [r.pixel_count for r in result.stats.values()]
        stats["smallest_segment"] = min(sizes)
        stats["largest_segment"] = max(sizes)

    if stats["counted_pixels"] != stats["total_pixels"]:
        logger.warning(
            f"Pixel conservation broken: {stats['counted_pixels']} counted, "
            f"{stats['total_pixels']} in grid"
        )

    logger.info(
        f"Result audit ({phase}): {stats['total_segments']} segments, "
        f"{stats['total_pixels']} pixels, "
        f"sizes {stats['smallest_segment']}..{stats['largest_segment']}"
    )

    return stats


def is_consistent(audit: dict) -> bool:
    """True if an audit found no violations."""
    return (
        not audit["missing_stats"]
        and not audit["missing_in_map"]
        and not audit["count_mismatches"]
        and audit["counted_pixels"] == audit["total_pixels"]
    )
