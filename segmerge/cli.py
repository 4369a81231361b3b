"""Command line interface for segmerge."""
import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

from segmerge.types import SegmentationConfig, SegmentationError
from segmerge.adjacency import mean_dissimilarity
from segmerge.debug_utils import audit_result
from segmerge.producers import FelzenszwalbProducer
from segmerge.pruning import prune_segments
from segmerge.view import SegmentView


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='segmerge',
        description='Segment a .npy sample grid by graph-based region merging'
    )

    parser.add_argument(
        'input',
        type=str,
        help='Input grid (.npy)'
    )

    parser.add_argument(
        '-o', '--output',
        type=str,
        help='Output archive path (default: input.segments.npz)'
    )

    parser.add_argument(
        '--k',
        type=float,
        default=1.0,
        help='Scale parameter; larger values give larger segments (default: 1.0)'
    )

    parser.add_argument(
        '--min-size',
        type=int,
        default=0,
        help='Minimum segment size in samples (default: 0)'
    )

    parser.add_argument(
        '--connectivity',
        type=int,
        default=None,
        help='Neighborhood connectivity 1..ndim (default: full)'
    )

    parser.add_argument(
        '--channel-axis',
        type=int,
        default=None,
        help='Axis holding per-sample channels (default: scalar samples)'
    )

    parser.add_argument(
        '--prune-below',
        type=int,
        default=0,
        help='Merge segments smaller than this into their most similar neighbor'
    )

    parser.add_argument(
        '--graph-json',
        type=str,
        default=None,
        help='Write the region adjacency graph as JSON to this path'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser


def _graph_to_json(view: SegmentView, result) -> dict:
    graph = view.adjacency_graph(mean_dissimilarity(result))
    nodes = []
    for label in view.labels:
        mean = view.mean(label)
        nodes.append({
            "label": label,
            "pixel_count": view.pixel_count(label),
            "mean": mean.tolist() if isinstance(mean, np.ndarray) else mean,
        })
    edges = [{"a": e.a, "b": e.b, "weight": e.weight} for e in graph.edges()]
    return {"nodes": nodes, "edges": edges}


def main(args=None):
    """Main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s'
    )

    # Resolve input path
    input_path = Path(parsed_args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    # Determine output path
    if parsed_args.output:
        output_path = Path(parsed_args.output)
    else:
        output_path = input_path.with_suffix('.segments.npz')

    config = SegmentationConfig(
        k=parsed_args.k,
        min_size=parsed_args.min_size,
        connectivity=parsed_args.connectivity,
        channel_axis=parsed_args.channel_axis,
    )

    try:
        grid = np.load(input_path)
        result = FelzenszwalbProducer(config).produce(grid)

        if parsed_args.prune_below > 0 and result.num_segments > 1:
            threshold = parsed_args.prune_below
            # The largest segment always survives so every target has somewhere to go
            keep = max(result.labels, key=result.segment_pixel_count)
            prune_segments(
                result,
                lambda label: label != keep and result.segment_pixel_count(label) < threshold,
                mean_dissimilarity(result),
            )

        audit_result(result, phase="cli")
        view = SegmentView(result)

        labels = view.labels
        np.savez(
            output_path,
            labels=result.label_map,
            segment_labels=np.asarray(labels, dtype=np.int64),
            pixel_counts=np.asarray([view.pixel_count(l) for l in labels], dtype=np.int64),
            means=np.asarray([view.mean(l) for l in labels], dtype=np.float64),
        )
        print(f"Segments: {len(view)}")
        print(f"Saved to: {output_path}")

        if parsed_args.graph_json:
            with open(parsed_args.graph_json, 'w') as f:
                json.dump(_graph_to_json(view, result), f, indent=2)
            print(f"Adjacency graph saved to: {parsed_args.graph_json}")

        return 0

    except (SegmentationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
