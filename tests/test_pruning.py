"""Tests for segment pruning by least-difference merging."""
import pytest
import numpy as np
from scipy.ndimage import binary_dilation

from segmerge.types import LabeledResult, RegionStats, InvalidLabel, InvalidParameter, NoNeighbor, InconsistentResult
from segmerge.adjacency import build_adjacency_graph, mean_dissimilarity
from segmerge import pruning
from segmerge.pruning import prune_segments, remove_segment


SCENARIO_A_EXPECTED = np.array([
    [1, 1, 2, 2],
    [1, 1, 2, 2],
    [2, 2, 2, 2],
    [2, 2, 2, 2],
])


def snapshot(result):
    return result.label_map.copy(), {l: (s.pixel_count, s.mean_value) for l, s in result.stats.items()}


def assert_unchanged(result, before):
    labels, stats = before
    np.testing.assert_array_equal(result.label_map, labels)
    assert {l: (s.pixel_count, s.mean_value) for l, s in result.stats.items()} == stats


class TestPruneSegments:
    """Test batch removal."""

    def test_scenario_a(self, scenario_a, count_diff):
        """Label 3 joins label 2, whose count gives the lower diff."""
        prune_segments(scenario_a, [3], count_diff)

        np.testing.assert_array_equal(scenario_a.label_map, SCENARIO_A_EXPECTED)
        assert scenario_a.labels == [1, 2]
        assert scenario_a.segment_pixel_count(2) == 12
        assert scenario_a.segment_mean(2) == pytest.approx(28.0 / 12.0)
        scenario_a.check_invariants()

    def test_empty_removal_set(self, scenario_a, count_diff):
        before = snapshot(scenario_a)
        result = prune_segments(scenario_a, [], count_diff)

        assert result is scenario_a
        assert_unchanged(scenario_a, before)

    def test_absent_label(self, scenario_a, count_diff):
        before = snapshot(scenario_a)
        with pytest.raises(InvalidLabel):
            prune_segments(scenario_a, [3, 9], count_diff)
        assert_unchanged(scenario_a, before)

    def test_predicate(self, scenario_a, count_diff):
        """Both 4-pixel segments are removed, smallest label first."""
        prune_segments(scenario_a, lambda label: scenario_a.segment_pixel_count(label) < 5, count_diff)

        assert scenario_a.labels == [2]
        assert np.all(scenario_a.label_map == 2)
        assert scenario_a.segment_pixel_count(2) == 16
        assert scenario_a.segment_mean(2) == pytest.approx((4 * 1 + 8 * 2 + 4 * 3) / 16.0)

    def test_default_tie_break_lowest_label(self, scenario_a):
        prune_segments(scenario_a, [3], lambda r, n: 0.0)
        assert scenario_a.label_at((0, 3)) == 1

    def test_custom_tie_break(self, scenario_a):
        prune_segments(scenario_a, [3], lambda r, n: 0.0, tie_break=lambda a, b: b - a)
        assert scenario_a.label_at((0, 3)) == 2

    def test_chained_merges_resolved(self):
        """A target absorbed by a pending target follows it to the final owner."""
        labels = np.array([[1, 1, 1, 2, 3]])
        result = LabeledResult.from_label_map(labels, np.zeros((1, 5)))

        # Prefer the highest neighbor label: 2 -> 3, then 3 -> 1
        prune_segments(result, [2, 3], lambda r, n: -n)

        np.testing.assert_array_equal(result.label_map, [[1, 1, 1, 1, 1]])
        assert result.labels == [1]
        assert result.segment_pixel_count(1) == 5

    def test_diff_sees_live_counts(self):
        """Stats absorbed earlier in the batch are visible to later diffs."""
        labels = np.array([[1, 2, 3, 4]])
        result = LabeledResult.from_label_map(labels, np.zeros((1, 4)))
        seen = []

        def diff(r, n):
            seen.append((r, n, result.segment_pixel_count(n)))
            return 0.0

        prune_segments(result, [2, 3], diff)

        # 2 joins 1 on the tie, so 1 already holds two pixels when 3 is scored
        assert (2, 1, 1) in seen
        assert (3, 1, 2) in seen
        assert (3, 4, 1) in seen
        np.testing.assert_array_equal(result.label_map, [[1, 1, 1, 4]])

    def test_rollback_on_diff_error(self, scenario_a):
        """A failure on the second target leaves the result untouched."""
        before = snapshot(scenario_a)

        def diff(r, n):
            if r == 3:
                raise RuntimeError("boom")
            return 0.0

        with pytest.raises(RuntimeError):
            prune_segments(scenario_a, [1, 3], diff)
        assert_unchanged(scenario_a, before)

    def test_rollback_on_no_neighbor(self):
        labels = np.array([[1, 2]])
        result = LabeledResult.from_label_map(labels, np.array([[0.0, 1.0]]))
        before = snapshot(result)

        with pytest.raises(NoNeighbor):
            prune_segments(result, [1, 2], lambda r, n: 0.0)
        assert_unchanged(result, before)

    def test_malformed_diff(self, scenario_a):
        before = snapshot(scenario_a)
        with pytest.raises(InvalidParameter):
            prune_segments(scenario_a, [3], lambda r, n: None)
        with pytest.raises(InvalidParameter):
            prune_segments(scenario_a, [3], lambda r, n: float("nan"))
        with pytest.raises(InvalidParameter):
            prune_segments(scenario_a, [3], "diff")
        assert_unchanged(scenario_a, before)

    def test_reuses_graph(self, scenario_a, count_diff):
        graph = build_adjacency_graph(scenario_a)

        prune_segments(scenario_a, [3], count_diff, graph=graph)

        assert graph.vertices == [1, 2]
        assert graph.neighbors(1) == [2]

    def test_restores_given_graph_on_failure(self, scenario_a):
        graph = build_adjacency_graph(scenario_a)

        def diff(r, n):
            if r == 3:
                raise RuntimeError("boom")
            return 0.0

        with pytest.raises(RuntimeError):
            prune_segments(scenario_a, [1, 3], diff, graph=graph)
        assert graph.vertices == [1, 2, 3]
        assert graph.neighbors(1) == [2, 3]

    def test_stale_graph_rejected(self, scenario_a, count_diff, single_region):
        graph = build_adjacency_graph(single_region)
        with pytest.raises(InconsistentResult):
            prune_segments(scenario_a, [3], count_diff, graph=graph)

    def test_conservation(self, block_result):
        total = block_result.total_pixel_count

        prune_segments(block_result, [2, 4, 6, 8], mean_dissimilarity(block_result))

        assert sum(r.pixel_count for r in block_result.stats.values()) == total
        block_result.check_invariants()


class TestRemoveSegment:
    """Test single in-place removal."""

    def test_scenario_a(self, scenario_a, count_diff):
        into = remove_segment(scenario_a, 3, count_diff)

        assert into == 2
        np.testing.assert_array_equal(scenario_a.label_map, SCENARIO_A_EXPECTED)
        assert scenario_a.segment_pixel_count(2) == 12
        scenario_a.check_invariants()

    def test_single_region_has_no_neighbor(self, single_region):
        before = snapshot(single_region)
        with pytest.raises(NoNeighbor):
            remove_segment(single_region, 1, lambda r, n: 0.0)
        assert_unchanged(single_region, before)

    def test_single_region_batch_has_no_neighbor(self, single_region):
        before = snapshot(single_region)
        with pytest.raises(NoNeighbor):
            prune_segments(single_region, [1], lambda r, n: 0.0)
        assert_unchanged(single_region, before)

    def test_absent_label(self, scenario_a, count_diff):
        before = snapshot(scenario_a)
        with pytest.raises(InvalidLabel):
            remove_segment(scenario_a, 5, count_diff)
        assert_unchanged(scenario_a, before)

    def test_diagonal_neighbor_needs_full_connectivity(self):
        labels = np.array([[1, 2], [2, 3]])
        result = LabeledResult.from_label_map(labels, np.zeros((2, 2)))

        # Prefer label 3 whenever it is a candidate
        diff = lambda r, n: 0.0 if n == 3 else 1.0

        face = result.copy()
        assert remove_segment(face, 1, diff, connectivity=1) == 2
        assert remove_segment(result, 1, diff, connectivity=2) == 3


class TestBatchSingleEquivalence:
    """Batch pruning and order-matched single removals group pixels identically."""

    @pytest.mark.parametrize("targets", [[5], [2, 4, 6, 8], [1, 2, 3, 5, 9]])
    def test_same_partition(self, block_result, targets, same_partition):
        batch = block_result.copy()
        single = block_result.copy()

        prune_segments(batch, targets, mean_dissimilarity(batch))
        order = sorted(targets, key=lambda l: (single.segment_pixel_count(l), l))
        for label in order:
            remove_segment(single, label, mean_dissimilarity(single))

        assert same_partition(batch.label_map, single.label_map)
        assert batch.num_segments == single.num_segments
        for label in batch.labels:
            members = batch.label_map == label
            other = int(single.label_map[members][0])
            assert batch.segment_mean(label) == pytest.approx(single.segment_mean(other))


@pytest.fixture
def retag_calls(monkeypatch):
    """Record the shape of every full label-map rewrite."""
    calls = []
    original = pruning._retag

    def counting(label_map, owners):
        calls.append(label_map.shape)
        original(label_map, owners)

    monkeypatch.setattr(pruning, "_retag", counting)
    return calls


class TestMapRewriteCount:
    """Batch pruning rewrites the map once; single removals rewrite it once each."""

    TARGETS = [1, 3, 7, 9]

    def test_batch_rewrites_once(self, block_result, retag_calls):
        prune_segments(block_result, self.TARGETS, mean_dissimilarity(block_result))

        assert retag_calls == [(6, 6)]
        assert block_result.num_segments == 5

    def test_single_removals_rewrite_each_time(self, block_result, retag_calls):
        for label in self.TARGETS:
            remove_segment(block_result, label, mean_dissimilarity(block_result))

        assert retag_calls == [(6, 6)] * len(self.TARGETS)
        assert block_result.num_segments == 5

    def test_failed_batch_does_not_rewrite(self, scenario_a, retag_calls):
        with pytest.raises(NoNeighbor):
            prune_segments(scenario_a, [1, 2, 3], lambda r, n: 0.0)
        assert retag_calls == []

    def test_empty_batch_does_not_rewrite(self, scenario_a, count_diff, retag_calls):
        prune_segments(scenario_a, [], count_diff)
        assert retag_calls == []


class TestLocalNeighborSearch:
    """remove_segment dilates only around the removed segment."""

    def test_dilation_is_cropped(self, monkeypatch):
        labels = np.ones((10, 10), dtype=np.int64)
        labels[4:6, 4:6] = 2
        result = LabeledResult.from_label_map(labels, np.zeros((10, 10)))
        shapes = []
        original = pruning.binary_dilation

        def recording(mask, structure=None):
            shapes.append(mask.shape)
            return original(mask, structure=structure)

        monkeypatch.setattr(pruning, "binary_dilation", recording)

        assert remove_segment(result, 2, lambda r, n: 0.0) == 1
        assert shapes == [(4, 4)]
        assert np.all(result.label_map == 1)

    def test_segment_on_grid_corner(self):
        labels = np.array([
            [3, 3, 1, 1],
            [3, 2, 1, 1],
            [2, 2, 1, 1],
        ])
        result = LabeledResult.from_label_map(labels, labels.astype(float))

        into = remove_segment(result, 3, lambda r, n: abs(r - n))

        assert into == 2
        assert result.label_at((0, 0)) == 2
        assert result.segment_pixel_count(2) == 6
        result.check_invariants()

    def test_non_convex_segment(self):
        """Neighbors inside the bounding box but not touching the segment are ignored."""
        labels = np.array([
            [1, 1, 1, 1],
            [1, 3, 3, 3],
            [1, 3, 3, 3],
            [1, 3, 3, 4],
        ])
        result = LabeledResult.from_label_map(labels, np.zeros((4, 4)))
        seen = []

        def diff(r, n):
            seen.append(n)
            return 0.0

        remove_segment(result, 1, diff)

        assert seen == [3]

    def test_matches_full_grid_dilation(self, block_result):
        """Cropped and full-grid neighbor sets agree for every segment."""
        for label in block_result.labels:
            mask = block_result.label_map == label
            ring = binary_dilation(mask) & ~mask
            expected = sorted(int(n) for n in np.unique(block_result.label_map[ring]))
            seen = []

            def diff(r, n):
                seen.append(n)
                return 0.0

            remove_segment(block_result.copy(), label, diff)
            assert sorted(seen) == expected

    def test_statistics_without_coordinates(self, scenario_a, count_diff):
        scenario_a.stats[7] = RegionStats(label=7, pixel_count=1, mean_value=0.0)

        with pytest.raises(InconsistentResult):
            remove_segment(scenario_a, 7, count_diff)
