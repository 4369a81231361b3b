"""Tests for result auditing."""
import logging
import numpy as np

from segmerge.types import LabeledResult, RegionStats
from segmerge.debug_utils import audit_result, is_consistent


class TestAuditResult:
    """Test invariant auditing."""

    def test_consistent_result(self, scenario_a):
        audit = audit_result(scenario_a)

        assert audit["total_segments"] == 3
        assert audit["total_pixels"] == 16
        assert audit["counted_pixels"] == 16
        assert audit["smallest_segment"] == 4
        assert audit["largest_segment"] == 8
        assert is_consistent(audit)

    def test_count_mismatch(self, scenario_a, caplog):
        scenario_a.stats[2] = RegionStats(label=2, pixel_count=7, mean_value=2.0)

        with caplog.at_level(logging.WARNING, logger="segmerge.debug_utils"):
            audit = audit_result(scenario_a, phase="tampered")

        assert audit["count_mismatches"] == [2]
        assert audit["counted_pixels"] == 15
        assert not is_consistent(audit)
        assert "pixel_count=7" in caplog.text

    def test_missing_statistics(self, scenario_a):
        del scenario_a.stats[3]

        audit = audit_result(scenario_a)

        assert audit["missing_stats"] == [3]
        assert not is_consistent(audit)

    def test_stale_statistics(self, scenario_a):
        scenario_a.label_map[scenario_a.label_map == 3] = 1

        audit = audit_result(scenario_a)

        assert audit["missing_in_map"] == [3]
        assert audit["count_mismatches"] == [1]
        assert not is_consistent(audit)

    def test_empty_result(self):
        result = LabeledResult.from_label_map(np.zeros((0, 4), dtype=np.int64), np.zeros((0, 4)))

        audit = audit_result(result)

        assert audit["total_segments"] == 0
        assert audit["smallest_segment"] is None
        assert is_consistent(audit)

    def test_summary_logged(self, scenario_a, caplog):
        with caplog.at_level(logging.INFO, logger="segmerge.debug_utils"):
            audit_result(scenario_a, phase="pruning")
        assert "Result audit (pruning): 3 segments" in caplog.text
