"""
Unit tests for Bundle Adjustment statistics
"""

import pytest
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from panoba.core.panorama_ba.statistics import EParameter, EXPORT_HEADER, ParameterState, Statistics


def filled_statistics():
    stats = Statistics()
    stats.add_state(EParameter.POSE, ParameterState.REFINED)
    stats.add_state(EParameter.POSE, ParameterState.REFINED)
    stats.add_state(EParameter.POSE, ParameterState.CONSTANT)
    stats.add_state(EParameter.INTRINSIC, ParameterState.IGNORED)
    for distance in [-1, 0, 1, 1, 4, 10, 12]:
        stats.add_camera_distance(distance)
    stats.time = 0.5
    stats.nb_residual_blocks = 40
    stats.nb_successful_iterations = 6
    stats.nb_unsuccessful_iterations = 1
    stats.rmse_initial = 3.25
    stats.rmse_final = 0.125
    return stats


class TestCounters:

    def test_fresh_statistics_are_zero(self):
        stats = Statistics()
        for parameter in EParameter:
            for state in ParameterState:
                assert stats.get_state_count(parameter, state) == 0
        assert not stats.nb_cameras_per_distance

    def test_add_state(self):
        stats = filled_statistics()
        assert stats.get_state_count(EParameter.POSE, ParameterState.REFINED) == 2
        assert stats.get_state_count(EParameter.POSE, ParameterState.CONSTANT) == 1
        assert stats.get_state_count(EParameter.INTRINSIC, ParameterState.IGNORED) == 1
        assert stats.get_state_count(EParameter.INTRINSIC, ParameterState.REFINED) == 0


class TestExport:
    """Test the semicolon separated export"""

    def test_header(self):
        fields = EXPORT_HEADER.rstrip("\n").split(";")
        assert fields[0] == "Time/BA(s)"
        assert fields[11] == "FinalRMSE"
        assert fields[12] == "d=-1"
        assert fields[-2] == "d=10+"
        assert fields[-1] == ""

    def test_row(self):
        row = filled_statistics().export_row()
        assert row.endswith(";\n")

        fields = row.rstrip("\n").split(";")[:-1]
        assert len(fields) == len(EXPORT_HEADER.rstrip("\n").split(";")[:-1])
        assert fields[:12] == ["0.5", "2", "1", "0", "0", "0", "1", "40", "6", "1", "3.25", "0.125"]
        # d=-1 .. d=9
        assert fields[12:23] == ["1", "1", "2", "0", "0", "1", "0", "0", "0", "0", "0"]
        # d=10+
        assert fields[23] == "2"

    def test_header_written_once(self, tmp_path):
        stats = filled_statistics()
        assert stats.export_to_file(tmp_path, "stats.csv")
        assert stats.export_to_file(tmp_path, "stats.csv")

        lines = (tmp_path / "stats.csv").read_text().splitlines()
        assert len(lines) == 3
        assert lines[0] + "\n" == EXPORT_HEADER
        assert lines[1] == lines[2]

    def test_unwritable_folder(self, tmp_path):
        assert not filled_statistics().export_to_file(tmp_path / "missing", "stats.csv")


class TestShow:

    def test_local_strategy_report(self, caplog):
        with caplog.at_level("INFO"):
            filled_statistics().show()
        assert "local strategy enabled: yes" in caplog.text
        assert "not connected: 1 cameras" in caplog.text
        assert "D > 1: 3 cameras" in caplog.text
        assert "# residual blocks: 40" in caplog.text

    def test_without_distances(self, caplog):
        with caplog.at_level("INFO"):
            Statistics().show()
        assert "local strategy enabled: no" in caplog.text
