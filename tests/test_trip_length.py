import numpy as np
import pytest

from tripdist.metrics import coincidence_ratio, mean_trip_length, trip_length_distribution


def test_mean_trip_length_is_flow_weighted():
    assert mean_trip_length(np.array([35.0, 15.0, 15.0, 35.0]), np.array([5.0, 30.0, 30.0, 5.0])) == pytest.approx(12.5)


def test_mean_trip_length_without_flow_is_nan():
    assert np.isnan(mean_trip_length(np.zeros(3), np.array([1.0, 2.0, 3.0])))


def test_trip_length_distribution_shares():
    tlfd = trip_length_distribution(
        np.array([10.0, 30.0, 60.0]),
        np.array([2.0, 7.0, 12.0]),
        bin_width=5.0,
    )
    assert list(tlfd.columns) == ["bin_start", "bin_end", "flow", "share"]
    assert tlfd["flow"].tolist() == pytest.approx([10.0, 30.0, 60.0])
    assert tlfd["share"].sum() == pytest.approx(1.0)


def test_times_beyond_max_fall_in_last_bin():
    tlfd = trip_length_distribution(np.array([1.0, 1.0]), np.array([1.0, 50.0]), bin_width=5.0, max_time=10.0)
    assert len(tlfd) == 2
    assert tlfd["flow"].iloc[-1] == pytest.approx(1.0)


def test_coincidence_ratio_bounds():
    times = np.array([2.0, 7.0])
    first = trip_length_distribution(np.array([1.0, 0.0]), times, bin_width=5.0, max_time=10.0)
    second = trip_length_distribution(np.array([0.0, 1.0]), times, bin_width=5.0, max_time=10.0)
    assert coincidence_ratio(first, first) == pytest.approx(1.0)
    assert coincidence_ratio(first, second) == pytest.approx(0.0)
