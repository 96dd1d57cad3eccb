import logging

import numpy as np
import pandas as pd
import pytest

from tripdist.config import CalibrationConfig
from tripdist.distribution.calibration import (
    calibrate_beta,
    evaluate_beta,
    initial_beta,
    observed_marginals,
)
from tripdist.exceptions import ConfigurationError


def _two_zone_records() -> pd.DataFrame:
    # Flow-weighted mean travel time is (5 * 70 + 30 * 30) / 100 = 12.5 minutes.
    return pd.DataFrame(
        {
            "origin": ["a", "a", "b", "b"],
            "destination": ["a", "b", "a", "b"],
            "observed_flow": [35.0, 15.0, 15.0, 35.0],
            "travel_time": [5.0, 30.0, 30.0, 5.0],
        }
    )


def _three_zone_records() -> pd.DataFrame:
    times = [[5.0, 10.0, 20.0], [10.0, 5.0, 15.0], [20.0, 15.0, 5.0]]
    flows = [[20.0, 8.0, 2.0], [9.0, 25.0, 6.0], [3.0, 5.0, 22.0]]
    zone_ids = ["a", "b", "c"]
    records = [
        (origin, destination, flows[i][j], times[i][j])
        for i, origin in enumerate(zone_ids)
        for j, destination in enumerate(zone_ids)
    ]
    return pd.DataFrame(records, columns=["origin", "destination", "observed_flow", "travel_time"])


def _sharp_two_zone_records() -> pd.DataFrame:
    # Mean trip length reacts so strongly to beta that plain proportional steps overshoot.
    return pd.DataFrame(
        {
            "origin": ["a", "a", "b", "b"],
            "destination": ["a", "b", "a", "b"],
            "observed_flow": [49.5, 0.5, 0.5, 49.5],
            "travel_time": [0.1, 10.0, 10.0, 0.1],
        }
    )


def _config(**overrides) -> CalibrationConfig:
    options = {
        "balancing_tolerance": 1e-8,
        "balancing_max_iterations": 500,
        "calibration_tolerance": 0.01,
        "calibration_max_iterations": 50,
    }
    options.update(overrides)
    return CalibrationConfig(**options)


def test_initial_beta_is_inverse_weighted_mean_time():
    records = _two_zone_records()
    assert initial_beta(records, _config()) == pytest.approx(0.08)


def test_observed_marginals_sum_observed_flows():
    records = _two_zone_records().iloc[:3]
    zones = observed_marginals(records, _config()).set_index("zone_id")
    assert zones.loc["a", "production"] == pytest.approx(50.0)
    assert zones.loc["b", "production"] == pytest.approx(15.0)
    assert zones.loc["a", "attraction"] == pytest.approx(50.0)
    assert zones.loc["b", "attraction"] == pytest.approx(15.0)


def test_calibration_matches_observed_mean_trip_length():
    result = calibrate_beta(_two_zone_records(), _config())

    assert result.initial_beta == pytest.approx(0.08)
    assert result.observed_mean_trip_length == pytest.approx(12.5)
    assert result.converged
    assert abs(result.model_mean_trip_length - 12.5) / 12.5 < 0.01
    assert result.diagnostics.achieved_error < 0.01
    # Exact solution of the symmetric two-zone case: 35 / 15 = exp(25 * beta).
    assert result.beta == pytest.approx(np.log(35.0 / 15.0) / 25.0, abs=0.003)
    assert result.balancing.converged


def test_calibration_history_tracks_each_iteration():
    result = calibrate_beta(_two_zone_records(), _config())
    history = result.history

    assert len(history) == result.diagnostics.iterations
    assert history["beta"].iloc[0] == pytest.approx(0.08)
    assert history["beta"].iloc[-1] == pytest.approx(result.beta)
    assert history["relative_error"].iloc[-1] == pytest.approx(result.diagnostics.achieved_error)
    assert (history["beta"] > 0).all()


def test_calibration_from_explicit_start_below_solution():
    result = calibrate_beta(_two_zone_records(), _config(initial_beta=0.02))

    assert result.initial_beta == pytest.approx(0.02)
    assert result.converged
    assert abs(result.model_mean_trip_length - 12.5) / 12.5 < 0.01


def test_calibration_flows_keep_observed_marginals():
    records = _three_zone_records()
    result = calibrate_beta(records, _config())

    assert result.converged
    observed_rows = records.groupby("origin")["observed_flow"].sum()
    model_rows = result.flows.groupby("origin")["flow"].sum()
    assert np.allclose(model_rows.sort_index(), observed_rows.sort_index(), rtol=1e-6)
    assert "travel_time" in result.flows.columns


def test_calibration_iteration_cap_reports_non_convergence():
    result = calibrate_beta(_two_zone_records(), _config(calibration_max_iterations=1))

    assert not result.converged
    assert result.diagnostics.iterations == 1
    assert result.beta == pytest.approx(0.08)
    assert not result.flows.empty
    assert result.diagnostics.achieved_error > 0.01


def test_overshooting_steps_fall_back_to_bracket_midpoint():
    records = _sharp_two_zone_records()
    result = calibrate_beta(records, _config(calibration_max_iterations=100))
    history = result.history

    assert result.converged
    assert result.observed_mean_trip_length == pytest.approx(0.199)
    assert result.beta == pytest.approx(np.log(99.0) / 9.9, rel=0.01)
    assert (history["beta"] > 0).all()
    proportional = history["beta"] * history["mean_trip_length"] / result.observed_mean_trip_length
    assert not np.allclose(history["beta"].iloc[1:].to_numpy(), proportional.iloc[:-1].to_numpy())


def test_start_with_vanishing_friction_recovers():
    # exp(-500 * t) underflows to zero for every pair, leaving no modelled trips.
    result = calibrate_beta(_two_zone_records(), _config(initial_beta=500.0, calibration_max_iterations=60))
    history = result.history

    assert np.isnan(history["mean_trip_length"].iloc[0])
    assert history["beta"].iloc[1] == pytest.approx(250.0)
    assert (history["beta"] > 0).all()
    assert result.converged
    assert result.beta == pytest.approx(np.log(35.0 / 15.0) / 25.0, abs=0.003)


def test_unconverged_balancing_blocks_calibration_convergence(caplog):
    config = _config(balancing_tolerance=1e-12, balancing_max_iterations=1, calibration_tolerance=5.0)
    with caplog.at_level(logging.WARNING, logger="tripdist.distribution.calibration"):
        result = calibrate_beta(_three_zone_records(), config)

    assert not result.balancing.converged
    assert not result.converged
    assert result.diagnostics.iterations == 1
    assert "balancing did not converge" in caplog.text


def test_mean_trip_length_decreases_with_beta():
    records = _three_zone_records()
    config = _config(balancing_tolerance=1e-10, balancing_max_iterations=2000)
    betas = np.linspace(0.02, 0.3, 8)
    means = [evaluate_beta(records, beta, config).mean_trip_length for beta in betas]
    assert np.all(np.diff(means) < 0)


def test_zero_observed_flows_are_rejected():
    records = _two_zone_records()
    records["observed_flow"] = 0.0
    with pytest.raises(ValueError):
        calibrate_beta(records, _config())


def test_missing_calibration_columns_raise_configuration_error():
    records = _two_zone_records().drop(columns=["travel_time"])
    with pytest.raises(ConfigurationError):
        calibrate_beta(records, _config())


def test_invalid_calibration_options_are_rejected():
    with pytest.raises(ConfigurationError):
        _config(calibration_tolerance=0.0)
    with pytest.raises(ConfigurationError):
        _config(calibration_max_iterations=0)
    with pytest.raises(ConfigurationError):
        _config(balancing_max_iterations=0)
