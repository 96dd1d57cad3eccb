"""Calibration of the exponential deterrence parameter against observed mean trip length."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from tripdist.config import CalibrationConfig
from tripdist.distribution.balancing import (
    BalancingResult,
    ConvergenceDiagnostics,
    balance_flows,
    check_stopping_rule,
    require_columns,
)
from tripdist.distribution.deterrence import exponential_friction
from tripdist.metrics.trip_length import mean_trip_length

LOG = logging.getLogger(__name__)


@dataclass
class BetaEvaluation:
    """Balanced flows and resulting mean trip length for one trial β."""

    beta: float
    balancing: BalancingResult
    mean_trip_length: float


@dataclass
class CalibrationResult:
    """Calibrated β with the flows it produces and the search diagnostics."""

    beta: float
    flows: pd.DataFrame
    diagnostics: ConvergenceDiagnostics
    initial_beta: float
    observed_mean_trip_length: float
    model_mean_trip_length: float
    balancing: ConvergenceDiagnostics
    history: pd.DataFrame

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged


def observed_marginals(records: pd.DataFrame, config: CalibrationConfig) -> pd.DataFrame:
    """Zone totals taken as row and column sums of the observed flows."""

    production = records.groupby(config.friction_origin_col)[config.observed_flow_col].sum()
    attraction = records.groupby(config.friction_dest_col)[config.observed_flow_col].sum()
    zones = pd.concat(
        [production.rename("production"), attraction.rename("attraction")],
        axis=1,
    ).fillna(0.0)
    return zones.rename_axis("zone_id").reset_index()


def initial_beta(records: pd.DataFrame, config: CalibrationConfig) -> float:
    """Inverse of the flow-weighted mean observed travel time."""

    flows = records[config.observed_flow_col].to_numpy(dtype=float)
    times = records[config.travel_time_col].to_numpy(dtype=float)
    return float(flows.sum() / (flows * times).sum())


def evaluate_beta(
    records: pd.DataFrame,
    beta: float,
    config: Optional[CalibrationConfig] = None,
    initial_factors: Optional[pd.Series] = None,
) -> BetaEvaluation:
    """Balance ``exp(-beta * t)`` friction under the observed marginals."""

    config = config or CalibrationConfig()
    _validate_records(records, config)
    return _evaluate(records, observed_marginals(records, config), beta, config, initial_factors)


def calibrate_beta(records: pd.DataFrame, config: Optional[CalibrationConfig] = None) -> CalibrationResult:
    """Search for the β whose modelled mean trip length matches the observed one.

    Each iteration balances ``exp(-beta * t)`` friction under the observed
    marginals and rescales ``beta`` by ``model / observed`` mean trip length.
    Every evaluated β bounds the solution from one side; a step leaving those
    bounds is replaced by their midpoint. Running out of iterations is
    reported through ``diagnostics.converged``.
    """

    config = config or CalibrationConfig()
    check_stopping_rule(config.calibration_tolerance, config.calibration_max_iterations)
    _validate_records(records, config)

    zones = observed_marginals(records, config)
    observed_flows = records[config.observed_flow_col].to_numpy(dtype=float)
    times = records[config.travel_time_col].to_numpy(dtype=float)
    target = mean_trip_length(observed_flows, times)
    start = config.initial_beta if config.initial_beta is not None else initial_beta(records, config)
    LOG.info("Calibrating beta from %.6g against observed mean trip length %.6g.", start, target)

    beta = start
    lower, upper = 0.0, np.inf
    factors: Optional[pd.Series] = None
    evaluation: Optional[BetaEvaluation] = None
    history: List[Dict[str, object]] = []
    error = float("inf")
    converged = False
    for iteration in range(1, config.calibration_max_iterations + 1):
        evaluation = _evaluate(records, zones, beta, config, factors)
        factors = evaluation.balancing.destination_factors
        model = evaluation.mean_trip_length
        error = abs(model - target) / target if np.isfinite(model) else float("inf")
        history.append(
            {
                "iteration": iteration,
                "beta": beta,
                "mean_trip_length": model,
                "relative_error": error,
                "balancing_converged": evaluation.balancing.converged,
                "balancing_iterations": evaluation.balancing.diagnostics.iterations,
            }
        )
        LOG.debug("Calibration iteration %d: beta=%.6g mean trip length=%.6g error=%.3g", iteration, beta, model, error)
        if error < config.calibration_tolerance:
            converged = evaluation.balancing.converged
            if not converged:
                LOG.warning(
                    "Mean trip length matched at beta=%.6g but balancing did not converge; "
                    "raise balancing_max_iterations.",
                    beta,
                )
            break
        if np.isfinite(model) and model > target:
            lower = beta
        else:
            upper = beta
        beta = _next_beta(beta, model, target, lower, upper)

    diagnostics = ConvergenceDiagnostics(
        iterations=len(history),
        converged=converged,
        achieved_error=error,
    )
    if converged:
        LOG.info("Calibration converged after %d iterations: beta=%.6g.", diagnostics.iterations, evaluation.beta)
    else:
        LOG.warning(
            "Calibration did not converge after %d iterations (relative error %.3g, tolerance %.3g).",
            diagnostics.iterations,
            error,
            config.calibration_tolerance,
        )

    flows = evaluation.balancing.flows.copy()
    flows[config.travel_time_col] = times
    return CalibrationResult(
        beta=evaluation.beta,
        flows=flows,
        diagnostics=diagnostics,
        initial_beta=start,
        observed_mean_trip_length=target,
        model_mean_trip_length=evaluation.mean_trip_length,
        balancing=evaluation.balancing.diagnostics,
        history=pd.DataFrame(history),
    )


def _evaluate(
    records: pd.DataFrame,
    zones: pd.DataFrame,
    beta: float,
    config: CalibrationConfig,
    initial_factors: Optional[pd.Series],
) -> BetaEvaluation:
    times = records[config.travel_time_col].to_numpy(dtype=float)
    friction = records[[config.friction_origin_col, config.friction_dest_col]].copy()
    friction["friction"] = exponential_friction(times, beta)
    balanced = balance_flows(zones, friction, config.balancing(), initial_factors=initial_factors)
    model = mean_trip_length(balanced.flows[config.flow_col].to_numpy(), times)
    return BetaEvaluation(beta=beta, balancing=balanced, mean_trip_length=model)


def _next_beta(beta: float, model: float, target: float, lower: float, upper: float) -> float:
    if np.isfinite(model) and model > 0:
        proposal = beta * model / target
        if lower < proposal < upper:
            return proposal
    # Only reached after a step that lowered upper, so the bracket is finite.
    return 0.5 * (lower + upper)


def _validate_records(records: pd.DataFrame, config: CalibrationConfig) -> None:
    require_columns(
        records,
        [
            config.friction_origin_col,
            config.friction_dest_col,
            config.observed_flow_col,
            config.travel_time_col,
        ],
        "Calibration records",
    )
    values = records[[config.observed_flow_col, config.travel_time_col]].astype(float)
    if values.isna().any().any():
        raise ValueError("Calibration records contain missing flows or travel times.")
    if (values < 0).any().any():
        raise ValueError("Observed flows and travel times must be nonnegative.")
    flows = values[config.observed_flow_col]
    if flows.sum() <= 0:
        raise ValueError("Observed flows sum to zero; cannot calibrate.")
    if (flows * values[config.travel_time_col]).sum() <= 0:
        raise ValueError("Flow-weighted travel time is zero; cannot calibrate.")


__all__ = [
    "BetaEvaluation",
    "CalibrationResult",
    "calibrate_beta",
    "evaluate_beta",
    "initial_beta",
    "observed_marginals",
]
