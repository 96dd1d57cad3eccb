"""Doubly-constrained gravity distribution balanced by iterative proportional fitting."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from tripdist.config import BalancingConfig
from tripdist.exceptions import ConfigurationError

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvergenceDiagnostics:
    """Outcome of an iterative procedure."""

    iterations: int
    converged: bool
    achieved_error: float

    def as_dict(self) -> Dict[str, object]:
        return {
            "iterations": self.iterations,
            "converged": self.converged,
            "achieved_error": self.achieved_error,
        }


@dataclass
class BalancingResult:
    """Estimated flows, one per friction record, with convergence diagnostics.

    The balancing factors are exposed for inspection and for explicitly
    warm-starting a later call; the balancer keeps no state of its own.
    """

    flows: pd.DataFrame
    diagnostics: ConvergenceDiagnostics
    origin_factors: pd.Series
    destination_factors: pd.Series

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged


@dataclass
class RecordIndex:
    """Origin- and destination-indexed grouping of friction records.

    Zone ids are mapped to dense integer codes so every per-zone reduction is
    a grouped sum over the records of that zone.
    """

    origin_codes: np.ndarray
    dest_codes: np.ndarray
    origin_ids: pd.Index
    dest_ids: pd.Index

    @classmethod
    def from_records(cls, origins: pd.Series, destinations: pd.Series) -> "RecordIndex":
        origin_codes, origin_ids = pd.factorize(origins)
        dest_codes, dest_ids = pd.factorize(destinations)
        return cls(origin_codes, dest_codes, pd.Index(origin_ids), pd.Index(dest_ids))

    def origin_sums(self, values: np.ndarray) -> np.ndarray:
        return np.bincount(self.origin_codes, weights=values, minlength=len(self.origin_ids))

    def dest_sums(self, values: np.ndarray) -> np.ndarray:
        return np.bincount(self.dest_codes, weights=values, minlength=len(self.dest_ids))


def require_columns(df: pd.DataFrame, columns: Sequence[str], label: str) -> None:
    """Raise :class:`ConfigurationError` when ``df`` lacks any of ``columns``."""

    missing = [column for column in columns if column not in df.columns]
    if missing:
        raise ConfigurationError(f"{label} missing required columns: {missing}")


def check_stopping_rule(tolerance: float, max_iterations: int) -> None:
    if not tolerance > 0:
        raise ConfigurationError(f"tolerance must be positive, got {tolerance}")
    if max_iterations <= 0:
        raise ConfigurationError(f"max_iterations must be positive, got {max_iterations}")


def balance_flows(
    zones: pd.DataFrame,
    friction: pd.DataFrame,
    config: Optional[BalancingConfig] = None,
    initial_factors: Optional[pd.Series] = None,
) -> BalancingResult:
    """Distribute zone productions and attractions over the friction records.

    Flows follow ``T_ij = A_i * O_i * B_j * D_j * F_ij`` with the balancing
    factors alternately updated until every row and column sum is within
    ``config.tolerance`` (relative) of its target, or ``config.max_iterations``
    is exhausted. Non-convergence is reported in ``diagnostics``.

    ``initial_factors`` optionally seeds the destination factors ``B_j``
    (indexed by zone id); destinations not covered, and seeds that are not
    positive and finite, start at one.
    """

    config = config or BalancingConfig()
    check_stopping_rule(config.tolerance, config.max_iterations)
    totals = zone_totals(zones, config.zone_id, config.origin_total_col, config.dest_total_col)
    records = _friction_records(friction, config)

    index = RecordIndex.from_records(records[config.friction_origin_col], records[config.friction_dest_col])
    friction_values = records[config.friction_value_col].to_numpy(dtype=float)
    origin_totals = _lookup_totals(totals["production"], index.origin_ids, "origin")
    dest_totals = _lookup_totals(totals["attraction"], index.dest_ids, "destination")
    _warn_if_unbalanced(origin_totals, dest_totals, config.tolerance)

    b = _seed_factors(initial_factors, index.dest_ids)
    active_rows, active_cols = _active_zones(index, friction_values, origin_totals, dest_totals)
    a = np.zeros(len(index.origin_ids))
    flows = np.zeros(len(records))
    error = float("inf")
    iterations = 0
    converged = False
    for iteration in range(1, config.max_iterations + 1):
        a = _reciprocal(index.origin_sums((b * dest_totals)[index.dest_codes] * friction_values))
        b = _reciprocal(index.dest_sums((a * origin_totals)[index.origin_codes] * friction_values))
        flows = (a * origin_totals)[index.origin_codes] * (b * dest_totals)[index.dest_codes] * friction_values
        error = _max_marginal_error(index, flows, origin_totals, dest_totals, active_rows, active_cols)
        iterations = iteration
        LOG.debug("Balancing iteration %d: max marginal error %.3g", iteration, error)
        if error < config.tolerance:
            converged = True
            break

    degenerate = int(((origin_totals > 0) & ~active_rows).sum() + ((dest_totals > 0) & ~active_cols).sum())
    if degenerate:
        LOG.debug("%d zones have no reachable counterpart and carry no flow.", degenerate)
    if converged:
        LOG.info("Balancing converged after %d iterations (max marginal error %.3g).", iterations, error)
    else:
        LOG.warning(
            "Balancing did not converge after %d iterations (max marginal error %.3g, tolerance %.3g).",
            iterations,
            error,
            config.tolerance,
        )

    result = records[[config.friction_origin_col, config.friction_dest_col]].reset_index(drop=True)
    result[config.flow_col] = flows
    return BalancingResult(
        flows=result,
        diagnostics=ConvergenceDiagnostics(iterations=iterations, converged=converged, achieved_error=error),
        origin_factors=pd.Series(a, index=index.origin_ids, name="origin_factor"),
        destination_factors=pd.Series(b, index=index.dest_ids, name="destination_factor"),
    )


def zone_totals(zones: pd.DataFrame, zone_col: str, production_col: str, attraction_col: str) -> pd.DataFrame:
    """Validate a zone totals table; returns ``production`` and ``attraction`` indexed by zone id."""

    require_columns(zones, [zone_col, production_col, attraction_col], "Zone totals")
    if zones[zone_col].isna().any():
        raise ValueError("Zone totals contain missing zone ids.")
    duplicated = zones[zone_col].duplicated()
    if duplicated.any():
        raise ValueError(f"Zone totals contain duplicate zone ids: {zones.loc[duplicated, zone_col].tolist()}")
    totals = pd.DataFrame(
        {
            "production": zones[production_col].to_numpy(dtype=float),
            "attraction": zones[attraction_col].to_numpy(dtype=float),
        },
        index=pd.Index(zones[zone_col]),
    )
    if totals.isna().any().any():
        raise ValueError("Zone totals contain missing values.")
    if (totals < 0).any().any():
        raise ValueError("Zone totals must be nonnegative.")
    return totals


def _friction_records(friction: pd.DataFrame, config: BalancingConfig) -> pd.DataFrame:
    origin_col, dest_col, value_col = (
        config.friction_origin_col,
        config.friction_dest_col,
        config.friction_value_col,
    )
    require_columns(friction, [origin_col, dest_col, value_col], "Friction table")
    records = friction[[origin_col, dest_col, value_col]]
    if records[[origin_col, dest_col]].isna().any().any():
        raise ValueError("Friction table contains missing zone ids.")
    values = records[value_col].astype(float)
    if values.isna().any():
        raise ValueError("Friction table contains missing friction values.")
    if (values < 0).any():
        raise ValueError("Friction values must be nonnegative.")
    if records.duplicated(subset=[origin_col, dest_col]).any():
        raise ValueError("Friction table contains duplicate origin-destination pairs.")
    return records


def _lookup_totals(totals: pd.Series, zone_ids: pd.Index, side: str) -> np.ndarray:
    aligned = totals.reindex(zone_ids)
    unknown = aligned.isna()
    if unknown.any():
        LOG.warning(
            "%d %s zones in the friction table have no totals and receive no flow: %s",
            int(unknown.sum()),
            side,
            list(zone_ids[unknown.to_numpy()][:10]),
        )
    return aligned.fillna(0.0).to_numpy(dtype=float)


def _warn_if_unbalanced(origin_totals: np.ndarray, dest_totals: np.ndarray, tolerance: float) -> None:
    total_out = origin_totals.sum()
    total_in = dest_totals.sum()
    if not np.isclose(total_out, total_in, rtol=tolerance, atol=0.0):
        LOG.warning(
            "Production total %.6g differs from attraction total %.6g; marginals cannot both be met.",
            total_out,
            total_in,
        )


def _seed_factors(initial_factors: Optional[pd.Series], zone_ids: pd.Index) -> np.ndarray:
    if initial_factors is None:
        return np.ones(len(zone_ids))
    seed = initial_factors.reindex(zone_ids).to_numpy(dtype=float)
    # A zero seed would pin the zone and its counterparts at zero flow.
    return np.where(np.isfinite(seed) & (seed > 0), seed, 1.0)


def _active_zones(
    index: RecordIndex,
    friction_values: np.ndarray,
    origin_totals: np.ndarray,
    dest_totals: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Zones with a positive total and at least one usable record to a positive counterpart."""

    usable = friction_values > 0
    reaches_dest = usable & (dest_totals[index.dest_codes] > 0)
    reaches_origin = usable & (origin_totals[index.origin_codes] > 0)
    active_rows = (origin_totals > 0) & (index.origin_sums(reaches_dest.astype(float)) > 0)
    active_cols = (dest_totals > 0) & (index.dest_sums(reaches_origin.astype(float)) > 0)
    return active_rows, active_cols


def _reciprocal(sums: np.ndarray) -> np.ndarray:
    # Zones without reachable mass get a zero factor instead of a division.
    return np.divide(1.0, sums, out=np.zeros_like(sums), where=sums > 0)


def _max_marginal_error(
    index: RecordIndex,
    flows: np.ndarray,
    origin_totals: np.ndarray,
    dest_totals: np.ndarray,
    row_mask: np.ndarray,
    col_mask: np.ndarray,
) -> float:
    row_error = np.abs(index.origin_sums(flows)[row_mask] - origin_totals[row_mask]) / origin_totals[row_mask]
    col_error = np.abs(index.dest_sums(flows)[col_mask] - dest_totals[col_mask]) / dest_totals[col_mask]
    deviations = np.concatenate([row_error, col_error])
    return float(deviations.max()) if deviations.size else 0.0


__all__ = [
    "BalancingResult",
    "ConvergenceDiagnostics",
    "RecordIndex",
    "balance_flows",
    "check_stopping_rule",
    "require_columns",
    "zone_totals",
]
