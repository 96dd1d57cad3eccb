"""Trip length aggregation for flow tables."""
from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd


def mean_trip_length(flows: np.ndarray, times: np.ndarray) -> float:
    """Flow-weighted average travel time; NaN when there is no flow."""

    flows = np.asarray(flows, dtype=float)
    times = np.asarray(times, dtype=float)
    total = flows.sum()
    if total <= 0:
        return float("nan")
    return float((flows * times).sum() / total)


def trip_length_distribution(
    flows: np.ndarray,
    times: np.ndarray,
    bin_width: float,
    max_time: Optional[float] = None,
) -> pd.DataFrame:
    """Flow-weighted trip length frequency distribution in fixed-width bins.

    Bins start at zero and cover ``max_time`` (default: the longest travel
    time carrying flow). Travel times beyond ``max_time`` fall in the last bin.
    """

    if bin_width <= 0:
        raise ValueError("bin_width must be positive.")
    flows = np.asarray(flows, dtype=float)
    times = np.asarray(times, dtype=float)
    if max_time is None:
        max_time = float(times[flows > 0].max()) if (flows > 0).any() else bin_width
    edges = np.arange(0.0, max_time + bin_width, bin_width, dtype=float)
    if len(edges) < 2:
        edges = np.array([0.0, bin_width])
    clipped = np.minimum(times, edges[-1])
    weights, _ = np.histogram(clipped, bins=edges, weights=flows)
    total = weights.sum()
    share = weights / total if total > 0 else np.zeros_like(weights)
    return pd.DataFrame(
        {
            "bin_start": edges[:-1],
            "bin_end": edges[1:],
            "flow": weights,
            "share": share,
        }
    )


def coincidence_ratio(observed: pd.DataFrame, modelled: pd.DataFrame) -> float:
    """Overlap of two trip length distributions, 1.0 for identical shares."""

    merged = observed[["bin_start", "share"]].merge(
        modelled[["bin_start", "share"]],
        on="bin_start",
        how="outer",
        suffixes=("_observed", "_modelled"),
    ).fillna(0.0)
    lower = np.minimum(merged["share_observed"], merged["share_modelled"]).sum()
    upper = np.maximum(merged["share_observed"], merged["share_modelled"]).sum()
    if upper <= 0:
        return float("nan")
    return float(lower / upper)
