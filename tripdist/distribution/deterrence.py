"""Deterrence functions turning travel times into friction values."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from tripdist.config import DeterrenceConfig
from tripdist.distribution.balancing import require_columns

LOG = logging.getLogger(__name__)

# Floor applied to zero travel times by the power-law forms.
MIN_IMPEDANCE = 1e-6


def exponential_friction(times: np.ndarray, beta: float) -> np.ndarray:
    """Negative exponential deterrence ``exp(-beta * t)``."""

    return np.exp(-beta * np.asarray(times, dtype=float))


def power_friction(times: np.ndarray, gamma: float) -> np.ndarray:
    """Power deterrence ``t ** -gamma``."""

    safe = np.maximum(np.asarray(times, dtype=float), MIN_IMPEDANCE)
    return np.power(safe, -gamma)


def gamma_friction(times: np.ndarray, alpha: float, beta: float) -> np.ndarray:
    """Combined (gamma / Tanner) deterrence ``t ** alpha * exp(-beta * t)``."""

    times = np.asarray(times, dtype=float)
    safe = np.maximum(times, MIN_IMPEDANCE)
    return np.power(safe, alpha) * np.exp(-beta * times)


def friction_values(times: np.ndarray, config: DeterrenceConfig) -> np.ndarray:
    """Evaluate the deterrence function selected in ``config``."""

    if config.function == "exponential":
        return exponential_friction(times, config.beta)
    if config.function == "power":
        return power_friction(times, config.gamma)
    return gamma_friction(times, config.alpha, config.beta)


def build_friction_table(skim: pd.DataFrame, config: Optional[DeterrenceConfig] = None) -> pd.DataFrame:
    """Derive a friction table from a travel-time skim.

    Pairs without a travel time are unreachable and dropped. The result keeps
    the skim's origin, destination and travel-time columns and adds the
    friction column.
    """

    config = config or DeterrenceConfig()
    require_columns(skim, [config.origin_col, config.dest_col, config.time_col], "Travel-time skim")
    table = skim[[config.origin_col, config.dest_col, config.time_col]].copy()
    table[config.time_col] = pd.to_numeric(table[config.time_col], errors="coerce")
    unreachable = table[config.time_col].isna()
    if unreachable.any():
        LOG.info("Dropping %d skim pairs without a travel time.", int(unreachable.sum()))
        table = table.loc[~unreachable]
    if (table[config.time_col] < 0).any():
        raise ValueError("Travel times must be nonnegative.")
    table[config.friction_col] = friction_values(table[config.time_col].to_numpy(), config)
    return table.reset_index(drop=True)


__all__ = [
    "MIN_IMPEDANCE",
    "exponential_friction",
    "power_friction",
    "gamma_friction",
    "friction_values",
    "build_friction_table",
]
