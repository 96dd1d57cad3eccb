"""Independent balancing runs for several sector column pairs of one zone table."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Mapping, Optional

import pandas as pd

from tripdist.config import BalancingConfig, SectorColumns
from tripdist.distribution.balancing import BalancingResult, balance_flows, require_columns
from tripdist.exceptions import ConfigurationError

LOG = logging.getLogger(__name__)


def distribute_sectors(
    zones: pd.DataFrame,
    friction: pd.DataFrame,
    sectors: Mapping[str, SectorColumns],
    config: Optional[BalancingConfig] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, BalancingResult]:
    """Balance every sector against the same friction table.

    Runs share no state, so with ``max_workers > 1`` they are submitted to a
    thread pool. Results are returned in the order of ``sectors``.
    """

    config = config or BalancingConfig()
    if not sectors:
        raise ConfigurationError("At least one sector must be configured.")
    for name, columns in sectors.items():
        require_columns(zones, [columns.production, columns.attraction], f"Zone totals for sector '{name}'")

    sector_configs = {
        name: config.model_copy(
            update={"origin_total_col": columns.production, "dest_total_col": columns.attraction}
        )
        for name, columns in sectors.items()
    }
    if max_workers is None or max_workers <= 1:
        results = {}
        for name, sector_config in sector_configs.items():
            LOG.info("Balancing sector '%s'.", name)
            results[name] = balance_flows(zones, friction, sector_config)
        return results

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            name: executor.submit(balance_flows, zones, friction, sector_config)
            for name, sector_config in sector_configs.items()
        }
        return {name: future.result() for name, future in futures.items()}


def stack_sector_flows(results: Mapping[str, BalancingResult]) -> pd.DataFrame:
    """Concatenate per-sector flow tables into one long table with a ``sector`` column."""

    frames = []
    for name, result in results.items():
        frame = result.flows.copy()
        frame.insert(0, "sector", name)
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=["sector"])
    return pd.concat(frames, ignore_index=True)


def sector_diagnostics(results: Mapping[str, BalancingResult]) -> pd.DataFrame:
    """One row of convergence diagnostics per sector."""

    return pd.DataFrame(
        [{"sector": name, **result.diagnostics.as_dict()} for name, result in results.items()]
    )


__all__ = [
    "distribute_sectors",
    "stack_sector_flows",
    "sector_diagnostics",
]
