"""Aggregate travel-time observations into a friction table for balancing and calibration."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from tripdist.config import DeterrenceConfig
from tripdist.distribution import build_friction_table
from tripdist.utils import read_table, write_table

app = typer.Typer(add_completion=False)


@app.command()
def run(
    observations_path: Path = typer.Option(
        Path("data/inputs/travel_times.csv"),
        "--observations",
        help="CSV/Parquet file with origin, destination and travel_time columns, one or more rows per pair.",
    ),
    output_path: Path = typer.Option(
        Path("data/inputs/friction.csv"),
        "--output",
        help="Destination for the friction table.",
    ),
    flow_column: Optional[str] = typer.Option(
        None,
        "--flow-column",
        help="Column holding observed trips per row; rows are counted as single trips when omitted.",
    ),
    function: str = typer.Option("exponential", "--function", help="Deterrence function: exponential, power or gamma."),
    beta: float = typer.Option(0.1, "--beta", help="Exponential decay parameter."),
    gamma: float = typer.Option(2.0, "--gamma", help="Power decay parameter."),
    alpha: float = typer.Option(-0.5, "--alpha", help="Power term of the gamma form."),
    origin_col: str = typer.Option("origin", "--origin-col", help="Origin zone column in the observations."),
    dest_col: str = typer.Option("destination", "--dest-col", help="Destination zone column in the observations."),
    time_col: str = typer.Option("travel_time", "--time-col", help="Travel time column in the observations."),
    min_samples: int = typer.Option(
        1,
        "--min-samples",
        help="Minimum number of observations required for an OD pair to be retained.",
    ),
) -> None:
    """Compute mean travel time and observed flow per OD pair and attach friction values."""

    deterrence = DeterrenceConfig(
        function=function,
        beta=beta,
        gamma=gamma,
        alpha=alpha,
        origin_col=origin_col,
        dest_col=dest_col,
        time_col=time_col,
    )
    observations = read_table(observations_path)
    required_cols = {deterrence.origin_col, deterrence.dest_col, deterrence.time_col}
    if flow_column:
        required_cols.add(flow_column)
    missing = required_cols - set(observations.columns)
    if missing:
        raise KeyError(f"Observations missing columns: {missing}")
    if observations.empty:
        raise ValueError("Observations table is empty; nothing to aggregate.")

    frame = observations.dropna(subset=[deterrence.time_col]).copy()
    frame["observed_flow"] = frame[flow_column].astype(float) if flow_column else 1.0
    grouped = frame.groupby([deterrence.origin_col, deterrence.dest_col], as_index=False).agg(
        travel_time=(deterrence.time_col, "mean"),
        observed_flow=("observed_flow", "sum"),
        sample_count=(deterrence.time_col, "size"),
    )
    grouped = grouped.loc[grouped["sample_count"] >= min_samples].copy()
    grouped = grouped.rename(columns={"travel_time": deterrence.time_col})

    table = build_friction_table(grouped, deterrence)
    table = table.merge(
        grouped[[deterrence.origin_col, deterrence.dest_col, "observed_flow", "sample_count"]],
        on=[deterrence.origin_col, deterrence.dest_col],
        how="left",
    )
    write_table(table, output_path)
    typer.echo(f"Friction table saved to {output_path} with {len(table)} pairs")


if __name__ == "__main__":
    app()
