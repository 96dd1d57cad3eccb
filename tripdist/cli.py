"""Command-line interface for balancing, calibration, and friction workflows."""
from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

from tripdist import config as cfg
from tripdist import logging_config
from tripdist.distribution import (
    balance_flows,
    build_friction_table,
    calibrate_beta,
    distribute_sectors,
    sector_diagnostics,
    stack_sector_flows,
)
from tripdist.exceptions import ConfigurationError
from tripdist.metrics import coincidence_ratio, trip_length_distribution
from tripdist.utils import ensure_directory, read_table, write_table

app = typer.Typer(add_completion=False)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level for library messages."),
) -> None:
    """Doubly-constrained gravity distribution tools."""

    logging_config.configure(log_level)


@app.command()
def balance(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to distribution config JSON/YAML."),
    zones_path: Path = typer.Option(..., "--zones", help="CSV/Parquet table of zone production and attraction totals."),
    friction_path: Path = typer.Option(..., "--friction", help="CSV/Parquet friction table."),
    output_path: Optional[Path] = typer.Option(None, "--output", help="Destination for the estimated flows."),
    sectors: Optional[List[str]] = typer.Option(None, "--sector", help="Restrict the run to these configured sectors."),
) -> None:
    """Estimate OD flows from zone totals and a friction table."""

    distribution_config = cfg.load_distribution_config(config_path)
    zones = read_table(zones_path)
    friction = read_table(friction_path)
    output = output_path or distribution_config.data.outputs / "flows.csv"

    if distribution_config.sectors:
        selected = {
            name: columns
            for name, columns in distribution_config.sectors.items()
            if not sectors or name in sectors
        }
        unknown = set(sectors or []) - set(distribution_config.sectors)
        if unknown:
            raise ConfigurationError(f"Unknown sectors requested: {sorted(unknown)}")
        typer.echo(f"Balancing {len(selected)} sectors...")
        results = distribute_sectors(
            zones,
            friction,
            selected,
            distribution_config.balancing,
            max_workers=distribution_config.max_workers,
        )
        write_table(stack_sector_flows(results), output)
        diagnostics = sector_diagnostics(results)
        for row in diagnostics.itertuples(index=False):
            typer.echo(
                f" - {row.sector}: converged={row.converged} iterations={row.iterations} "
                f"max error={row.achieved_error:.3g}"
            )
        diagnostics_payload = [
            {"sector": name, **sector_result.diagnostics.as_dict()} for name, sector_result in results.items()
        ]
    else:
        if sectors:
            raise ConfigurationError("No sectors are configured; drop --sector or add sectors to the config.")
        result = balance_flows(zones, friction, distribution_config.balancing)
        write_table(result.flows, output)
        typer.echo(
            f"converged={result.diagnostics.converged} iterations={result.diagnostics.iterations} "
            f"max error={result.diagnostics.achieved_error:.3g}"
        )
        diagnostics_payload = result.diagnostics.as_dict()

    diagnostics_path = output.with_name(f"{output.stem}_diagnostics.json")
    ensure_directory(diagnostics_path.parent)
    diagnostics_path.write_text(json.dumps(diagnostics_payload, indent=2), encoding="utf-8")
    typer.echo(f"Flows saved to {output}")


@app.command()
def calibrate(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to distribution config JSON/YAML."),
    records_path: Path = typer.Option(..., "--records", help="CSV/Parquet OD records with observed flow and travel time."),
    output_path: Optional[Path] = typer.Option(None, "--output", help="Destination for the calibrated flows."),
    tlfd_bin: Optional[float] = typer.Option(
        None,
        "--tlfd-bin",
        help="If set, compare observed and modelled trip length distributions in bins of this width.",
    ),
) -> None:
    """Calibrate the exponential deterrence parameter against observed mean trip length."""

    distribution_config = cfg.load_distribution_config(config_path)
    calibration_config = distribution_config.calibration
    records = read_table(records_path)
    output = output_path or distribution_config.data.outputs / "calibrated_flows.csv"

    result = calibrate_beta(records, calibration_config)
    typer.echo(f"beta={result.beta:.6g} (initial {result.initial_beta:.6g})")
    typer.echo(
        f"mean trip length: observed={result.observed_mean_trip_length:.4g} "
        f"model={result.model_mean_trip_length:.4g}"
    )
    typer.echo(
        f"converged={result.diagnostics.converged} iterations={result.diagnostics.iterations} "
        f"relative error={result.diagnostics.achieved_error:.3g}"
    )
    if tlfd_bin is not None:
        times = records[calibration_config.travel_time_col].to_numpy(dtype=float)
        max_time = float(times.max())
        observed = trip_length_distribution(
            records[calibration_config.observed_flow_col].to_numpy(dtype=float), times, tlfd_bin, max_time
        )
        modelled = trip_length_distribution(
            result.flows[calibration_config.flow_col].to_numpy(dtype=float), times, tlfd_bin, max_time
        )
        typer.echo(f"trip length distribution coincidence ratio={coincidence_ratio(observed, modelled):.4f}")

    write_table(result.flows, output)
    history_path = output.with_name(f"{output.stem}_history{output.suffix}")
    write_table(result.history, history_path)
    summary = {
        "beta": result.beta,
        "initial_beta": result.initial_beta,
        "observed_mean_trip_length": result.observed_mean_trip_length,
        "model_mean_trip_length": result.model_mean_trip_length,
        **result.diagnostics.as_dict(),
    }
    output.with_name(f"{output.stem}_diagnostics.json").write_text(json.dumps(summary, indent=2), encoding="utf-8")
    typer.echo(f"Calibrated flows saved to {output}")
    typer.echo(f"Iteration history saved to {history_path}")


@app.command()
def friction(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to distribution config JSON/YAML."),
    skim_path: Path = typer.Option(..., "--skim", help="CSV/Parquet travel-time skim."),
    output_path: Optional[Path] = typer.Option(None, "--output", help="Destination for the friction table."),
    beta: Optional[float] = typer.Option(None, "--beta", help="Override the configured decay parameter."),
) -> None:
    """Derive a friction table from a travel-time skim."""

    distribution_config = cfg.load_distribution_config(config_path)
    deterrence = distribution_config.deterrence
    if beta is not None:
        deterrence = cfg.DeterrenceConfig(**{**deterrence.model_dump(), "beta": beta})
    skim = read_table(skim_path)
    table = build_friction_table(skim, deterrence)
    output = output_path or distribution_config.data.inputs / "friction.csv"
    write_table(table, output)
    typer.echo(f"Friction table with {len(table)} pairs saved to {output}")


def run() -> None:
    """Entry point for `tripdist`."""

    app()


if __name__ == "__main__":
    app()
