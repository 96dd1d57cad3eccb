"""Typed configuration models for trip distribution workflows."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from tripdist.exceptions import ConfigurationError


class _Options(BaseModel):
    """Base model reporting invalid options as :class:`ConfigurationError`."""

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as err:
            raise ConfigurationError(str(err)) from err


class DataPaths(_Options):
    """Filesystem layout for input tables and model outputs."""

    root: Path = Field(default=Path("data"))
    inputs: Path = Field(default=Path("inputs"), validate_default=True)
    outputs: Path = Field(default=Path("outputs"), validate_default=True)

    @field_validator("inputs", "outputs", mode="before")
    @classmethod
    def _resolve(cls, value: Path, info: ValidationInfo) -> Path:
        root: Path = info.data.get("root", Path("data"))
        value_path = Path(value)
        return value_path if value_path.is_absolute() else root / value_path


class BalancingConfig(_Options):
    """Column names and stopping rule for the doubly-constrained balancer."""

    zone_id: str = Field(default="zone_id")
    origin_total_col: str = Field(default="production")
    dest_total_col: str = Field(default="attraction")
    friction_origin_col: str = Field(default="origin")
    friction_dest_col: str = Field(default="destination")
    friction_value_col: str = Field(default="friction")
    flow_col: str = Field(default="flow", description="Name of the estimated flow column in the output.")
    tolerance: float = Field(default=1e-3, gt=0.0)
    max_iterations: int = Field(default=100, gt=0)


class CalibrationConfig(_Options):
    """Settings for the β search against the observed mean trip length."""

    friction_origin_col: str = Field(default="origin")
    friction_dest_col: str = Field(default="destination")
    observed_flow_col: str = Field(default="observed_flow")
    travel_time_col: str = Field(default="travel_time")
    flow_col: str = Field(default="flow")
    balancing_tolerance: float = Field(default=1e-3, gt=0.0)
    balancing_max_iterations: int = Field(default=100, gt=0)
    calibration_tolerance: float = Field(default=1e-2, gt=0.0)
    calibration_max_iterations: int = Field(default=50, gt=0)
    initial_beta: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Starting β; defaults to the inverse of the flow-weighted mean travel time.",
    )

    def balancing(self) -> BalancingConfig:
        """Balancer settings for the observed-marginal zone table built during calibration."""

        return BalancingConfig(
            zone_id="zone_id",
            origin_total_col="production",
            dest_total_col="attraction",
            friction_origin_col=self.friction_origin_col,
            friction_dest_col=self.friction_dest_col,
            friction_value_col="friction",
            flow_col=self.flow_col,
            tolerance=self.balancing_tolerance,
            max_iterations=self.balancing_max_iterations,
        )


class DeterrenceConfig(_Options):
    """Deterrence function used to derive friction from a travel-time skim."""

    function: Literal["exponential", "power", "gamma"] = Field(default="exponential")
    beta: float = Field(default=0.1, ge=0.0, description="Exponential decay parameter.")
    gamma: float = Field(default=2.0, ge=0.0, description="Power decay parameter.")
    alpha: float = Field(default=-0.5, description="Power term of the combined gamma form.")
    origin_col: str = Field(default="origin")
    dest_col: str = Field(default="destination")
    time_col: str = Field(default="travel_time")
    friction_col: str = Field(default="friction")


class SectorColumns(_Options):
    """Production and attraction columns of one sector in the zone totals table."""

    production: str
    attraction: str


class DistributionConfig(_Options):
    """Top-level distribution configuration."""

    data: DataPaths = Field(default_factory=DataPaths)
    balancing: BalancingConfig = Field(default_factory=BalancingConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    deterrence: DeterrenceConfig = Field(default_factory=DeterrenceConfig)
    sectors: Dict[str, SectorColumns] = Field(
        default_factory=dict,
        description="Optional sector name to column mapping; empty means a single run on the balancing columns.",
    )
    max_workers: Optional[int] = Field(default=None, ge=1)


def load_distribution_config(path: Optional[Path] = None) -> DistributionConfig:
    """Load distribution configuration from disk or return defaults."""

    if path is None:
        return DistributionConfig()
    data = _load_json_or_yaml(path)
    try:
        return DistributionConfig.model_validate(data)
    except ValidationError as err:
        raise ConfigurationError(f"Invalid configuration in {path}: {err}") from err


def _load_json_or_yaml(path: Path) -> Dict[str, object]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    if path.suffix in {".json"}:
        import json

        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    if path.suffix in {".yaml", ".yml"}:
        import yaml

        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    raise ConfigurationError(f"Unsupported config format: {path}")
