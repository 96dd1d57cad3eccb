"""Gravity distribution entry points: balancing, deterrence, calibration and sectors."""

from .balancing import BalancingResult, ConvergenceDiagnostics, balance_flows
from .calibration import BetaEvaluation, CalibrationResult, calibrate_beta, evaluate_beta
from .deterrence import build_friction_table, exponential_friction, gamma_friction, power_friction
from .sectors import distribute_sectors, sector_diagnostics, stack_sector_flows

__all__ = [
    "balance_flows",
    "BalancingResult",
    "ConvergenceDiagnostics",
    "calibrate_beta",
    "evaluate_beta",
    "BetaEvaluation",
    "CalibrationResult",
    "build_friction_table",
    "exponential_friction",
    "power_friction",
    "gamma_friction",
    "distribute_sectors",
    "stack_sector_flows",
    "sector_diagnostics",
]
