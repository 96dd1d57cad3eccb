"""Doubly-constrained gravity trip distribution and deterrence calibration."""

__version__ = "0.1.0"
