"""Trip length statistics for observed and modelled flows."""

from .trip_length import coincidence_ratio, mean_trip_length, trip_length_distribution

__all__ = [
    "mean_trip_length",
    "trip_length_distribution",
    "coincidence_ratio",
]
