"""Input shaping and economics helpers shared by the simulation services."""

from utils.economics import EconomicInputs, compute_diesel_costs
from utils.io import (
    build_solar_lookup,
    generate_synthetic_grid_profile,
    normalize_grid_frame,
    normalize_solar_frame,
    select_year_or_fallback,
)

__all__ = [
    "EconomicInputs",
    "compute_diesel_costs",
    "build_solar_lookup",
    "generate_synthetic_grid_profile",
    "normalize_grid_frame",
    "normalize_solar_frame",
    "select_year_or_fallback",
]
