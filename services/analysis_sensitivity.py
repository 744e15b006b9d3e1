"""Capacity sensitivity: rerun one year for several DC nameplate values."""
from __future__ import annotations

from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Sequence

import pandas as pd

from services.analysis_common import rows_to_frame, run_variants
from services.simulation_core import SimConfig, simulate_year
from utils.economics import EconomicInputs, compute_diesel_costs
from utils.io import SolarKey, build_solar_lookup, normalize_grid_frame, select_year_or_fallback

DEFAULT_CAPACITIES_MW: tuple[float, ...] = (2.0, 3.0, 4.0, 5.0, 6.0, 7.0)


@dataclass(frozen=True)
class CapacitySensitivityResult:
    """One sensitivity row.

    Units:
    - ``capacity_mw``: contracted DC nameplate (MW).
    - ``deficit_mwh``: demand left unmet after solar, grid and battery.
    - ``trading_hours`` / ``trading_volume``: hours and MWh the battery is
      free for market use.
    """

    capacity_mw: float
    deficit_mwh: float
    net_extra_cost: float
    trading_hours: int
    trading_volume: float
    year: int


@dataclass(frozen=True)
class SensitivityAnalysisResponse:
    results: list[CapacitySensitivityResult]
    results_df: pd.DataFrame
    records: list[dict[str, Any]]


def _evaluate_capacity(
    capacity_mw: float,
    *,
    year: int,
    year_df: pd.DataFrame,
    solar_lookup: dict[SolarKey, float],
    base_cfg: SimConfig,
    economics: EconomicInputs,
) -> CapacitySensitivityResult:
    cfg = replace(base_cfg, dc_capacity_mw=float(capacity_mw))
    result = simulate_year(year_df, None, cfg, solar_lookup=solar_lookup)
    costs = compute_diesel_costs(result.load_deficit_mwh_with_bat, economics)
    return CapacitySensitivityResult(
        capacity_mw=float(capacity_mw),
        deficit_mwh=result.load_deficit_mwh_with_bat,
        net_extra_cost=costs.net_extra_cost,
        trading_hours=result.trading_hours_available,
        trading_volume=result.trading_volume_potential_mwh,
        year=year,
    )


def run_capacity_sensitivity(
    grid_df: pd.DataFrame,
    solar_df: pd.DataFrame | None,
    base_cfg: SimConfig,
    economics: EconomicInputs,
    year: int,
    capacities_mw: Sequence[float] = DEFAULT_CAPACITIES_MW,
    concurrency: str | None = None,
    max_workers: int | None = None,
) -> SensitivityAnalysisResponse:
    """Return one row per candidate nameplate for a fixed simulation year."""

    evaluate = partial(
        _evaluate_capacity,
        year=year,
        year_df=select_year_or_fallback(
            normalize_grid_frame(grid_df), year, connection_max_mw=base_cfg.connection_max_mw
        ),
        solar_lookup=build_solar_lookup(solar_df) if solar_df is not None else {},
        base_cfg=base_cfg,
        economics=economics,
    )
    results = run_variants(evaluate, list(capacities_mw), concurrency=concurrency, max_workers=max_workers)
    results_df = rows_to_frame(results, CapacitySensitivityResult)
    return SensitivityAnalysisResponse(
        results=results,
        results_df=results_df,
        records=results_df.to_dict(orient="records"),
    )
