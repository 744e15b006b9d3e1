"""Shared helpers for multi-year and sensitivity runs over the dispatch core."""
from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Sequence, TypeVar

import pandas as pd

from services.simulation_core import HOURS_PER_YEAR, AnalysisResult, SimConfig
from utils.economics import EconomicInputs, compute_diesel_costs, safe_pct

T = TypeVar("T")
R = TypeVar("R")

GROWTH_SLOTS = 4


@dataclass(frozen=True)
class GrowthSchedule:
    """Contracted DC nameplate per project year.

    ``capacities_mw`` holds four slots: the start year, the two years after
    it, and a steady-state value for every later year.
    """

    start_year: int = 2027
    capacities_mw: tuple[float, ...] = (2.0, 4.0, 6.0, 7.0)

    def __post_init__(self) -> None:
        if len(self.capacities_mw) != GROWTH_SLOTS:
            raise ValueError(
                f"capacities_mw must have exactly {GROWTH_SLOTS} entries, got {len(self.capacities_mw)}"
            )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "GrowthSchedule":
        return cls(
            start_year=int(payload["start_year"]),
            capacities_mw=tuple(float(v) for v in payload["capacities_mw"]),
        )


def capacity_for_year(schedule: GrowthSchedule, year: int) -> float:
    """Return the nameplate for ``year``; zero before the schedule starts."""

    if year < schedule.start_year:
        return 0.0
    offset = min(year - schedule.start_year, GROWTH_SLOTS - 1)
    return float(schedule.capacities_mw[offset])


@dataclass
class YearlyResult:
    year: int
    dc_deficit_with_bat: float
    total_hours_restricted: int
    total_mwh_restricted: float
    csc_percentage: float
    dc_capacity_used: float
    diesel_liters: float
    gross_diesel_cost: float
    avoided_grid_cost: float
    net_extra_cost: float
    solar_self_consumption: float
    total_solar_generation: float
    total_load_consumption: float
    deficit_after_solar: float
    restricted_volume_load: float
    diesel_percentage: float
    trading_volume_potential_mwh: float
    trading_volume_percent: float
    total_grid_to_load: float
    total_solar_to_load: float
    total_bat_to_load: float
    cap_logistics_mw: float
    cap_dc_actual_mw: float
    cap_dc_contract_mw: float
    cap_battery_space_mw: float


def build_yearly_result(
    year: int,
    result: AnalysisResult,
    cfg: SimConfig,
    economics: EconomicInputs,
    schedule_start_year: int,
) -> YearlyResult:
    """Roll one simulated year into financial and capacity-trend figures."""

    costs = compute_diesel_costs(result.load_deficit_mwh_with_bat, economics)
    max_trading_volume = HOURS_PER_YEAR * cfg.battery_power_mw

    dc_actual = cfg.dc_demand_mw
    logistics = cfg.logistics_mw if year >= schedule_start_year else 0.0

    return YearlyResult(
        year=year,
        dc_deficit_with_bat=result.load_deficit_mwh_with_bat,
        total_hours_restricted=result.total_hours_restricted,
        total_mwh_restricted=result.total_mwh_restricted_grid,
        csc_percentage=result.curtailment_percentage_volume,
        dc_capacity_used=cfg.dc_capacity_mw,
        diesel_liters=costs.diesel_liters,
        gross_diesel_cost=costs.gross_diesel_cost,
        avoided_grid_cost=costs.avoided_grid_cost,
        net_extra_cost=costs.net_extra_cost,
        solar_self_consumption=result.total_solar_used,
        total_solar_generation=result.total_solar_generation,
        total_load_consumption=result.total_load_consumption,
        deficit_after_solar=result.deficit_after_solar,
        restricted_volume_load=result.restricted_volume_load,
        diesel_percentage=safe_pct(result.load_deficit_mwh_with_bat, result.total_load_consumption),
        trading_volume_potential_mwh=result.trading_volume_potential_mwh,
        trading_volume_percent=safe_pct(result.trading_volume_potential_mwh, max_trading_volume),
        total_grid_to_load=result.total_grid_to_load,
        total_solar_to_load=result.total_solar_to_load,
        total_bat_to_load=result.total_bat_to_load,
        cap_logistics_mw=logistics,
        cap_dc_actual_mw=dc_actual,
        cap_dc_contract_mw=cfg.dc_capacity_mw,
        cap_battery_space_mw=max(0.0, cfg.connection_max_mw - logistics - dc_actual),
    )


def rows_to_frame(rows: Sequence[Any], row_type: type) -> pd.DataFrame:
    """Return dataclass rows as a frame with a stable column order."""

    columns = [f.name for f in fields(row_type)]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([asdict(r) for r in rows], columns=columns)


def run_variants(
    fn: Callable[[T], R],
    variants: Sequence[T],
    concurrency: str | None = None,
    max_workers: int | None = None,
) -> list[R]:
    """Evaluate ``fn`` for every variant, preserving input order.

    Each variant is an independent simulation, so thread and process pools
    return the same rows as the sequential path. Process pools need ``fn`` and
    its arguments to be picklable.
    """

    executor_cls: type[ThreadPoolExecutor] | type[ProcessPoolExecutor] | None = None
    if concurrency is not None:
        if concurrency not in {"thread", "process"}:
            raise ValueError("concurrency must be 'thread', 'process', or None.")
        executor_cls = ThreadPoolExecutor if concurrency == "thread" else ProcessPoolExecutor

    logging.getLogger(__name__).info(
        "Evaluating %s variants (concurrency=%s).", len(variants), concurrency or "sequential"
    )

    if executor_cls is None or not variants:
        return [fn(v) for v in variants]

    with executor_cls(max_workers=max_workers) as executor:
        return list(executor.map(fn, variants))
