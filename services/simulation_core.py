from __future__ import annotations

import calendar
import logging
import math
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from services.episodes import (
    DistributionBucket,
    OutageEpisode,
    RestrictionEpisode,
    build_duration_distribution,
    extract_outage_episodes,
    extract_restriction_episodes,
)
from utils.io import SolarKey, build_solar_lookup, normalize_grid_frame

# Theoretical yearly hours used for throughput percentages, independent of leap years.
HOURS_PER_YEAR = 8760
WORST_WEEK_HOURS_BEFORE = 24 * 3
WORST_WEEK_HOURS_AFTER = 24 * 4


def resolve_solar_scale_factor(base_mwp: float, target_mwp: float) -> float:
    """Return target/base nameplate ratio, or 0 when either input is invalid."""

    if target_mwp >= 0 and base_mwp > 0:
        return target_mwp / base_mwp
    return 0.0


@dataclass
class SimConfig:
    dc_capacity_mw: float = 2.0  # contracted nameplate
    dc_utilization_pct: float = 65.0
    logistics_mw: float = 0.5
    logistics_start_hour: int = 6  # hour-of-day, inclusive
    logistics_end_hour: int = 18  # hour-of-day, exclusive
    battery_capacity_mwh: float = 40.0
    battery_power_mw: float = 10.0
    solar_base_mwp: float = 4.0  # nameplate of the measured solar profile
    solar_target_mwp: float = 4.0
    contract_end: pd.Timestamp = field(default_factory=lambda: pd.Timestamp("2036-01-01"))
    connection_max_mw: float = 10.0
    restriction_tolerance_mw: float = 0.01
    shortage_tolerance_mw: float = 0.001

    def __post_init__(self) -> None:
        self.contract_end = pd.Timestamp(self.contract_end)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SimConfig":
        """Build a config from a flat mapping, rejecting unknown keys."""

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValueError(f"Unsupported SimConfig fields: {', '.join(unknown)}")
        return cls(**payload)

    @property
    def solar_scale_factor(self) -> float:
        return resolve_solar_scale_factor(self.solar_base_mwp, self.solar_target_mwp)

    @property
    def dc_demand_mw(self) -> float:
        return self.dc_capacity_mw * (self.dc_utilization_pct / 100.0)

    @property
    def avg_demand_mw(self) -> float:
        window_hours = max(0, self.logistics_end_hour - self.logistics_start_hour)
        return self.dc_demand_mw + self.logistics_mw * window_hours / 24.0

    def logistics_demand_mw(self, hour_of_day: int) -> float:
        if self.logistics_start_hour <= hour_of_day < self.logistics_end_hour:
            return self.logistics_mw
        return 0.0

    def is_restricted(self, grid_limit_mw: float) -> bool:
        return grid_limit_mw < self.connection_max_mw - self.restriction_tolerance_mw

    def is_short(self, shortage_mw: float) -> bool:
        return shortage_mw > self.shortage_tolerance_mw


@dataclass(frozen=True)
class HourInput:
    timestamp: pd.Timestamp
    grid_limit_mw: float
    solar_raw_mw: float = 0.0


@dataclass(frozen=True)
class DispatchState:
    soc_mwh: float


@dataclass(frozen=True)
class SimulationStep:
    """Energy flows for one hour. Powers in MW equal energies in MWh (1 h step)."""

    timestamp: pd.Timestamp
    grid_limit_mw: float
    dc_demand_mw: float
    logistics_demand_mw: float
    total_demand_mw: float
    solar_generation_mw: float
    solar_to_load_mw: float
    grid_to_load_mw: float
    bat_to_load_mw: float
    grid_to_bat_mw: float
    solar_to_bat_mw: float
    shortage_pre_battery_mw: float
    shortage_mw: float
    soc_end_mwh: float
    is_battery_active: bool
    theoretical_deficit_no_solar_mw: float
    deficit_mitigated_by_solar_mw: float
    deficit_mitigated_by_bat_mw: float
    trading_potential_mw: float

    @property
    def solar_used_mw(self) -> float:
        return self.solar_to_load_mw + self.solar_to_bat_mw


@dataclass
class MonthlyStat:
    month_index: int
    month_label: str
    restricted_mwh: float = 0.0
    restricted_hours: int = 0
    solar_generation: float = 0.0
    solar_used: float = 0.0
    deficit_mitigated_by_solar: float = 0.0
    deficit_mitigated_by_bat: float = 0.0
    deficit_net: float = 0.0


@dataclass
class AnalysisResult:
    total_hours_restricted: int
    total_mwh_restricted_grid: float
    curtailment_percentage_volume: float
    load_deficit_mwh_no_bat: float
    load_deficit_mwh_with_bat: float
    total_solar_generation: float
    total_solar_used: float
    total_load_consumption: float
    deficit_after_solar: float
    restricted_volume_load: float
    total_grid_to_load: float
    total_solar_to_load: float
    total_bat_to_load: float
    events: List[RestrictionEpisode]
    outage_events: List[OutageEpisode]
    distribution: List[DistributionBucket]
    monthly_stats: List[MonthlyStat]
    steps: List[SimulationStep]
    worst_week_steps: List[SimulationStep]
    battery_autonomy_hours: float
    trading_hours_available: int
    trading_volume_potential_mwh: float


def _fmin(*values: float) -> float:
    """``min`` that returns NaN when any argument is NaN."""

    if any(math.isnan(v) for v in values):
        return math.nan
    return min(values)


def _fmax(*values: float) -> float:
    """``max`` that returns NaN when any argument is NaN."""

    if any(math.isnan(v) for v in values):
        return math.nan
    return max(values)


def dispatch_hour(state: DispatchState, hour: HourInput, cfg: SimConfig) -> Tuple[DispatchState, SimulationStep]:
    """Apportion one hour of demand across solar, grid and battery.

    Priority is fixed: solar serves load, then the grid up to the effective
    limit, then the battery discharges. The battery only charges in hours
    without a pre-battery shortage, taking surplus solar before grid headroom,
    both sharing a single power budget.
    """

    connection_max = cfg.connection_max_mw
    grid_limit = _fmin(_fmax(0.0, hour.grid_limit_mw), connection_max)
    if hour.timestamp >= cfg.contract_end:
        grid_limit = connection_max

    solar_mw = hour.solar_raw_mw * cfg.solar_scale_factor
    dc_demand = cfg.dc_demand_mw
    logistics_demand = cfg.logistics_demand_mw(hour.timestamp.hour)
    total_demand = dc_demand + logistics_demand

    theoretical_deficit = _fmax(0.0, total_demand - grid_limit)
    solar_to_load = _fmin(solar_mw, total_demand)
    demand_after_solar = total_demand - solar_to_load
    grid_to_load = _fmin(grid_limit, demand_after_solar)
    shortage_pre = demand_after_solar - grid_to_load

    soc = state.soc_mwh
    bat_to_load = solar_to_bat = grid_to_bat = 0.0
    shortage = 0.0
    if shortage_pre > 0:
        bat_to_load = _fmin(shortage_pre, soc, cfg.battery_power_mw)
        soc -= bat_to_load
        shortage = shortage_pre - bat_to_load
    else:
        space = cfg.battery_capacity_mwh - soc
        if space > 0:
            solar_to_bat = _fmax(0.0, _fmin(solar_mw - solar_to_load, space, cfg.battery_power_mw))
            remaining_cap = _fmin(space - solar_to_bat, cfg.battery_power_mw - solar_to_bat)
            grid_to_bat = _fmax(0.0, _fmin(grid_limit - grid_to_load, remaining_cap))
            soc += solar_to_bat + grid_to_bat

    is_active = bat_to_load > 0 or solar_to_bat > 0 or grid_to_bat > 0
    trading_potential = 0.0
    if not is_active:
        trading_potential = _fmin(cfg.battery_power_mw, _fmax(0.0, grid_limit - grid_to_load))

    step = SimulationStep(
        timestamp=hour.timestamp,
        grid_limit_mw=grid_limit,
        dc_demand_mw=dc_demand,
        logistics_demand_mw=logistics_demand,
        total_demand_mw=total_demand,
        solar_generation_mw=solar_mw,
        solar_to_load_mw=solar_to_load,
        grid_to_load_mw=grid_to_load,
        bat_to_load_mw=bat_to_load,
        grid_to_bat_mw=grid_to_bat,
        solar_to_bat_mw=solar_to_bat,
        shortage_pre_battery_mw=shortage_pre,
        shortage_mw=shortage,
        soc_end_mwh=soc,
        is_battery_active=is_active,
        theoretical_deficit_no_solar_mw=theoretical_deficit,
        deficit_mitigated_by_solar_mw=_fmax(0.0, theoretical_deficit - shortage_pre),
        deficit_mitigated_by_bat_mw=_fmax(0.0, shortage_pre - shortage),
        trading_potential_mw=trading_potential,
    )
    return DispatchState(soc_mwh=soc), step


def _empty_result(cfg: SimConfig) -> AnalysisResult:
    return AnalysisResult(
        total_hours_restricted=0,
        total_mwh_restricted_grid=0.0,
        curtailment_percentage_volume=0.0,
        load_deficit_mwh_no_bat=0.0,
        load_deficit_mwh_with_bat=0.0,
        total_solar_generation=0.0,
        total_solar_used=0.0,
        total_load_consumption=0.0,
        deficit_after_solar=0.0,
        restricted_volume_load=0.0,
        total_grid_to_load=0.0,
        total_solar_to_load=0.0,
        total_bat_to_load=0.0,
        events=[],
        outage_events=[],
        distribution=[],
        monthly_stats=[],
        steps=[],
        worst_week_steps=[],
        battery_autonomy_hours=0.0,
        trading_hours_available=HOURS_PER_YEAR,
        trading_volume_potential_mwh=HOURS_PER_YEAR * cfg.battery_power_mw,
    )


def _worst_week(steps: List[SimulationStep], battery_capacity_mwh: float) -> List[SimulationStep]:
    """Return the week of steps around the first hour with the lowest SoC."""

    if not steps:
        return []
    soc = np.array([s.soc_end_mwh for s in steps], dtype=float)
    min_idx = int(np.argmin(soc)) if soc.min() < battery_capacity_mwh else 0
    start = max(0, min_idx - WORST_WEEK_HOURS_BEFORE)
    end = min(len(steps), min_idx + WORST_WEEK_HOURS_AFTER)
    return steps[start:end]


def simulate_year(
    grid_df: pd.DataFrame,
    solar_df: Optional[pd.DataFrame],
    cfg: SimConfig,
    solar_lookup: Optional[Dict[SolarKey, float]] = None,
) -> AnalysisResult:
    """Run the hourly dispatch over one year of grid-limit rows.

    ``grid_df`` needs ``timestamp`` and ``grid_limit_mw`` columns and is
    sorted as a local copy. Solar is looked up by (month, day, hour) so one
    profile serves every year; hours without solar data generate nothing.
    A prebuilt ``solar_lookup`` skips rebuilding the map when the same
    profile drives many runs.
    """

    logger = logging.getLogger(__name__)
    grid = normalize_grid_frame(grid_df)
    if grid.empty:
        return _empty_result(cfg)

    if not (cfg.solar_target_mwp >= 0 and cfg.solar_base_mwp > 0):
        logger.warning(
            "Invalid solar scaling (base=%s MWp, target=%s MWp); solar generation is ignored.",
            cfg.solar_base_mwp,
            cfg.solar_target_mwp,
        )

    if solar_lookup is None:
        solar_lookup = build_solar_lookup(solar_df) if solar_df is not None else {}

    month_restricted_mwh = np.zeros(12)
    month_restricted_hours = np.zeros(12, dtype=int)
    month_solar_generation = np.zeros(12)
    month_solar_used = np.zeros(12)
    month_mitigated_solar = np.zeros(12)
    month_mitigated_bat = np.zeros(12)
    month_deficit_net = np.zeros(12)

    total_hours_restricted = 0
    total_mwh_restricted_grid = restricted_volume_load = 0.0
    load_deficit_no_bat = load_deficit_with_bat = 0.0
    total_solar_generation = total_solar_used = total_load = 0.0
    total_grid_to_load = total_solar_to_load = total_bat_to_load = 0.0
    trading_volume = 0.0
    busy_hours = 0

    state = DispatchState(soc_mwh=cfg.battery_capacity_mwh)
    steps: List[SimulationStep] = []

    for ts, limit in zip(grid["timestamp"], grid["grid_limit_mw"].to_numpy(float)):
        solar_raw = solar_lookup.get((ts.month, ts.day, ts.hour), 0.0)
        state, step = dispatch_hour(state, HourInput(ts, float(limit), solar_raw), cfg)
        steps.append(step)
        m = ts.month - 1

        total_load += step.total_demand_mw
        load_deficit_no_bat += step.shortage_pre_battery_mw
        load_deficit_with_bat += step.shortage_mw
        total_grid_to_load += step.grid_to_load_mw
        total_solar_to_load += step.solar_to_load_mw
        total_bat_to_load += step.bat_to_load_mw
        total_solar_generation += step.solar_generation_mw
        total_solar_used += step.solar_used_mw

        if cfg.is_restricted(step.grid_limit_mw):
            restricted_mwh = cfg.connection_max_mw - step.grid_limit_mw
            total_hours_restricted += 1
            total_mwh_restricted_grid += restricted_mwh
            restricted_volume_load += step.theoretical_deficit_no_solar_mw
            month_restricted_hours[m] += 1
            month_restricted_mwh[m] += restricted_mwh

        if step.is_battery_active:
            busy_hours += 1
        else:
            trading_volume += step.trading_potential_mw

        month_solar_generation[m] += step.solar_generation_mw
        month_solar_used[m] += step.solar_used_mw
        month_mitigated_solar[m] += step.deficit_mitigated_by_solar_mw
        month_mitigated_bat[m] += step.deficit_mitigated_by_bat_mw
        month_deficit_net[m] += step.shortage_mw

    monthly_stats = [
        MonthlyStat(
            month_index=m + 1,
            month_label=calendar.month_abbr[m + 1],
            restricted_mwh=float(month_restricted_mwh[m]),
            restricted_hours=int(month_restricted_hours[m]),
            solar_generation=float(month_solar_generation[m]),
            solar_used=float(month_solar_used[m]),
            deficit_mitigated_by_solar=float(month_mitigated_solar[m]),
            deficit_mitigated_by_bat=float(month_mitigated_bat[m]),
            deficit_net=float(month_deficit_net[m]),
        )
        for m in range(12)
    ]

    events = extract_restriction_episodes(steps, cfg)
    avg_demand = cfg.avg_demand_mw
    logger.debug(
        "Simulated %s hours: %s restricted, %.3f MWh unmet after battery.",
        len(steps),
        total_hours_restricted,
        load_deficit_with_bat,
    )

    return AnalysisResult(
        total_hours_restricted=total_hours_restricted,
        total_mwh_restricted_grid=total_mwh_restricted_grid,
        curtailment_percentage_volume=total_mwh_restricted_grid / (cfg.connection_max_mw * HOURS_PER_YEAR) * 100.0,
        load_deficit_mwh_no_bat=load_deficit_no_bat,
        load_deficit_mwh_with_bat=load_deficit_with_bat,
        total_solar_generation=total_solar_generation,
        total_solar_used=total_solar_used,
        total_load_consumption=total_load,
        deficit_after_solar=load_deficit_no_bat,
        restricted_volume_load=restricted_volume_load,
        total_grid_to_load=total_grid_to_load,
        total_solar_to_load=total_solar_to_load,
        total_bat_to_load=total_bat_to_load,
        events=events,
        outage_events=extract_outage_episodes(steps, cfg),
        distribution=build_duration_distribution(events),
        monthly_stats=monthly_stats,
        steps=steps,
        worst_week_steps=_worst_week(steps, cfg.battery_capacity_mwh),
        battery_autonomy_hours=cfg.battery_capacity_mwh / avg_demand if avg_demand > 0 else math.inf,
        trading_hours_available=max(0, HOURS_PER_YEAR - busy_hours),
        trading_volume_potential_mwh=trading_volume,
    )


def steps_to_frame(steps: List[SimulationStep]) -> pd.DataFrame:
    """Return simulation steps as a tidy frame, one column per step field."""

    columns = [f.name for f in fields(SimulationStep)]
    if not steps:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([asdict(s) for s in steps], columns=columns)


def monthly_stats_to_frame(monthly_stats: List[MonthlyStat]) -> pd.DataFrame:
    columns = [f.name for f in fields(MonthlyStat)]
    return pd.DataFrame([asdict(m) for m in monthly_stats], columns=columns)
