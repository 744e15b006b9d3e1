"""Run-length segmentation of simulation steps into restriction and outage episodes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import pandas as pd

if TYPE_CHECKING:
    from services.simulation_core import SimConfig, SimulationStep


@dataclass
class RestrictionEpisode:
    """Contiguous hours with the grid limit below the connection maximum.

    ``total_deficit_mwh`` is the shortage left after solar and grid, before
    the battery acts. ``mitigated`` stays true only while no hour in the run
    ends with residual shortage.
    """

    start: pd.Timestamp
    end: pd.Timestamp
    duration_hours: int
    total_deficit_mwh: float
    total_grid_restricted_mwh: float
    mitigated: bool
    battery_start_soc_mwh: float


@dataclass
class OutageEpisode:
    """Contiguous hours with unmet demand after the battery."""

    start: pd.Timestamp
    end: pd.Timestamp
    duration_hours: int
    total_missed_mwh: float
    max_shortage_mw: float


@dataclass(frozen=True)
class DistributionBucket:
    duration: int
    frequency: int
    total_mwh_curtailed: float
    avg_mwh_curtailed: float


def extract_restriction_episodes(steps: Sequence["SimulationStep"], cfg: "SimConfig") -> List[RestrictionEpisode]:
    episodes: List[RestrictionEpisode] = []
    current: Optional[RestrictionEpisode] = None

    for i, step in enumerate(steps):
        if not cfg.is_restricted(step.grid_limit_mw):
            if current is not None:
                episodes.append(current)
                current = None
            continue

        restricted_mwh = cfg.connection_max_mw - step.grid_limit_mw
        deficit_mwh = max(0.0, step.shortage_pre_battery_mw)
        if current is None:
            current = RestrictionEpisode(
                start=step.timestamp,
                end=step.timestamp,
                duration_hours=1,
                total_deficit_mwh=deficit_mwh,
                total_grid_restricted_mwh=restricted_mwh,
                mitigated=True,
                battery_start_soc_mwh=steps[i - 1].soc_end_mwh if i > 0 else cfg.battery_capacity_mwh,
            )
        else:
            current.end = step.timestamp
            current.duration_hours += 1
            current.total_deficit_mwh += deficit_mwh
            current.total_grid_restricted_mwh += restricted_mwh

        if cfg.is_short(step.shortage_mw):
            current.mitigated = False

    if current is not None:
        episodes.append(current)
    return episodes


def extract_outage_episodes(steps: Sequence["SimulationStep"], cfg: "SimConfig") -> List[OutageEpisode]:
    episodes: List[OutageEpisode] = []
    current: Optional[OutageEpisode] = None

    for step in steps:
        if not cfg.is_short(step.shortage_mw):
            if current is not None:
                episodes.append(current)
                current = None
            continue

        if current is None:
            current = OutageEpisode(
                start=step.timestamp,
                end=step.timestamp,
                duration_hours=1,
                total_missed_mwh=step.shortage_mw,
                max_shortage_mw=step.shortage_mw,
            )
        else:
            current.end = step.timestamp
            current.duration_hours += 1
            current.total_missed_mwh += step.shortage_mw
            current.max_shortage_mw = max(current.max_shortage_mw, step.shortage_mw)

    if current is not None:
        episodes.append(current)
    return episodes


def build_duration_distribution(episodes: Sequence[RestrictionEpisode]) -> List[DistributionBucket]:
    """Group restriction episodes by duration, ascending."""

    counts: Dict[int, int] = {}
    totals: Dict[int, float] = {}
    for episode in episodes:
        duration = int(episode.duration_hours)
        counts[duration] = counts.get(duration, 0) + 1
        totals[duration] = totals.get(duration, 0.0) + episode.total_deficit_mwh

    return [
        DistributionBucket(
            duration=duration,
            frequency=counts[duration],
            total_mwh_curtailed=totals[duration],
            avg_mwh_curtailed=totals[duration] / counts[duration],
        )
        for duration in sorted(counts)
    ]


def episodes_to_frame(episodes: Sequence[RestrictionEpisode | OutageEpisode]) -> pd.DataFrame:
    """Tabulate episodes for reporting; empty input yields an empty frame."""

    return pd.DataFrame([vars(e).copy() for e in episodes])
