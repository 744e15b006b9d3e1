"""Input shaping utilities for grid-limit and solar profiles."""

from __future__ import annotations

import logging
from typing import Dict, Tuple

import numpy as np
import pandas as pd

DEFAULT_CONNECTION_MAX_MW = 10.0
MIN_YEAR_ROWS = 24

GRID_COLUMNS = ("timestamp", "grid_limit_mw")
SOLAR_COLUMNS = ("timestamp", "generation_mw")

SolarKey = Tuple[int, int, int]


def _normalize_frame(df: pd.DataFrame, columns: Tuple[str, str]) -> pd.DataFrame:
    ts_col, value_col = columns
    if not set(columns).issubset(df.columns):
        raise ValueError(f"Frame must contain columns: {', '.join(columns)}")

    out = df.loc[:, list(columns)].copy()
    out[ts_col] = pd.to_datetime(out[ts_col], errors="coerce")
    out[value_col] = pd.to_numeric(out[value_col], errors="coerce")

    invalid_rows = out[ts_col].isna() | out[value_col].isna()
    if invalid_rows.any():
        logging.getLogger(__name__).warning(
            "Dropping %s rows with unparseable %s/%s values.",
            int(invalid_rows.sum()),
            ts_col,
            value_col,
        )
        out = out.loc[~invalid_rows].copy()

    out[value_col] = out[value_col].astype(float)
    return out.sort_values(ts_col, kind="mergesort").reset_index(drop=True)


def normalize_grid_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Return a sorted copy of a ['timestamp','grid_limit_mw'] frame."""

    return _normalize_frame(df, GRID_COLUMNS)


def normalize_solar_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Return a sorted copy of a ['timestamp','generation_mw'] frame."""

    return _normalize_frame(df, SOLAR_COLUMNS)


def full_capacity_year(year: int, connection_max_mw: float = DEFAULT_CONNECTION_MAX_MW) -> pd.DataFrame:
    """Hourly series for ``year`` at nominal connection capacity (no restriction)."""

    index = pd.date_range(
        pd.Timestamp(year=year, month=1, day=1, hour=0),
        pd.Timestamp(year=year, month=12, day=31, hour=23),
        freq="h",
    )
    return pd.DataFrame({"timestamp": index, "grid_limit_mw": float(connection_max_mw)})


def select_year_or_fallback(
    grid_df: pd.DataFrame,
    year: int,
    min_rows: int = MIN_YEAR_ROWS,
    connection_max_mw: float = DEFAULT_CONNECTION_MAX_MW,
) -> pd.DataFrame:
    """Return the grid-limit rows for ``year`` or a synthetic unrestricted year.

    Source data often stops before the last projected year; when ``min_rows``
    or fewer rows exist for the requested year the engine is handed a clean
    full-capacity profile instead so the year still simulates.
    """

    if grid_df.empty:
        year_df = grid_df
    else:
        timestamps = pd.to_datetime(grid_df["timestamp"], errors="coerce")
        year_df = grid_df.loc[timestamps.dt.year == year]

    if len(year_df) > min_rows:
        return year_df.reset_index(drop=True)

    logging.getLogger(__name__).warning(
        "Only %s grid-limit rows for %s; using a full-capacity (%.1f MW) fallback year.",
        len(year_df),
        year,
        connection_max_mw,
    )
    return full_capacity_year(year, connection_max_mw)


def build_solar_lookup(solar_df: pd.DataFrame) -> Dict[SolarKey, float]:
    """Map (month, day, hour) to generation MW, ignoring the profile's year.

    A single measured year is reused for every simulated year. The key has no
    year so Feb 29 of a leap-year profile is never used for non-leap years,
    and Feb 29 of a leap simulation year finds no generation when the profile
    comes from a non-leap year.
    """

    if solar_df is None or solar_df.empty:
        return {}

    ordered = normalize_solar_frame(solar_df)
    ts = ordered["timestamp"].dt
    keys = zip(ts.month.to_numpy(), ts.day.to_numpy(), ts.hour.to_numpy())
    lookup: Dict[SolarKey, float] = {}
    for key, value in zip(keys, ordered["generation_mw"].to_numpy(float)):
        lookup[(int(key[0]), int(key[1]), int(key[2]))] = float(value)
    return lookup


def generate_synthetic_grid_profile(
    start_year: int = 2024,
    end_year: int = 2036,
    seed: int | None = 0,
    connection_max_mw: float = DEFAULT_CONNECTION_MAX_MW,
) -> pd.DataFrame:
    """Create a demo congestion profile spanning ``start_year``..``end_year``.

    Winter months (Nov-Feb) are restricted more often than summer and the
    restriction probability grows by two percentage points per year from 2026.
    Restricted hours draw a limit uniformly between 20 % and 100 % of the
    connection maximum.
    """

    rng = np.random.default_rng(seed)
    index = pd.date_range(
        pd.Timestamp(year=start_year, month=1, day=1, hour=0),
        pd.Timestamp(year=end_year, month=12, day=31, hour=23),
        freq="h",
    )
    months = index.month.to_numpy()
    years = index.year.to_numpy()
    is_winter = (months <= 2) | (months >= 11)
    probability = np.where(is_winter, 0.08, 0.02) + (years - 2026) * 0.02

    restricted = rng.random(len(index)) < probability
    cut = rng.random(len(index)) * 0.8 * connection_max_mw
    limits = np.where(restricted, np.maximum(0.0, connection_max_mw - cut), connection_max_mw)
    return pd.DataFrame({"timestamp": index, "grid_limit_mw": np.round(limits, 3)})
