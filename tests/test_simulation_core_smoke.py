import logging
from pathlib import Path
import sys

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.simulation_core import (  # noqa: E402
    HOURS_PER_YEAR,
    SimConfig,
    monthly_stats_to_frame,
    simulate_year,
    steps_to_frame,
)
from utils.io import full_capacity_year  # noqa: E402


def _base_cfg(**overrides) -> SimConfig:
    """Flat 2 MW load with no solar or logistics unless overridden."""

    params = dict(
        dc_capacity_mw=2.0,
        dc_utilization_pct=100.0,
        logistics_mw=0.0,
        battery_capacity_mwh=10.0,
        battery_power_mw=5.0,
        solar_target_mwp=0.0,
        contract_end=pd.Timestamp("2040-01-01"),
    )
    params.update(overrides)
    return SimConfig(**params)


def test_flat_profile_has_no_restriction_or_deficit() -> None:
    """Unrestricted year with demand below the connection never falls short."""

    grid_df = full_capacity_year(2025)
    cfg = _base_cfg(battery_capacity_mwh=40.0, battery_power_mw=10.0)

    result = simulate_year(grid_df, None, cfg)

    assert len(result.steps) == HOURS_PER_YEAR
    assert result.total_hours_restricted == 0
    assert result.load_deficit_mwh_with_bat == pytest.approx(0.0)
    assert result.total_load_consumption == pytest.approx(2.0 * HOURS_PER_YEAR)
    assert result.events == []
    assert result.outage_events == []
    assert result.distribution == []
    # Battery stays full and idle, so every hour offers min(10, 10 - 2) MW.
    assert result.trading_hours_available == HOURS_PER_YEAR
    assert result.trading_volume_potential_mwh == pytest.approx(8.0 * HOURS_PER_YEAR)


def test_single_restricted_hour_is_served_by_grid() -> None:
    grid_df = full_capacity_year(2025)
    grid_df.loc[100, "grid_limit_mw"] = 5.0
    cfg = _base_cfg()

    result = simulate_year(grid_df, None, cfg)

    step = result.steps[100]
    assert step.grid_limit_mw == pytest.approx(5.0)
    assert step.grid_to_load_mw == pytest.approx(2.0)
    assert step.shortage_mw == pytest.approx(0.0)
    assert result.total_hours_restricted == 1
    assert result.total_mwh_restricted_grid == pytest.approx(5.0)
    assert result.load_deficit_mwh_with_bat == pytest.approx(0.0)
    assert len(result.events) == 1
    assert result.events[0].mitigated is True


def test_forced_shortage_drains_battery_then_falls_short() -> None:
    grid_df = pd.DataFrame(
        {
            "timestamp": pd.date_range("2025-01-01", periods=2, freq="h"),
            "grid_limit_mw": [0.0, 10.0],
        }
    )
    cfg = _base_cfg(dc_capacity_mw=3.0, battery_capacity_mwh=1.0, battery_power_mw=5.0)

    result = simulate_year(grid_df, None, cfg)

    first, second = result.steps
    assert first.bat_to_load_mw == pytest.approx(1.0)
    assert first.shortage_mw == pytest.approx(2.0)
    assert first.soc_end_mwh == pytest.approx(0.0)
    # Next hour refills the single MWh from grid headroom.
    assert second.grid_to_bat_mw == pytest.approx(1.0)
    assert second.soc_end_mwh == pytest.approx(1.0)
    assert result.load_deficit_mwh_no_bat == pytest.approx(3.0)
    assert result.load_deficit_mwh_with_bat == pytest.approx(2.0)


def test_contract_end_before_series_lifts_every_restriction() -> None:
    grid_df = full_capacity_year(2025)
    grid_df["grid_limit_mw"] = [float(i % 7) for i in range(len(grid_df))]
    cfg = _base_cfg(contract_end=pd.Timestamp("2020-01-01"))

    result = simulate_year(grid_df, None, cfg)

    assert result.total_hours_restricted == 0
    assert all(step.grid_limit_mw == cfg.connection_max_mw for step in result.steps)
    assert result.events == []


def test_contract_end_mid_series_lifts_limit_from_that_hour() -> None:
    grid_df = pd.DataFrame(
        {
            "timestamp": pd.date_range("2035-12-31 22:00", periods=4, freq="h"),
            "grid_limit_mw": [4.0, 4.0, 4.0, 4.0],
        }
    )
    cfg = _base_cfg(contract_end=pd.Timestamp("2036-01-01"))

    result = simulate_year(grid_df, None, cfg)

    assert [s.grid_limit_mw for s in result.steps] == [4.0, 4.0, 10.0, 10.0]
    assert result.total_hours_restricted == 2


def test_empty_input_returns_zero_result_with_full_trading_potential() -> None:
    cfg = _base_cfg(battery_power_mw=3.0)
    empty = pd.DataFrame(columns=["timestamp", "grid_limit_mw"])

    result = simulate_year(empty, None, cfg)

    assert result.steps == []
    assert result.total_load_consumption == 0.0
    assert result.monthly_stats == []
    assert result.trading_hours_available == HOURS_PER_YEAR
    assert result.trading_volume_potential_mwh == pytest.approx(3.0 * HOURS_PER_YEAR)


def test_missing_columns_raise() -> None:
    with pytest.raises(ValueError):
        simulate_year(pd.DataFrame({"timestamp": []}), None, _base_cfg())


def test_solar_profile_is_reused_across_years() -> None:
    """A 2023 profile feeds a 2025 run through the month/day/hour key."""

    solar_df = pd.DataFrame(
        {
            "timestamp": pd.to_datetime(["2023-06-01 12:00", "2023-06-01 13:00"]),
            "generation_mw": [1.0, 0.5],
        }
    )
    grid_df = pd.DataFrame(
        {
            "timestamp": pd.date_range("2025-06-01 11:00", periods=3, freq="h"),
            "grid_limit_mw": [10.0, 10.0, 10.0],
        }
    )
    cfg = _base_cfg(solar_base_mwp=4.0, solar_target_mwp=8.0)

    result = simulate_year(grid_df, solar_df, cfg)

    assert [s.solar_generation_mw for s in result.steps] == pytest.approx([0.0, 2.0, 1.0])
    assert result.steps[1].solar_to_load_mw == pytest.approx(2.0)
    assert result.steps[1].grid_to_load_mw == pytest.approx(0.0)
    assert result.total_solar_generation == pytest.approx(3.0)


def test_invalid_solar_scaling_ignores_generation(caplog: pytest.LogCaptureFixture) -> None:
    solar_df = pd.DataFrame(
        {"timestamp": pd.to_datetime(["2025-06-01 12:00"]), "generation_mw": [3.0]}
    )
    grid_df = pd.DataFrame(
        {"timestamp": pd.to_datetime(["2025-06-01 12:00"]), "grid_limit_mw": [10.0]}
    )
    cfg = _base_cfg(solar_base_mwp=0.0, solar_target_mwp=5.0)

    with caplog.at_level(logging.WARNING, logger="services.simulation_core"):
        result = simulate_year(grid_df, solar_df, cfg)

    assert cfg.solar_scale_factor == 0.0
    assert result.total_solar_generation == 0.0
    assert "Invalid solar scaling" in caplog.text

    # A zero target is a valid "no solar" setting and stays silent.
    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="services.simulation_core"):
        simulate_year(grid_df, solar_df, _base_cfg(solar_target_mwp=0.0))
    assert "Invalid solar scaling" not in caplog.text


def test_monthly_stats_cover_all_calendar_months() -> None:
    grid_df = full_capacity_year(2025)
    march_hour = grid_df.index[grid_df["timestamp"] == pd.Timestamp("2025-03-10 03:00")][0]
    grid_df.loc[march_hour, "grid_limit_mw"] = 0.0
    cfg = _base_cfg(battery_capacity_mwh=0.5)

    result = simulate_year(grid_df, None, cfg)

    assert [m.month_index for m in result.monthly_stats] == list(range(1, 13))
    march = result.monthly_stats[2]
    assert march.month_label == "Mar"
    assert march.restricted_hours == 1
    assert march.restricted_mwh == pytest.approx(10.0)
    assert march.deficit_mitigated_by_bat == pytest.approx(0.5)
    assert march.deficit_net == pytest.approx(1.5)
    assert sum(m.deficit_net for m in result.monthly_stats) == pytest.approx(result.load_deficit_mwh_with_bat)


def test_worst_week_is_centered_on_lowest_soc() -> None:
    grid_df = full_capacity_year(2025)
    grid_df.loc[1000, "grid_limit_mw"] = 0.0
    cfg = _base_cfg()

    result = simulate_year(grid_df, None, cfg)

    window = result.worst_week_steps
    assert len(window) == 24 * 7
    assert window[0].timestamp == result.steps[1000 - 72].timestamp
    assert min(s.soc_end_mwh for s in window) == pytest.approx(8.0)


def test_battery_autonomy_uses_average_demand() -> None:
    cfg = _base_cfg(logistics_mw=1.2, logistics_start_hour=6, logistics_end_hour=18)
    result = simulate_year(full_capacity_year(2025), None, cfg)

    # 2 MW site + 1.2 MW for 12 of 24 hours = 2.6 MW average.
    assert result.battery_autonomy_hours == pytest.approx(10.0 / 2.6)


def test_config_from_dict_rejects_unknown_fields() -> None:
    cfg = SimConfig.from_dict({"dc_capacity_mw": 4.0, "contract_end": "2030-01-01"})
    assert cfg.dc_capacity_mw == 4.0
    assert cfg.contract_end == pd.Timestamp("2030-01-01")

    with pytest.raises(ValueError):
        SimConfig.from_dict({"dc_capacity": 4.0})


def test_step_and_monthly_frames_have_one_column_per_field() -> None:
    grid_df = full_capacity_year(2025)
    grid_df.loc[grid_df["timestamp"].dt.month == 7, "grid_limit_mw"] = 1.0
    result = simulate_year(grid_df, None, _base_cfg(battery_capacity_mwh=0.0, battery_power_mw=0.0))

    steps_df = steps_to_frame(result.steps)
    monthly_df = monthly_stats_to_frame(result.monthly_stats)

    assert len(steps_df) == len(result.steps)
    assert "shortage_mw" in steps_df.columns
    assert list(monthly_df["month_label"]) == [
        "Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"
    ]
    july = monthly_df.set_index("month_index").loc[7]
    assert july["restricted_hours"] == 31 * 24
    assert july["deficit_net"] == pytest.approx(31 * 24 * 1.0)
    assert monthly_df["deficit_net"].sum() == pytest.approx(result.load_deficit_mwh_with_bat)
    assert steps_to_frame([]).empty
    assert monthly_stats_to_frame([]).empty
