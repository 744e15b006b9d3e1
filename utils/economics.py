"""Diesel backup economics for unmet grid demand."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

KWH_PER_MWH = 1000.0


@dataclass(frozen=True)
class EconomicInputs:
    """Fuel and tariff assumptions.

    Unmet demand is assumed to be served by a diesel generator instead of the
    grid. ``diesel_kwh_per_liter`` is the generator's electrical yield per
    liter of fuel; prices are in the same currency unit.
    """

    diesel_kwh_per_liter: float = 3.5
    diesel_price_per_liter: float = 1.50
    electricity_price_per_mwh: float = 100.0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "EconomicInputs":
        return cls(
            diesel_kwh_per_liter=float(payload.get("diesel_kwh_per_liter", cls.diesel_kwh_per_liter)),
            diesel_price_per_liter=float(payload.get("diesel_price_per_liter", cls.diesel_price_per_liter)),
            electricity_price_per_mwh=float(
                payload.get("electricity_price_per_mwh", cls.electricity_price_per_mwh)
            ),
        )


@dataclass(frozen=True)
class DieselCostOutputs:
    diesel_liters: float
    gross_diesel_cost: float
    avoided_grid_cost: float
    net_extra_cost: float


def diesel_liters_for(unmet_mwh: float, kwh_per_liter: float) -> float:
    """Liters of diesel needed to generate ``unmet_mwh``.

    A zero yield is treated as 1 kWh/L. Non-finite yields are not corrected
    and propagate into the result.
    """

    return unmet_mwh * KWH_PER_MWH / (kwh_per_liter or 1.0)


def compute_diesel_costs(unmet_mwh: float, inputs: EconomicInputs) -> DieselCostOutputs:
    """Translate unmet energy into diesel spend net of the grid bill it replaces.

    ``net_extra_cost`` is negative when diesel is cheaper than grid supply.
    """

    liters = diesel_liters_for(unmet_mwh, inputs.diesel_kwh_per_liter)
    gross = liters * inputs.diesel_price_per_liter
    avoided = unmet_mwh * inputs.electricity_price_per_mwh
    return DieselCostOutputs(
        diesel_liters=liters,
        gross_diesel_cost=gross,
        avoided_grid_cost=avoided,
        net_extra_cost=gross - avoided,
    )


def safe_pct(numerator: float, denominator: float) -> float:
    """Return ``numerator / denominator`` in percent, or 0 for a non-positive base."""

    if denominator > 0:
        return numerator / denominator * 100.0
    return 0.0
