"""Reduce interpolated fields to the numbers shown to the user."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from _field_common import clamp
from . import psychro


def clamp_to_range(values, lo: float, hi: float) -> np.ndarray:
    """Clamp *values* into the anchor range ``[lo, hi]``."""
    return clamp(np.asarray(values, dtype=np.float64), lo, hi)


def _subset(values: np.ndarray, accepted) -> np.ndarray:
    if accepted is None:
        return values
    accepted = np.asarray(accepted)
    if accepted.dtype == bool and accepted.shape != values.shape:
        raise ValueError(f"mask of shape {accepted.shape} does not match values {values.shape}")
    return values[accepted]


def volumetric_average(values, accepted=None) -> Optional[float]:
    """Mean of *values* over the accepted points, ``None`` when there are none.

    *accepted* is a boolean mask or an index array; ``None`` means all.
    """
    sub = _subset(np.asarray(values, dtype=np.float64).reshape(-1), accepted)
    if sub.size == 0:
        return None
    return float(sub.mean())


@dataclass
class ScalarField:
    """One metric over the lattice, already clamped to the anchor range."""

    metric: str
    values: np.ndarray
    min_value: float
    max_value: float
    average: Optional[float]

    @property
    def n_points(self) -> int:
        return len(self.values)


def aggregate_field(metric: str, values, anchor_values, accepted=None) -> ScalarField:
    """Clamp *values* to the range of *anchor_values* and average them."""
    anchors = np.asarray(anchor_values, dtype=np.float64).reshape(-1)
    if anchors.size == 0:
        raise ValueError("aggregate_field needs at least one anchor value")
    lo, hi = float(anchors.min()), float(anchors.max())
    clamped = clamp_to_range(values, lo, hi).reshape(-1)
    return ScalarField(
        metric=metric,
        values=clamped,
        min_value=lo,
        max_value=hi,
        average=volumetric_average(clamped, accepted),
    )


@dataclass
class AirSummary:
    """Averaged air state of the room and the masses it implies."""

    volume: Optional[float]
    avg_temperature: Optional[float]
    avg_humidity: Optional[float]
    avg_abs_humidity: Optional[float]
    air_mass: Optional[float]
    water_mass: Optional[float]

    def to_wire(self) -> dict:
        return {
            "airMass": self.air_mass,
            "waterMass": self.water_mass,
            "avgTemp": self.avg_temperature,
            "avgHumidity": self.avg_humidity,
            "avgAbsHumidity": self.avg_abs_humidity,
        }


def summarize_air(
    volume: Optional[float],
    temperature_values,
    humidity_values,
    abs_humidity_values,
    accepted=None,
) -> AirSummary:
    """Average the three fields over the accepted points and derive masses.

    Masses use the averaged temperature and relative humidity over *volume*
    (m³).  Averages are ``None`` for an empty subset; masses are ``None``
    as well when *volume* is missing.
    """
    t = volumetric_average(temperature_values, accepted)
    rh = volumetric_average(humidity_values, accepted)
    ah = volumetric_average(abs_humidity_values, accepted)
    air = water = None
    if volume is not None and t is not None and rh is not None:
        air = float(psychro.air_mass(volume, t, rh))
        water = float(psychro.water_mass(volume, t, rh))
    return AirSummary(
        volume=volume,
        avg_temperature=t,
        avg_humidity=rh,
        avg_abs_humidity=ah,
        air_mass=air,
        water_mass=water,
    )
