"""Psychrometric helpers: moist-air density, absolute humidity and masses.

All functions accept scalars or numpy arrays (temperatures in °C, relative
humidity in percent) and broadcast element-wise.
"""

from __future__ import annotations

import numpy as np

STANDARD_PRESSURE = 101325.0  # Pa
R_DRY_AIR = 287.05  # J/(kg·K)
R_WATER_VAPOR = 461.5  # J/(kg·K)
KELVIN = 273.15


def saturation_vapor_pressure(temperature):
    """Saturation vapour pressure in Pa (Magnus–Tetens)."""
    T = np.asarray(temperature, dtype=np.float64)
    return 611.2 * np.exp(17.67 * T / (T + 243.5))


def vapor_pressure(temperature, humidity):
    """Actual vapour pressure in Pa for relative humidity *humidity* (%)."""
    return np.asarray(humidity, dtype=np.float64) / 100.0 * saturation_vapor_pressure(temperature)


def air_density(temperature, humidity, pressure: float = STANDARD_PRESSURE):
    """Moist-air density in kg/m³.

    ``rho = P_d / (R_d T) + P_v / (R_v T)`` with ``P_d = P - P_v``.
    """
    T_k = np.asarray(temperature, dtype=np.float64) + KELVIN
    p_v = vapor_pressure(temperature, humidity)
    p_d = pressure - p_v
    return p_d / (R_DRY_AIR * T_k) + p_v / (R_WATER_VAPOR * T_k)


def absolute_humidity(temperature, humidity):
    """Water-vapour density in g/m³."""
    T_k = np.asarray(temperature, dtype=np.float64) + KELVIN
    return vapor_pressure(temperature, humidity) / (R_WATER_VAPOR * T_k) * 1000.0


def air_mass(volume, temperature, humidity, pressure: float = STANDARD_PRESSURE):
    """Mass of moist air in kg occupying *volume* m³."""
    return air_density(temperature, humidity, pressure) * volume


def water_mass(volume, temperature, humidity):
    """Water-vapour mass in kg contained in *volume* m³."""
    return absolute_humidity(temperature, humidity) / 1000.0 * volume


def dew_point(temperature, humidity):
    """Dew point in °C (inverse Magnus–Tetens)."""
    T = np.asarray(temperature, dtype=np.float64)
    g = np.log(np.asarray(humidity, dtype=np.float64) / 100.0) + 17.67 * T / (T + 243.5)
    return 243.5 * g / (17.67 - g)
