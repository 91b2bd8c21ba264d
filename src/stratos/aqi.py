# Stratos: track balloon positions and nearby air quality
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
US EPA Air Quality Index (AQI) from PM2.5 concentrations.

The US EPA AQI uses a 0-500 scale divided into six categories:
Good (0-50), Moderate (51-100), Unhealthy for Sensitive Groups (101-150),
Unhealthy (151-200), Very Unhealthy (201-300), Hazardous (301+).

Only PM2.5 is needed here: OpenAQ station readings are converted to an AQI
for display next to a balloon position.

Reference: https://www.airnow.gov/aqi/aqi-basics/
CFR: 40 CFR Appendix G to Part 58 (PM2.5 breakpoints revised May 2024)
"""

from typing import TypedDict

from .types import AQICategory


class Breakpoint(TypedDict):
    """A single AQI breakpoint definition."""

    low_conc: float  # Low concentration bound (inclusive)
    high_conc: float  # High concentration bound (inclusive)
    low_aqi: int  # Low AQI bound
    high_aqi: int  # High AQI bound


# Upper AQI bound of each category, in ascending order
CATEGORY_UPPER_BOUNDS = [
    (50, AQICategory.GOOD),
    (100, AQICategory.MODERATE),
    (150, AQICategory.UNHEALTHY_SENSITIVE),
    (200, AQICategory.UNHEALTHY),
    (300, AQICategory.VERY_UNHEALTHY),
]

COLORS = {
    AQICategory.GOOD: "#00E400",  # Green
    AQICategory.MODERATE: "#FFFF00",  # Yellow
    AQICategory.UNHEALTHY_SENSITIVE: "#FF7E00",  # Orange
    AQICategory.UNHEALTHY: "#FF0000",  # Red
    AQICategory.VERY_UNHEALTHY: "#8F3F97",  # Purple
    AQICategory.HAZARDOUS: "#7E0023",  # Maroon
}

# PM2.5 (µg/m³, 24-hour) - Updated May 2024
# Federal Register: 89 FR 16202 (February 7, 2024)
PM25_BREAKPOINTS: list[Breakpoint] = [
    {"low_conc": 0.0, "high_conc": 9.0, "low_aqi": 0, "high_aqi": 50},
    {"low_conc": 9.1, "high_conc": 35.4, "low_aqi": 51, "high_aqi": 100},
    {"low_conc": 35.5, "high_conc": 55.4, "low_aqi": 101, "high_aqi": 150},
    {"low_conc": 55.5, "high_conc": 125.4, "low_aqi": 151, "high_aqi": 200},
    {"low_conc": 125.5, "high_conc": 225.4, "low_aqi": 201, "high_aqi": 300},
    {"low_conc": 225.5, "high_conc": 325.4, "low_aqi": 301, "high_aqi": 400},
    {"low_conc": 325.5, "high_conc": 500.4, "low_aqi": 401, "high_aqi": 500},
]

AQI_MAX = 500


def truncate(value: float, decimal_places: int) -> float:
    """
    Truncate a value to a specified number of decimal places.

    Note: This truncates (floors toward zero), not rounds.
    """
    if decimal_places == 0:
        return float(int(value))
    factor = 10**decimal_places
    return float(int(value * factor)) / factor


def calculate_aqi_from_breakpoints(
    concentration: float,
    breakpoints: list[Breakpoint],
) -> int | None:
    """
    Calculate AQI value using linear interpolation between breakpoints.

    AQI = ((high_aqi - low_aqi) / (high_conc - low_conc)) * (conc - low_conc) + low_aqi

    Args:
        concentration: Pollutant concentration (must be in correct units)
        breakpoints: List of breakpoint definitions, sorted by concentration

    Returns:
        int | None: Interpolated AQI, or None if concentration is out of range
    """
    for bp in breakpoints:
        if bp["low_conc"] <= concentration <= bp["high_conc"]:
            aqi_range = bp["high_aqi"] - bp["low_aqi"]
            conc_range = bp["high_conc"] - bp["low_conc"]

            if conc_range == 0:
                return bp["low_aqi"]

            aqi_value = (aqi_range / conc_range) * (
                concentration - bp["low_conc"]
            ) + bp["low_aqi"]
            return round(aqi_value)

    return None


def pm25_to_aqi(pm25: float) -> int:
    """
    Convert a PM2.5 concentration to a US EPA AQI value.

    The concentration is truncated to 0.1 µg/m³ before interpolation, as the
    EPA specifies, which also closes the gaps between breakpoint bands.
    Negative readings (seen from uncalibrated sensors) count as zero, and
    anything above the top breakpoint is reported as 500.

    Args:
        pm25: PM2.5 concentration in µg/m³

    Returns:
        int: AQI value, 0-500

    Example:
        >>> pm25_to_aqi(9.0)
        50
        >>> pm25_to_aqi(35.4)
        100
    """
    concentration = truncate(max(float(pm25), 0.0), 1)
    aqi = calculate_aqi_from_breakpoints(concentration, PM25_BREAKPOINTS)
    if aqi is None:
        return AQI_MAX
    return aqi


def aqi_category(aqi: int) -> AQICategory:
    """
    Map an AQI value to its category.

    Example:
        >>> aqi_category(51)
        <AQICategory.MODERATE: 'Moderate'>
    """
    for upper, category in CATEGORY_UPPER_BOUNDS:
        if aqi <= upper:
            return category
    return AQICategory.HAZARDOUS


def aqi_color(aqi: int) -> str:
    """Hex colour used for an AQI value on maps and legends."""
    return COLORS[aqi_category(aqi)]
