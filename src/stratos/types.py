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
Core type definitions for Stratos.

This module defines the records passed between the snapshot layer, the
balloon fetcher and the air quality resolver, plus the raw OpenAQ payload
shapes the resolver has to cope with.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, TypeAlias, TypedDict

# Snapshots are published hourly, 00 (most recent) to 24 hours ago
MIN_TIME_INDEX = 0
MAX_TIME_INDEX = 24
TIME_INDICES = range(MIN_TIME_INDEX, MAX_TIME_INDEX + 1)


class SnapshotStatus(str, Enum):
    """Probe outcome for one hourly snapshot."""

    UNKNOWN = "unknown"
    MISSING = "missing"  # Resource absent or unreachable
    INVALID = "invalid"  # Present, but not a JSON array
    VALID = "valid"


@dataclass(frozen=True)
class PositionRecord:
    """A single balloon position."""

    latitude: float
    longitude: float
    altitude_km: float

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.latitude, self.longitude, self.altitude_km)


@dataclass(frozen=True)
class Availability:
    """
    Immutable snapshot of which time indices can be fetched.

    Computed once per load cycle by ``probe_all`` and passed explicitly to
    whatever needs it. Updates (such as reclassifying an index after a failed
    download) return a new snapshot rather than mutating this one.

    Attributes:
        statuses: Probe outcome per time index. Indices absent from the
            mapping have not been probed.
    """

    statuses: Mapping[int, SnapshotStatus] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze a private copy so callers cannot mutate it behind our back
        object.__setattr__(self, "statuses", MappingProxyType(dict(self.statuses)))

    @classmethod
    def unprobed(cls) -> "Availability":
        """Empty snapshot, used while probing is still in progress."""
        return cls({})

    def status(self, index: int) -> SnapshotStatus:
        return self.statuses.get(index, SnapshotStatus.UNKNOWN)

    @property
    def valid(self) -> tuple[int, ...]:
        """Indices probed valid, ascending."""
        return tuple(
            sorted(i for i, s in self.statuses.items() if s is SnapshotStatus.VALID)
        )

    @property
    def invalid(self) -> frozenset[int]:
        """Probed indices that cannot be used: missing or malformed."""
        return frozenset(
            i
            for i, s in self.statuses.items()
            if s in (SnapshotStatus.MISSING, SnapshotStatus.INVALID)
        )

    @property
    def missing(self) -> frozenset[int]:
        return frozenset(
            i for i, s in self.statuses.items() if s is SnapshotStatus.MISSING
        )

    @property
    def malformed(self) -> frozenset[int]:
        return frozenset(
            i for i, s in self.statuses.items() if s is SnapshotStatus.INVALID
        )

    def with_invalid(self, index: int) -> "Availability":
        """Return a copy with ``index`` reclassified as invalid."""
        statuses = dict(self.statuses)
        statuses[index] = SnapshotStatus.INVALID
        return Availability(statuses)


# =============================================================================
# Air quality readings
# =============================================================================


class AQICategory(str, Enum):
    """US EPA AQI categories, in ascending order of severity."""

    GOOD = "Good"
    MODERATE = "Moderate"
    UNHEALTHY_SENSITIVE = "Unhealthy for Sensitive Groups"
    UNHEALTHY = "Unhealthy"
    VERY_UNHEALTHY = "Very Unhealthy"
    HAZARDOUS = "Hazardous"

    @property
    def label(self) -> str:
        return self.value


class NoDataReason(str, Enum):
    NO_STATIONS_IN_RANGE = "no-stations-in-range"
    NO_PM25_FIELD_FOUND = "no-pm25-field-found"
    API_KEY_MISSING = "api-key-missing"


class FailureReason(str, Enum):
    NETWORK = "network"
    API_ERROR = "api-error"


@dataclass(frozen=True)
class Resolved:
    """A PM2.5 reading resolved from a nearby OpenAQ station."""

    pm25: float
    aqi: int
    status: AQICategory
    station_label: str  # Station name with rounded distance
    sensor_id: int | None
    sensor_label: str
    source: str = "OpenAQ v3"
    station_id: int | None = None
    distance_km: float | None = None


@dataclass(frozen=True)
class NoData:
    reason: NoDataReason


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    detail: str = ""


AirQualityReading: TypeAlias = Resolved | NoData | Failed


# =============================================================================
# Raw OpenAQ v3 payloads
# =============================================================================


class ParameterPayload(TypedDict, total=False):
    id: int
    name: str
    units: str
    displayName: str


class SensorPayload(TypedDict, total=False):
    id: int
    name: str
    parameter: ParameterPayload


class LocationPayload(TypedDict, total=False):
    """One entry of ``GET /locations`` results."""

    id: int
    name: str
    coordinates: dict[str, float]
    sensors: list[SensorPayload]


class LatestPayload(TypedDict, total=False):
    """
    One entry of ``GET /locations/{id}/latest`` results.

    The sensor identifier appears as ``sensorsId`` or ``sensorId`` depending
    on the API revision; the parameter may be inline, nested under
    ``sensor``, or absent entirely.
    """

    value: Any
    sensorsId: int
    sensorId: int
    parameter: ParameterPayload
    sensor: SensorPayload
    name: str


# Function type aliases
SnapshotProbe: TypeAlias = Callable[[int], SnapshotStatus]
"""
A function that classifies one snapshot.

Args:
    index: Time index to probe

Returns:
    SnapshotStatus: Never raises
"""
