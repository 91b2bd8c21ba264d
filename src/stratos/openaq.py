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
Nearest-station PM2.5 lookup from OpenAQ.

OpenAQ aggregates government monitoring stations and low-cost sensor networks
worldwide. Given a coordinate, this module finds nearby stations, reads the
latest measurements of each in turn and pulls out a PM2.5 value, which is
then converted to a US EPA AQI.

The ``/locations/{id}/latest`` response is irregular: the same fact ("this
value is PM2.5") may be carried by a sensor id, an inline parameter, a
parameter nested under the sensor, the station's sensor roster, or only by a
free-text name. Each of those shapes is handled by its own strategy
function, and strategies are tried in a fixed priority order.

API Documentation: https://docs.openaq.org/
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

import requests

from .aqi import aqi_category, pm25_to_aqi
from .config import (
    OPENAQ_TIMEOUT,
    STATION_MAX_DISTANCE_KM,
    STATION_SEARCH_LIMIT,
    STATION_SEARCH_RADIUS_M,
    get_openaq_api_key,
    get_openaq_base_url,
)
from .decorators import retry_on_network_error, with_logging
from .geo import haversine_km
from .lifecycle import CancellationToken, ResolutionCancelled
from .types import (
    AirQualityReading,
    Failed,
    FailureReason,
    LatestPayload,
    LocationPayload,
    NoData,
    NoDataReason,
    ParameterPayload,
    Resolved,
    SensorPayload,
)

logger = logging.getLogger(__name__)

OPENAQ_SOURCE = "OpenAQ v3"

# Sensors confirmed to report PM2.5 even when the latest reading omits the
# parameter entirely
KNOWN_PM25_SENSOR_IDS = frozenset({1437})

PM25_PARAMETER_ID = 2
PM25_PARAMETER_NAMES = frozenset({"pm25", "pm2.5"})
PM25_NAME_TOKENS = ("pm25", "pm2.5")


# ============================================================================
# LOW-LEVEL API FUNCTIONS
# ============================================================================


@retry_on_network_error
def _call_openaq_api(endpoint: str, params: dict, api_key: str | None = None) -> dict:
    """
    Low-level OpenAQ API caller with authentication and error handling.

    Args:
        endpoint: API endpoint (e.g., "locations", "locations/2178/latest")
        params: Query parameters
        api_key: OpenAQ API key (default: OPENAQ_API_KEY from the environment)

    Returns:
        dict: JSON response from API. A 404 is returned as an empty result set.

    Raises:
        ValueError: If no API key is configured, or the body is not JSON
        requests.HTTPError: If API returns error status
    """
    # Read at call time for testability
    api_key = api_key or get_openaq_api_key()
    if not api_key:
        raise ValueError(
            "OpenAQ API key required. Set OPENAQ_API_KEY in the environment. "
            "Get free key at: https://openaq.org/"
        )

    headers = {"Accept": "application/json", "X-API-Key": api_key}
    url = f"{get_openaq_base_url()}/{endpoint}"

    response = requests.get(url, params=params, headers=headers, timeout=OPENAQ_TIMEOUT)

    if response.status_code == 429:
        raise requests.HTTPError(
            "OpenAQ rate limit exceeded. Wait before retrying.",
            response=response,
        )

    if response.status_code == 404:
        # Location or data not found - this is common, not an error
        return {"results": [], "meta": {"found": 0}}

    response.raise_for_status()
    return response.json()


def _results(data: Any) -> list:
    """Extract the results list from a response, tolerating odd shapes."""
    if not isinstance(data, dict):
        return []
    results = data.get("results")
    return results if isinstance(results, list) else []


def _as_float(value: Any) -> float | None:
    """Coerce a reading value to a finite float, or None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_id(value: Any) -> int | None:
    """Accept integer identifiers only; anything else is treated as absent."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _parameter_label(parameter: dict) -> str:
    return _as_str(parameter.get("name")) or "PM2.5"


# ============================================================================
# RECORDS
# ============================================================================


@dataclass(frozen=True)
class StationCandidate:
    """A monitoring location returned by the OpenAQ location search."""

    id: int
    name: str
    latitude: float
    longitude: float
    distance_km: float
    sensors: tuple[SensorPayload, ...] = ()

    @classmethod
    def from_payload(
        cls, payload: LocationPayload, lat: float, lon: float
    ) -> "StationCandidate | None":
        """Build a candidate, or None if the location has no usable id or coordinates."""
        coordinates = _as_dict(payload.get("coordinates"))
        station_lat = _as_float(coordinates.get("latitude"))
        station_lon = _as_float(coordinates.get("longitude"))
        station_id = _as_id(payload.get("id"))
        if station_lat is None or station_lon is None or station_id is None:
            return None

        sensors = payload.get("sensors")
        if not isinstance(sensors, list):
            sensors = []

        return cls(
            id=station_id,
            name=_as_str(payload.get("name")) or "Unknown Location",
            latitude=station_lat,
            longitude=station_lon,
            distance_km=haversine_km(lat, lon, station_lat, station_lon),
            sensors=tuple(s for s in sensors if isinstance(s, dict)),
        )

    @property
    def label(self) -> str:
        return f"{self.name} ({round(self.distance_km)} km away)"

    def roster_sensor(self, sensor_id: int | None) -> SensorPayload | None:
        """The roster entry for a sensor id, if the location search listed it."""
        if sensor_id is None:
            return None
        for sensor in self.sensors:
            if _as_id(sensor.get("id")) == sensor_id:
                return sensor
        return None


@dataclass(frozen=True)
class LatestReading:
    """One entry of a station's latest measurements, normalised."""

    value: float | None
    sensor_id: int | None
    parameter: ParameterPayload | None
    sensor: SensorPayload | None
    name: str | None

    @classmethod
    def from_payload(cls, payload: LatestPayload) -> "LatestReading":
        # Both spellings appear in the wild
        sensor_id = _as_id(payload.get("sensorsId"))
        if sensor_id is None:
            sensor_id = _as_id(payload.get("sensorId"))

        parameter = payload.get("parameter")
        sensor = payload.get("sensor")

        return cls(
            value=_as_float(payload.get("value")),
            sensor_id=sensor_id,
            parameter=parameter if isinstance(parameter, dict) else None,
            sensor=sensor if isinstance(sensor, dict) else None,
            name=_as_str(payload.get("name")),
        )

    @property
    def any_sensor_id(self) -> int | None:
        """Top-level sensor id, falling back to the nested sensor's id."""
        if self.sensor_id is not None:
            return self.sensor_id
        return _as_id(_as_dict(self.sensor).get("id"))

    @property
    def display_name(self) -> str:
        """The reading's own name, else its sensor's name, else empty."""
        return self.name or _as_str(_as_dict(self.sensor).get("name")) or ""


@dataclass(frozen=True)
class Pm25Match:
    """A PM2.5 value located by one of the extraction strategies."""

    value: float
    sensor_id: int | None
    sensor_label: str
    strategy: str


Strategy = Callable[[LatestReading, StationCandidate], Pm25Match | None]


# ============================================================================
# STATION QUERIES
# ============================================================================


def search_stations(
    lat: float, lon: float, api_key: str | None = None
) -> list[StationCandidate]:
    """
    Find monitoring locations near a coordinate.

    Returns candidates in the order OpenAQ lists them, each with its
    great-circle distance from ``(lat, lon)``. Locations without coordinates
    are skipped.

    Raises:
        requests.RequestException: On transport or HTTP errors
        ValueError: If the response is not JSON
    """
    params = {
        "coordinates": f"{lat},{lon}",
        "radius": STATION_SEARCH_RADIUS_M,
        "limit": STATION_SEARCH_LIMIT,
    }
    data = _call_openaq_api("locations", params, api_key=api_key)

    candidates = []
    for payload in _results(data):
        if not isinstance(payload, dict):
            continue
        candidate = StationCandidate.from_payload(payload, lat, lon)
        if candidate is not None:
            candidates.append(candidate)

    logger.debug(f"Found {len(candidates)} OpenAQ locations near ({lat}, {lon})")
    return candidates


def within_range(
    candidates: Sequence[StationCandidate],
    max_distance_km: float = STATION_MAX_DISTANCE_KM,
) -> list[StationCandidate]:
    """
    Keep candidates no further than ``max_distance_km``, in original order.

    The location search radius is applied server-side; this second, wider
    cutoff is measured client-side from the station coordinates. The
    boundary is inclusive.
    """
    return [c for c in candidates if c.distance_km <= max_distance_km]


def fetch_latest(station_id: int, api_key: str | None = None) -> list[LatestReading]:
    """
    Fetch the latest measurements of a station.

    Raises:
        requests.RequestException: On transport or HTTP errors
        ValueError: If the response is not JSON
    """
    data = _call_openaq_api(f"locations/{station_id}/latest", {}, api_key=api_key)
    return [
        LatestReading.from_payload(entry)
        for entry in _results(data)
        if isinstance(entry, dict)
    ]


# ============================================================================
# PM2.5 EXTRACTION STRATEGIES
# ============================================================================


def identifies_pm25(parameter: Any) -> bool:
    """True if a parameter object names PM2.5 or carries its numeric id."""
    if not isinstance(parameter, dict):
        return False

    name = parameter.get("name")
    if isinstance(name, str) and name.lower() in PM25_PARAMETER_NAMES:
        return True

    return _as_id(parameter.get("id")) == PM25_PARAMETER_ID


def match_known_sensor(
    reading: LatestReading,
    station: StationCandidate,
    known_ids: frozenset = KNOWN_PM25_SENSOR_IDS,
) -> Pm25Match | None:
    """Strategy a: the reading comes from an allow-listed PM2.5 sensor."""
    if reading.value is not None and reading.sensor_id in known_ids:
        return Pm25Match(
            reading.value, reading.sensor_id, "Known PM2.5 sensor", "known-sensor"
        )
    return None


def match_parameter(
    reading: LatestReading, station: StationCandidate
) -> Pm25Match | None:
    """Strategy b: the reading's own parameter identifies PM2.5."""
    if reading.value is not None and identifies_pm25(reading.parameter):
        label = _parameter_label(reading.parameter)
        return Pm25Match(reading.value, reading.any_sensor_id, label, "parameter")
    return None


def match_nested_sensor(
    reading: LatestReading, station: StationCandidate
) -> Pm25Match | None:
    """Strategy c: the parameter nested under the reading's sensor identifies PM2.5."""
    nested = _as_dict(reading.sensor).get("parameter")
    if reading.value is not None and identifies_pm25(nested):
        return Pm25Match(
            reading.value, reading.any_sensor_id, _parameter_label(nested), "nested-sensor"
        )
    return None


def match_roster(reading: LatestReading, station: StationCandidate) -> Pm25Match | None:
    """
    Strategy d, first half: look the sensor id up in the station's roster.

    The roster from the location search lists each sensor with its
    parameter, so a bare sensor id can be resolved there.
    """
    if reading.value is None:
        return None
    sensor = station.roster_sensor(reading.sensor_id)
    if sensor is not None and identifies_pm25(sensor.get("parameter")):
        label = _parameter_label(sensor["parameter"])
        return Pm25Match(reading.value, reading.sensor_id, label, "roster")
    return None


def match_name(reading: LatestReading, station: StationCandidate) -> Pm25Match | None:
    """Strategy d, second half: the reading's (or its sensor's) name mentions PM2.5."""
    if reading.value is None:
        return None
    name = reading.display_name
    if any(token in name.lower() for token in PM25_NAME_TOKENS):
        return Pm25Match(reading.value, reading.any_sensor_id, name, "name")
    return None


# Tried across every reading before anything else
PRIORITY_STRATEGIES: tuple[Strategy, ...] = (match_known_sensor,)

# Tried together on each reading in turn; the first reading any of them
# accepts wins
DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    match_parameter,
    match_nested_sensor,
    match_roster,
    match_name,
)


def _first_match(attempts: Iterable[Pm25Match | None]) -> Pm25Match | None:
    for match in attempts:
        if match is not None:
            return match
    return None


def find_pm25(
    readings: Sequence[LatestReading],
    station: StationCandidate,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    priority: Sequence[Strategy] = PRIORITY_STRATEGIES,
) -> Pm25Match | None:
    """
    Locate a PM2.5 value among a station's latest readings.

    Two passes are made. Each ``priority`` strategy is first run over every
    reading, so an allow-listed sensor wins wherever it appears. Otherwise
    the readings are walked in order and each is offered to ``strategies``
    in turn; the earliest reading that any of them accepts wins.

    Args:
        readings: Normalised ``/latest`` entries, in response order
        station: The station the readings belong to (for its sensor roster)
        strategies: Per-reading strategies, in priority order
        priority: Strategies that take precedence over reading order

    Returns:
        Pm25Match | None: The first match, or None if nothing identifies PM2.5
    """
    match = _first_match(
        strategy(reading, station) for strategy in priority for reading in readings
    )
    if match is None:
        match = _first_match(
            strategy(reading, station) for reading in readings for strategy in strategies
        )

    if match is not None:
        logger.debug(
            f"PM2.5 for station {station.id} found by {match.strategy} "
            f"(sensor {match.sensor_id})"
        )
    return match


# ============================================================================
# RESOLUTION
# ============================================================================


def _failure(error: Exception) -> Failed:
    if isinstance(
        error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)
    ):
        return Failed(FailureReason.NETWORK, str(error))
    return Failed(FailureReason.API_ERROR, str(error))


@with_logging(expected=(ResolutionCancelled,))
def resolve_air_quality(
    lat: float,
    lon: float,
    token: CancellationToken | None = None,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    max_distance_km: float = STATION_MAX_DISTANCE_KM,
) -> AirQualityReading:
    """
    Resolve a PM2.5-based air quality reading for a coordinate.

    Stations are tried in the order OpenAQ returns them (first match, not
    nearest match). For each station within ``max_distance_km`` the latest
    measurements are fetched and searched for PM2.5; the first station that
    yields a value wins.

    Args:
        lat: Latitude of the point of interest
        lon: Longitude of the point of interest
        token: Cancellation token, checked after every network call
        strategies: Per-reading PM2.5 extraction strategies, in priority order
        max_distance_km: Client-side distance cutoff (inclusive)

    Returns:
        AirQualityReading: ``Resolved``, ``NoData`` or ``Failed``. Network
        and API faults are returned as ``Failed``, never raised.

    Raises:
        ResolutionCancelled: If the token is cancelled before a reading is
            produced

    Example:
        >>> reading = resolve_air_quality(51.52, -0.15)
        >>> if isinstance(reading, Resolved):
        ...     print(reading.station_label, reading.aqi, reading.status.label)
    """
    api_key = get_openaq_api_key()
    if not api_key:
        logger.debug("OPENAQ_API_KEY not set; skipping air quality lookup")
        return NoData(NoDataReason.API_KEY_MISSING)

    token = token or CancellationToken()
    token.raise_if_cancelled()

    try:
        candidates = search_stations(lat, lon, api_key=api_key)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"OpenAQ location search failed for ({lat}, {lon}): {e}")
        token.raise_if_cancelled()
        return _failure(e)
    token.raise_if_cancelled()

    stations = within_range(candidates, max_distance_km)
    if not stations:
        logger.info(f"No OpenAQ stations within {max_distance_km} km of ({lat}, {lon})")
        return NoData(NoDataReason.NO_STATIONS_IN_RANGE)

    for station in stations:
        try:
            readings = fetch_latest(station.id, api_key=api_key)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"OpenAQ latest readings failed for station {station.id}: {e}")
            token.raise_if_cancelled()
            return _failure(e)
        token.raise_if_cancelled()

        match = find_pm25(readings, station, strategies)
        if match is None:
            logger.debug(f"No PM2.5 reading at station {station.id}; trying next")
            continue

        aqi = pm25_to_aqi(match.value)
        return Resolved(
            pm25=match.value,
            aqi=aqi,
            status=aqi_category(aqi),
            station_label=station.label,
            sensor_id=match.sensor_id,
            sensor_label=match.sensor_label,
            source=OPENAQ_SOURCE,
            station_id=station.id,
            distance_km=station.distance_km,
        )

    return NoData(NoDataReason.NO_PM25_FIELD_FOUND)
