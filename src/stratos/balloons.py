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
Balloon position download for a single hourly snapshot.

A snapshot body is a JSON array of ``[latitude, longitude, altitude_km]``
triples. Real snapshots contain the odd malformed entry (wrong length,
strings, NaN, out-of-range coordinates); those entries are dropped and the
rest of the snapshot is kept.
"""

import logging
import math
from enum import Enum
from numbers import Real
from typing import Any, Iterable

import pandas as pd
import requests

from .config import SNAPSHOT_TIMEOUT
from .decorators import retry_on_network_error, with_logging
from .snapshots import describe_index, snapshot_url
from .types import Availability, PositionRecord, SnapshotStatus

logger = logging.getLogger(__name__)

POSITION_COLUMNS = ["latitude", "longitude", "altitude_km"]


class FetchErrorKind(str, Enum):
    MISSING = "missing"
    INVALID_FORMAT = "invalid-format"
    SERVER_ERROR = "server-error"
    NO_RESPONSE = "no-response"


class SnapshotFetchError(RuntimeError):
    """
    A snapshot could not be turned into balloon positions.

    Attributes:
        index: Time index that was requested
        kind: Failure classification
        status: HTTP status code for SERVER_ERROR, else None
        availability: For INVALID_FORMAT raised after a download, a copy of
            the caller's availability with ``index`` reclassified as
            invalid; otherwise None
    """

    def __init__(
        self,
        index: int,
        kind: FetchErrorKind,
        status: int | None = None,
        availability: Availability | None = None,
    ):
        self.index = index
        self.kind = kind
        self.status = status
        self.availability = availability
        super().__init__(self.user_message)

    @property
    def user_message(self) -> str:
        """Message suitable for showing to the person who picked the index."""
        when = describe_index(self.index)
        if self.index != 0:
            when = f"from {when}"

        if self.kind is FetchErrorKind.INVALID_FORMAT:
            return (
                f"Invalid JSON format in data file {when}. "
                "Please select a different time period."
            )
        if self.kind is FetchErrorKind.MISSING:
            return (
                f"No data file is available {when}. "
                "Please select a different time period."
            )

        message = "Failed to fetch balloon data. Please try again later."
        if self.kind is FetchErrorKind.SERVER_ERROR:
            return f"{message} (Status: {self.status})"
        return f"{message} (No response from server)"


# =============================================================================
# Position filtering
# =============================================================================


def _is_number(value: Any) -> bool:
    # bool is an int subclass, but true/false are not coordinates
    return isinstance(value, Real) and not isinstance(value, bool)


def parse_position(raw: Any) -> PositionRecord | None:
    """
    Convert one raw snapshot entry into a PositionRecord.

    Args:
        raw: Candidate ``[latitude, longitude, altitude_km]`` entry

    Returns:
        PositionRecord, or None if the entry is not exactly three finite
        numbers with latitude within ±90 and longitude within ±180
    """
    if not isinstance(raw, (list, tuple)) or len(raw) != 3:
        return None
    if not all(_is_number(v) and math.isfinite(v) for v in raw):
        return None

    latitude, longitude, altitude_km = (float(v) for v in raw)
    if abs(latitude) > 90 or abs(longitude) > 180:
        return None

    return PositionRecord(latitude, longitude, altitude_km)


def filter_positions(payload: Any) -> list[PositionRecord]:
    """
    Keep the well-formed entries of a snapshot payload, in order.

    Example:
        >>> filter_positions([[91, 0, 1], [10, 10, 5], ["x", 1, 1]])
        [PositionRecord(latitude=10.0, longitude=10.0, altitude_km=5.0)]
    """
    if not isinstance(payload, list):
        return []

    records = []
    for raw in payload:
        record = parse_position(raw)
        if record is not None:
            records.append(record)

    dropped = len(payload) - len(records)
    if dropped:
        logger.debug(f"Dropped {dropped} malformed balloon entries")

    return records


# =============================================================================
# Snapshot download
# =============================================================================


@retry_on_network_error
def _download_snapshot(url: str) -> requests.Response:
    response = requests.get(url, timeout=SNAPSHOT_TIMEOUT)
    response.raise_for_status()
    return response


@with_logging(expected=(SnapshotFetchError,))
def fetch_balloons(
    index: int,
    availability: Availability,
    force: bool = False,
    base_url: str | None = None,
) -> list[PositionRecord]:
    """
    Fetch the balloon positions recorded ``index`` hours ago.

    The availability snapshot is consulted before any request is made:
    indices probed as invalid fail straight away, and indices known not to be
    among the valid ones return no positions without a download.

    Args:
        index: Time index, 0-24
        availability: Result of the most recent ``probe_all``
        force: Skip the availability checks and always download
        base_url: Snapshot base URL (default: from configuration)

    Returns:
        list[PositionRecord]: Well-formed positions, in snapshot order. Empty
        if ``index`` is not among the valid indices of a non-empty snapshot.

    Raises:
        SnapshotFetchError: If the snapshot is known to be unusable or the
            download fails. For INVALID_FORMAT after a download, the error's
            ``availability`` holds the reclassified snapshot.
    """
    url = snapshot_url(index, base_url)

    if not force:
        status = availability.status(index)
        if status is SnapshotStatus.INVALID:
            raise SnapshotFetchError(index, FetchErrorKind.INVALID_FORMAT)
        if availability.valid and index not in availability.valid:
            logger.debug(f"Snapshot {index:02d} not available; nothing to fetch")
            return []
        if status is SnapshotStatus.MISSING:
            raise SnapshotFetchError(index, FetchErrorKind.MISSING)

    try:
        response = _download_snapshot(url)
    except requests.HTTPError as e:
        status_code = e.response.status_code if e.response is not None else None
        logger.warning(f"Snapshot {index:02d} download failed: {e}")
        raise SnapshotFetchError(
            index, FetchErrorKind.SERVER_ERROR, status=status_code
        ) from e
    except requests.RequestException as e:
        logger.warning(f"Snapshot {index:02d} download got no response: {e}")
        response = getattr(e, "response", None)
        if response is not None:
            raise SnapshotFetchError(
                index, FetchErrorKind.SERVER_ERROR, status=response.status_code
            ) from e
        raise SnapshotFetchError(index, FetchErrorKind.NO_RESPONSE) from e

    try:
        payload = response.json()
    except ValueError as e:
        logger.warning(f"Snapshot {index:02d} is not valid JSON: {e}")
        raise SnapshotFetchError(
            index,
            FetchErrorKind.INVALID_FORMAT,
            availability=availability.with_invalid(index),
        ) from e

    if not isinstance(payload, list):
        logger.warning(
            f"Snapshot {index:02d} is a JSON {type(payload).__name__}, not an array"
        )
        raise SnapshotFetchError(
            index,
            FetchErrorKind.INVALID_FORMAT,
            availability=availability.with_invalid(index),
        )

    records = filter_positions(payload)
    logger.info(f"Fetched {len(records)} valid balloons from {url}")
    return records


def positions_to_frame(
    records: Iterable[PositionRecord], time_index: int | None = None
) -> pd.DataFrame:
    """
    Tabulate positions as a DataFrame.

    Args:
        records: Positions to tabulate
        time_index: If given, added as a ``time_index`` column

    Returns:
        pd.DataFrame: Columns latitude, longitude, altitude_km (and
        time_index), one row per position
    """
    df = pd.DataFrame(
        [record.as_tuple() for record in records], columns=POSITION_COLUMNS
    ).astype(float)

    if time_index is not None:
        df["time_index"] = time_index

    return df
