"""
Tests for balloon snapshot download and position filtering.

Tests the availability short-circuits, the mapping of HTTP failures onto
fetch errors, and the per-entry filtering of snapshot payloads, with mocked
HTTP responses.
"""

import math

import pandas as pd
import pytest
import requests
import responses

from stratos.balloons import (
    POSITION_COLUMNS,
    FetchErrorKind,
    SnapshotFetchError,
    fetch_balloons,
    filter_positions,
    parse_position,
    positions_to_frame,
)
from stratos.types import Availability, PositionRecord, SnapshotStatus

SNAPSHOT_BASE = "https://snapshots.test/treasure"

VALID = SnapshotStatus.VALID
MISSING = SnapshotStatus.MISSING
INVALID = SnapshotStatus.INVALID


def url(index):
    return f"{SNAPSHOT_BASE}/{index:02d}.json"


# ============================================================================
# Tests for parse_position() / filter_positions()
# ============================================================================


def test_filter_drops_malformed_entries():
    """Test the canonical mix of good and bad entries."""
    payload = [[91, 0, 1], [10, 10, 5], ["x", 1, 1], [10, 10, math.nan]]

    assert filter_positions(payload) == [PositionRecord(10.0, 10.0, 5.0)]


def test_filter_preserves_order():
    payload = [[1, 2, 3], [4, 5, 6], [7, 8, 9]]
    records = filter_positions(payload)
    assert [r.latitude for r in records] == [1.0, 4.0, 7.0]


def test_filter_non_list_payload_is_empty():
    assert filter_positions({"balloons": []}) == []
    assert filter_positions(None) == []


@pytest.mark.parametrize(
    "raw",
    [
        [1, 2],
        [1, 2, 3, 4],
        [1, 2, None],
        [True, 2, 3],
        [0, 181, 1],
        [-90.5, 0, 1],
        [0, 0, math.inf],
        "1,2,3",
        None,
    ],
)
def test_parse_position_rejects(raw):
    assert parse_position(raw) is None


def test_parse_position_accepts_boundaries():
    assert parse_position([90, -180, 0]) == PositionRecord(90.0, -180.0, 0.0)


def test_parse_position_keeps_negative_altitude():
    """Altitude is not range-checked."""
    assert parse_position([0, 0, -0.2]) == PositionRecord(0.0, 0.0, -0.2)


# ============================================================================
# Tests for fetch_balloons() - availability checks
# ============================================================================


@responses.activate
def test_probed_invalid_index_fails_without_request():
    """Test that an index probed as invalid fails with zero network calls."""
    availability = Availability({0: VALID, 2: INVALID})

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(2, availability)

    assert excinfo.value.kind is FetchErrorKind.INVALID_FORMAT
    assert len(responses.calls) == 0


@responses.activate
def test_index_outside_valid_set_returns_empty():
    """Test that a known-unavailable index returns nothing without a request."""
    availability = Availability({0: VALID, 3: MISSING})

    assert fetch_balloons(3, availability) == []
    assert fetch_balloons(7, availability) == []
    assert len(responses.calls) == 0


@responses.activate
def test_missing_index_without_valid_set_raises():
    """Test that a missing index is reported when nothing is valid."""
    availability = Availability({3: MISSING})

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(3, availability)

    assert excinfo.value.kind is FetchErrorKind.MISSING
    assert len(responses.calls) == 0


@responses.activate
def test_force_skips_availability_checks():
    """Test that force downloads even an index probed as invalid."""
    responses.add(responses.GET, url(2), json=[[1, 2, 3]], status=200)

    records = fetch_balloons(2, Availability({0: VALID, 2: INVALID}), force=True)

    assert records == [PositionRecord(1.0, 2.0, 3.0)]
    assert len(responses.calls) == 1


# ============================================================================
# Tests for fetch_balloons() - downloads
# ============================================================================


@responses.activate
def test_fetch_valid_snapshot():
    """Test a successful fetch filters the payload."""
    responses.add(
        responses.GET,
        url(0),
        json=[[51.5, -0.12, 12.3], [95, 0, 1], [40.7, -74.0, 8.1]],
        status=200,
    )

    records = fetch_balloons(0, Availability({0: VALID}))

    assert records == [
        PositionRecord(51.5, -0.12, 12.3),
        PositionRecord(40.7, -74.0, 8.1),
    ]


@responses.activate
def test_unprobed_index_is_fetched():
    """Test that an index with no probe result is downloaded."""
    responses.add(responses.GET, url(5), json=[], status=200)

    assert fetch_balloons(5, Availability.unprobed()) == []
    assert len(responses.calls) == 1


@responses.activate
def test_unparseable_snapshot_is_reclassified():
    """Test that a JSON parse failure reports a reclassified availability."""
    responses.add(responses.GET, url(4), body="[[1, 2,", status=200)
    availability = Availability({4: VALID, 5: VALID})

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(4, availability)

    error = excinfo.value
    assert error.kind is FetchErrorKind.INVALID_FORMAT
    assert error.availability.valid == (5,)
    assert 4 in error.availability.malformed
    # Caller's snapshot untouched
    assert availability.valid == (4, 5)


@responses.activate
def test_json_object_snapshot_is_reclassified():
    """Test that well-formed JSON that is not an array is an invalid format."""
    responses.add(responses.GET, url(6), json={"balloons": [[1, 2, 3]]}, status=200)
    availability = Availability({6: VALID, 7: VALID})

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(6, availability)

    error = excinfo.value
    assert error.kind is FetchErrorKind.INVALID_FORMAT
    assert error.availability.valid == (7,)
    assert 6 in error.availability.malformed


@responses.activate
def test_server_error_status(no_retry_wait):
    """Test that a 5xx is retried and then reported with its status."""
    responses.add(responses.GET, url(1), status=503)

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(1, Availability({1: VALID}))

    assert excinfo.value.kind is FetchErrorKind.SERVER_ERROR
    assert excinfo.value.status == 503
    assert len(responses.calls) == 3


@responses.activate
def test_client_error_not_retried():
    """Test that a 4xx is reported immediately."""
    responses.add(responses.GET, url(1), status=403)

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(1, Availability.unprobed())

    assert excinfo.value.kind is FetchErrorKind.SERVER_ERROR
    assert excinfo.value.status == 403
    assert len(responses.calls) == 1


@responses.activate
def test_no_response(no_retry_wait):
    """Test that a connection failure is reported as no response."""
    responses.add(
        responses.GET,
        url(1),
        body=requests.exceptions.ConnectionError("Connection refused"),
    )

    with pytest.raises(SnapshotFetchError) as excinfo:
        fetch_balloons(1, Availability({1: VALID}))

    assert excinfo.value.kind is FetchErrorKind.NO_RESPONSE
    assert excinfo.value.status is None


# ============================================================================
# Tests for SnapshotFetchError messages
# ============================================================================


class TestUserMessage:
    def test_invalid_format_current(self):
        error = SnapshotFetchError(0, FetchErrorKind.INVALID_FORMAT)
        assert error.user_message == (
            "Invalid JSON format in data file Current. "
            "Please select a different time period."
        )

    def test_invalid_format_past(self):
        error = SnapshotFetchError(3, FetchErrorKind.INVALID_FORMAT)
        assert "from 3 hours ago" in error.user_message

    def test_server_error_includes_status(self):
        error = SnapshotFetchError(0, FetchErrorKind.SERVER_ERROR, status=500)
        assert error.user_message == (
            "Failed to fetch balloon data. Please try again later. (Status: 500)"
        )

    def test_no_response(self):
        error = SnapshotFetchError(0, FetchErrorKind.NO_RESPONSE)
        assert error.user_message.endswith("(No response from server)")

    def test_str_is_user_message(self):
        error = SnapshotFetchError(2, FetchErrorKind.MISSING)
        assert str(error) == error.user_message


# ============================================================================
# Tests for positions_to_frame()
# ============================================================================


def test_positions_to_frame():
    records = [PositionRecord(1.0, 2.0, 3.0), PositionRecord(4.0, 5.0, 6.0)]

    df = positions_to_frame(records, time_index=2)

    assert list(df.columns) == POSITION_COLUMNS + ["time_index"]
    assert len(df) == 2
    assert df["altitude_km"].tolist() == [3.0, 6.0]
    assert (df["time_index"] == 2).all()


def test_positions_to_frame_empty():
    df = positions_to_frame([])

    assert isinstance(df, pd.DataFrame)
    assert df.empty
    assert list(df.columns) == POSITION_COLUMNS
