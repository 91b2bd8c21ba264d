"""
Tests for snapshot probing and time index selection.

Probe outcomes are exercised against mocked HTTP responses; concurrency is
exercised with an injected probe function so no HTTP is involved.
"""

import random
import threading
import time

import pytest
import requests
import responses

from stratos.snapshots import (
    _read_bounded,
    describe_index,
    nearest_available,
    probe_all,
    probe_snapshot,
    snapshot_url,
    summarize_indices,
    validate_time_index,
)
from stratos.types import TIME_INDICES, SnapshotStatus

SNAPSHOT_BASE = "https://snapshots.test/treasure"

URL_03 = f"{SNAPSHOT_BASE}/03.json"

# ============================================================================
# URLs and index validation
# ============================================================================


def test_snapshot_url_zero_pads_index():
    """Test that indices are zero-padded to two digits."""
    assert snapshot_url(3) == URL_03
    assert snapshot_url(24) == f"{SNAPSHOT_BASE}/24.json"


def test_snapshot_url_explicit_base_strips_slash():
    """Test that an explicit base URL overrides configuration."""
    assert snapshot_url(0, "https://other.test/x/") == "https://other.test/x/00.json"


@pytest.mark.parametrize("index", [-1, 25, 3.0, "3", True])
def test_validate_time_index_rejects(index):
    """Test that out-of-range and non-integer indices are rejected."""
    with pytest.raises(ValueError):
        validate_time_index(index)


def test_validate_time_index_accepts_bounds():
    assert validate_time_index(0) == 0
    assert validate_time_index(24) == 24


# ============================================================================
# Tests for probe_snapshot()
# ============================================================================


@responses.activate
def test_probe_missing_on_404():
    """Test that a 404 HEAD classifies the snapshot as missing."""
    responses.add(responses.HEAD, URL_03, status=404)

    assert probe_snapshot(3) is SnapshotStatus.MISSING
    assert len(responses.calls) == 1


@responses.activate
def test_probe_missing_when_unreachable():
    """Test that a HEAD with no response classifies the snapshot as missing."""
    responses.add(
        responses.HEAD,
        URL_03,
        body=requests.exceptions.ConnectionError("Connection refused"),
    )

    assert probe_snapshot(3) is SnapshotStatus.MISSING


@responses.activate
def test_probe_invalid_on_wrong_content_type():
    """Test that a non-JSON Content-Type is invalid without downloading."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="text/html")

    assert probe_snapshot(3) is SnapshotStatus.INVALID
    assert len(responses.calls) == 1


@responses.activate
def test_probe_valid_json_array():
    """Test that a JSON array body is valid."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(responses.GET, URL_03, json=[[10.0, 20.0, 5.0]], status=200)

    assert probe_snapshot(3) is SnapshotStatus.VALID
    assert [c.request.method for c in responses.calls] == ["HEAD", "GET"]


@responses.activate
def test_probe_valid_empty_array():
    """Test that an empty array is still a valid snapshot."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(responses.GET, URL_03, json=[], status=200)

    assert probe_snapshot(3) is SnapshotStatus.VALID


@responses.activate
def test_probe_invalid_on_unparseable_body():
    """Test that a body that is not JSON is invalid."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(
        responses.GET,
        URL_03,
        body="[[1, 2, 3], [4, 5",
        status=200,
        content_type="application/json",
    )

    assert probe_snapshot(3) is SnapshotStatus.INVALID


@responses.activate
def test_probe_invalid_on_json_object():
    """Test that JSON other than an array is invalid."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(responses.GET, URL_03, json={"balloons": []}, status=200)

    assert probe_snapshot(3) is SnapshotStatus.INVALID


@responses.activate
def test_probe_invalid_on_get_error_status():
    """Test that a failing GET after a good HEAD is invalid."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(responses.GET, URL_03, status=500)

    assert probe_snapshot(3) is SnapshotStatus.INVALID


@responses.activate
def test_probe_invalid_when_body_exceeds_cap():
    """Test that oversize bodies are not parsed."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(responses.GET, URL_03, json=[[1, 2, 3]] * 50, status=200)

    assert probe_snapshot(3, max_bytes=64) is SnapshotStatus.INVALID


class TrickleResponse:
    """Stand-in for a streamed response whose chunks arrive slowly."""

    headers = {}

    def __init__(self, chunks, delay):
        self.chunks = chunks
        self.delay = delay

    def iter_content(self, chunk_size):
        for chunk in self.chunks:
            time.sleep(self.delay)
            yield chunk


def test_read_bounded_stops_at_deadline():
    """Test that a slow body is abandoned once the overall deadline passes."""
    response = TrickleResponse([b"[", b"[1, 2, 3]", b"]"], delay=0.05)

    with pytest.raises(requests.exceptions.ReadTimeout):
        _read_bounded(response, 1024, deadline=time.monotonic() + 0.02)


def test_read_bounded_within_deadline():
    response = TrickleResponse([b"[", b"]"], delay=0)

    assert _read_bounded(response, 1024, deadline=time.monotonic() + 5) == b"[]"


@responses.activate
def test_snapshot_invalid_when_body_misses_deadline():
    """Test that a body still arriving after the deadline is invalid."""
    responses.add(responses.HEAD, URL_03, status=200, content_type="application/json")
    responses.add(responses.GET, URL_03, json=[[1, 2, 3]], status=200)

    # A deadline already in the past is exceeded by the first chunk
    assert probe_snapshot(3, deadline=-1) is SnapshotStatus.INVALID


# ============================================================================
# Tests for probe_all()
# ============================================================================


def test_probe_all_covers_every_index():
    """Test that every index ends up either valid or invalid."""

    def probe(index):
        if index % 5 == 0:
            return SnapshotStatus.MISSING
        if index % 7 == 0:
            return SnapshotStatus.INVALID
        return SnapshotStatus.VALID

    availability = probe_all(probe=probe)

    assert set(availability.valid) | availability.invalid == set(TIME_INDICES)
    assert not set(availability.valid) & availability.invalid
    assert availability.missing == {0, 5, 10, 15, 20}
    assert availability.malformed == {7, 14, 21}


def test_probe_all_bounds_concurrency():
    """Test that no more than four probes are ever in flight."""
    lock = threading.Lock()
    active = 0
    peak = 0
    # The first four probes only return once all four are running together
    barrier = threading.Barrier(4, timeout=5)

    def probe(index):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        try:
            if index < 4:
                barrier.wait()
            return SnapshotStatus.VALID
        finally:
            with lock:
                active -= 1

    availability = probe_all(probe=probe)

    assert peak == 4
    assert availability.valid == tuple(TIME_INDICES)


def test_probe_all_respects_custom_limit():
    """Test that a lower concurrency limit is honoured."""
    lock = threading.Lock()
    active = 0
    peak = 0

    def probe(index):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.001)
        with lock:
            active -= 1
        return SnapshotStatus.VALID

    probe_all(probe=probe, max_concurrency=2)

    assert peak <= 2


def test_probe_all_independent_of_completion_order():
    """Test that shuffled probe latencies give the same classification."""
    expected = {
        i: SnapshotStatus.VALID if i % 2 else SnapshotStatus.MISSING
        for i in TIME_INDICES
    }

    for seed in range(3):
        delays = {i: random.Random(seed * 100 + i).uniform(0, 0.005) for i in TIME_INDICES}

        def probe(index):
            time.sleep(delays[index])
            return expected[index]

        availability = probe_all(probe=probe)
        assert dict(availability.statuses) == expected


def test_probe_all_treats_probe_exception_as_missing():
    """Test that a probe that raises does not abort the cycle."""

    def probe(index):
        if index == 6:
            raise RuntimeError("boom")
        return SnapshotStatus.VALID

    availability = probe_all(probe=probe)

    assert availability.status(6) is SnapshotStatus.MISSING
    assert len(availability.valid) == 24


def test_probe_all_rejects_zero_concurrency():
    with pytest.raises(ValueError, match="max_concurrency"):
        probe_all(probe=lambda i: SnapshotStatus.VALID, max_concurrency=0)


@responses.activate
def test_probe_all_default_probe_uses_http():
    """Test the default probe end to end for a subset of indices."""
    for index in (0, 1):
        url = f"{SNAPSHOT_BASE}/{index:02d}.json"
        responses.add(responses.HEAD, url, status=200, content_type="application/json")
        responses.add(responses.GET, url, json=[[1.0, 2.0, 3.0]], status=200)
    responses.add(responses.HEAD, f"{SNAPSHOT_BASE}/02.json", status=404)

    availability = probe_all(indices=[0, 1, 2])

    assert availability.valid == (0, 1)
    assert availability.missing == {2}


# ============================================================================
# Selection helpers
# ============================================================================


class TestNearestAvailable:
    def test_current_kept_when_available(self):
        assert nearest_available(5, [3, 5, 9]) == 5

    def test_moves_to_closest(self):
        assert nearest_available(8, [3, 5, 9]) == 9

    def test_tie_goes_to_lower_index(self):
        assert nearest_available(4, [3, 5, 9]) == 3

    def test_nothing_available_keeps_current(self):
        assert nearest_available(4, []) == 4


@pytest.mark.parametrize(
    "indices, expected",
    [
        ([], "None"),
        ([4], "4h"),
        ([0, 1, 2, 3, 5, 7, 8, 9], "0-3h, 5h, 7-9h"),
        ([9, 8, 7], "7-9h"),
    ],
)
def test_summarize_indices(indices, expected):
    assert summarize_indices(indices) == expected


def test_describe_index():
    assert describe_index(0) == "Current"
    assert describe_index(1) == "1 hour ago"
    assert describe_index(12) == "12 hours ago"
