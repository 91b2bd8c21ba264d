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
Discovery of which hourly balloon snapshots exist and are well-formed.

Snapshots are published as ``{base}/00.json`` (most recent) through
``{base}/24.json`` (24 hours ago). Some hours are missing and some are served
with a body that is not JSON, so each load cycle starts by probing every
index and recording the outcome in an immutable ``Availability`` snapshot.

Probing is cheap where it can be: a HEAD request settles absent files and
wrongly-typed ones, and only plausible candidates are downloaded, with a cap
on the number of bytes read.
"""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Iterable

import requests

from .config import (
    PROBE_CONCURRENCY,
    PROBE_DEADLINE,
    PROBE_MAX_BYTES,
    PROBE_TIMEOUT,
    get_snapshot_base_url,
)
from .decorators import with_logging
from .types import (
    MAX_TIME_INDEX,
    MIN_TIME_INDEX,
    TIME_INDICES,
    Availability,
    SnapshotProbe,
    SnapshotStatus,
)

logger = logging.getLogger(__name__)


def validate_time_index(index: int) -> int:
    """Return index unchanged, or raise ValueError if it is not 0-24."""
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValueError(f"Time index must be an integer, got {index!r}")
    if not MIN_TIME_INDEX <= index <= MAX_TIME_INDEX:
        raise ValueError(
            f"Time index {index} out of range "
            f"({MIN_TIME_INDEX}-{MAX_TIME_INDEX})"
        )
    return index


def snapshot_url(index: int, base_url: str | None = None) -> str:
    """
    Build the URL of the snapshot for a time index.

    Args:
        index: Time index, 0 (most recent) to 24
        base_url: Snapshot base URL (default: from configuration)

    Returns:
        str: URL with the index zero-padded to two digits

    Raises:
        ValueError: If index is not an integer in range

    Example:
        >>> snapshot_url(3, "https://example.com/treasure")
        'https://example.com/treasure/03.json'
    """
    validate_time_index(index)
    base = (base_url or get_snapshot_base_url()).rstrip("/")
    return f"{base}/{index:02d}.json"


def _looks_like_json(content_type: str | None) -> bool:
    # Servers that omit the header get the benefit of the .json path
    if not content_type:
        return True
    return "json" in content_type.lower()


def _read_bounded(
    response: requests.Response, max_bytes: int, deadline: float
) -> bytes | None:
    """
    Read a streamed body, giving up once it exceeds max_bytes.

    ``deadline`` is a ``time.monotonic()`` value. The per-request timeout
    only bounds each socket read, so a server trickling bytes is cut off
    here instead.

    Raises:
        requests.exceptions.ReadTimeout: If the deadline passes mid-body
    """
    declared = response.headers.get("Content-Length", "")
    if declared.isdigit() and int(declared) > max_bytes:
        return None

    body = bytearray()
    for chunk in response.iter_content(chunk_size=1024):
        if time.monotonic() > deadline:
            raise requests.exceptions.ReadTimeout(
                f"Body not received within the download deadline ({len(body)} bytes read)"
            )
        body.extend(chunk)
        if len(body) > max_bytes:
            return None
    return bytes(body)


def probe_snapshot(
    index: int,
    base_url: str | None = None,
    timeout: float = PROBE_TIMEOUT,
    max_bytes: int = PROBE_MAX_BYTES,
    deadline: float = PROBE_DEADLINE,
) -> SnapshotStatus:
    """
    Classify a single snapshot without raising.

    Steps:
        1. HEAD the snapshot. 404 or no response at all means MISSING.
        2. A declared Content-Type that is not JSON means INVALID.
        3. GET at most ``max_bytes`` and parse the body. Only a JSON array
           is VALID; a non-200 status, a read timeout, a body that takes
           longer than ``deadline`` to arrive, an oversize body or
           anything other than an array is INVALID.

    Args:
        index: Time index, 0-24
        base_url: Snapshot base URL (default: from configuration)
        timeout: Connect and per-read timeout for each request, in seconds
        deadline: Time allowed for the whole body download, in seconds
        max_bytes: Largest body that will be read and parsed

    Returns:
        SnapshotStatus: MISSING, INVALID or VALID
    """
    url = snapshot_url(index, base_url)

    try:
        head = requests.head(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        logger.debug(f"Snapshot {index:02d} unreachable: {e}")
        return SnapshotStatus.MISSING

    if head.status_code == 404:
        logger.debug(f"Snapshot {index:02d} not found")
        return SnapshotStatus.MISSING

    content_type = head.headers.get("Content-Type")
    if not _looks_like_json(content_type):
        logger.warning(
            f"Snapshot {index:02d} served as {content_type!r}, not JSON; "
            "skipping download"
        )
        return SnapshotStatus.INVALID

    try:
        read_by = time.monotonic() + deadline
        with requests.get(url, timeout=timeout, stream=True) as response:
            if response.status_code != 200:
                logger.warning(
                    f"Snapshot {index:02d} returned HTTP {response.status_code}"
                )
                return SnapshotStatus.INVALID
            body = _read_bounded(response, max_bytes, read_by)
    except requests.RequestException as e:
        logger.warning(f"Snapshot {index:02d} could not be read: {e}")
        return SnapshotStatus.INVALID

    if body is None:
        logger.warning(f"Snapshot {index:02d} larger than {max_bytes} bytes")
        return SnapshotStatus.INVALID

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.warning(f"Snapshot {index:02d} has invalid JSON: {e}")
        return SnapshotStatus.INVALID

    if not isinstance(payload, list):
        logger.warning(
            f"Snapshot {index:02d} is a JSON {type(payload).__name__}, not an array"
        )
        return SnapshotStatus.INVALID

    return SnapshotStatus.VALID


@with_logging()
def probe_all(
    indices: Iterable[int] = TIME_INDICES,
    probe: SnapshotProbe | None = None,
    max_concurrency: int = PROBE_CONCURRENCY,
    base_url: str | None = None,
) -> Availability:
    """
    Probe every snapshot with bounded concurrency.

    At most ``max_concurrency`` probes are in flight at once; the rest wait
    for a free worker. The call returns only once every probe has finished,
    and results are gathered by index, so the classification does not depend
    on the order in which probes complete.

    Args:
        indices: Time indices to probe (default: 0-24)
        probe: Probe function (default: ``probe_snapshot``)
        max_concurrency: Maximum number of simultaneous probes (default: 4)
        base_url: Snapshot base URL for the default probe

    Returns:
        Availability: One status per probed index

    Raises:
        ValueError: If max_concurrency is less than 1

    Example:
        >>> availability = probe_all()
        >>> availability.valid
        (0, 1, 2, 3, 5, 7)
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")

    if probe is None:
        probe = partial(probe_snapshot, base_url=base_url)

    ordered = sorted(set(indices))

    def safe_probe(index: int) -> SnapshotStatus:
        try:
            return probe(index)
        except Exception as e:
            logger.warning(f"Probe for snapshot {index:02d} failed: {e}")
            return SnapshotStatus.MISSING

    with ThreadPoolExecutor(
        max_workers=max_concurrency, thread_name_prefix="stratos-probe"
    ) as executor:
        statuses = list(executor.map(safe_probe, ordered))

    availability = Availability(dict(zip(ordered, statuses)))

    logger.info(
        f"Probed {len(ordered)} snapshots: {len(availability.valid)} valid, "
        f"{len(availability.malformed)} invalid, {len(availability.missing)} missing"
    )
    logger.debug(f"Valid time indices: {list(availability.valid)}")

    return availability


def nearest_available(current: int, available: Iterable[int]) -> int:
    """
    Pick the available time index closest to the current selection.

    Used to move the selection when the index it points at turns out to be
    unavailable. Ties go to the lower (more recent) index.

    Args:
        current: Currently selected time index
        available: Indices that can be fetched

    Returns:
        int: ``current`` if it is available or nothing is, otherwise the
        closest available index

    Example:
        >>> nearest_available(4, [3, 5, 9])
        3
    """
    candidates = sorted(set(available))
    if not candidates or current in candidates:
        return current
    return min(candidates, key=lambda index: (abs(index - current), index))


def summarize_indices(indices: Iterable[int]) -> str:
    """
    Collapse time indices into compact hour ranges.

    Example:
        >>> summarize_indices([0, 1, 2, 3, 5, 7, 8, 9])
        '0-3h, 5h, 7-9h'
    """
    ordered = sorted(set(indices))
    if not ordered:
        return "None"

    ranges = []
    start = end = ordered[0]
    for index in ordered[1:]:
        if index == end + 1:
            end = index
            continue
        ranges.append(f"{start}h" if start == end else f"{start}-{end}h")
        start = end = index
    ranges.append(f"{start}h" if start == end else f"{start}-{end}h")

    return ", ".join(ranges)


def describe_index(index: int) -> str:
    """Human-readable label for a time index ("Current", "3 hours ago")."""
    if index == 0:
        return "Current"
    return f"{index} hour{'' if index == 1 else 's'} ago"
