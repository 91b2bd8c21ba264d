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
Session state for a balloon map.

``BalloonTracker`` ties the pieces together the way a map front end uses
them: probe the snapshots once per load, keep the selected hour pointing at
something that exists, fetch positions for the selected hour, and hand each
position a lazily-resolved air quality marker.

Fetches run in the background. A fetch that finishes after the selection
has moved on is discarded rather than overwriting the newer selection.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable

from .balloons import FetchErrorKind, SnapshotFetchError, fetch_balloons
from .lifecycle import MarkerAirQuality, Resolver
from .snapshots import nearest_available, probe_all, validate_time_index
from .types import Availability, PositionRecord

logger = logging.getLogger(__name__)

Prober = Callable[[], Availability]
Fetcher = Callable[[int, Availability], list[PositionRecord]]


class BalloonTracker:
    """
    Selected time index, its positions and their air quality markers.

    Args:
        time_index: Initially selected time index (default: 0, most recent)
        prober: Returns a fresh Availability (default: ``probe_all``)
        fetcher: Fetches positions for an index (default: ``fetch_balloons``)
        resolver: Air quality resolver handed to each marker
        executor: Executor for background fetches (default: a private pool)

    Example:
        >>> with BalloonTracker() as tracker:
        ...     tracker.load().result()
        ...     print(len(tracker.records), tracker.error)
    """

    def __init__(
        self,
        time_index: int = 0,
        prober: Prober | None = None,
        fetcher: Fetcher | None = None,
        resolver: Resolver | None = None,
        executor: Executor | None = None,
    ):
        validate_time_index(time_index)

        self._prober = prober or probe_all
        self._fetcher = fetcher or fetch_balloons
        self._resolver = resolver
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="stratos-fetch"
        )
        self._lock = threading.RLock()

        self.availability = Availability.unprobed()
        self.time_index = time_index
        self.records: list[PositionRecord] = []
        self.markers: list[MarkerAirQuality] = []
        self.error: str | None = None
        self.loading = False

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def load(self) -> Future:
        """
        Reprobe every snapshot, then fetch the selected one.

        The selection is moved to the nearest valid index if the current one
        is not valid.

        Returns:
            Future: Completes when the fetch for the selection has finished
        """
        availability = self._prober()
        with self._lock:
            self._set_availability(availability)
        return self.refresh()

    def select(self, index: int) -> Future:
        """Select a time index and fetch its positions."""
        validate_time_index(index)
        with self._lock:
            self.time_index = index
        return self.refresh()

    def refresh(self) -> Future:
        """Fetch positions for the current selection."""
        with self._lock:
            index = self.time_index
            availability = self.availability
            self.loading = True
            self.error = None
        return self._executor.submit(self._fetch, index, availability)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "BalloonTracker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_availability(self, availability: Availability) -> bool:
        """Store a new snapshot; returns True if the selection moved."""
        self.availability = availability
        corrected = nearest_available(self.time_index, availability.valid)
        if corrected == self.time_index:
            return False

        logger.info(
            f"Time index {self.time_index} unavailable; switching to {corrected}"
        )
        self.time_index = corrected
        return True

    def _fetch(self, index: int, availability: Availability) -> None:
        try:
            records = self._fetcher(index, availability)
        except SnapshotFetchError as e:
            self._fetch_failed(index, e)
            return
        self._apply(index, records, None)

    def _fetch_failed(self, index: int, error: SnapshotFetchError) -> None:
        self._apply(index, [], error.user_message)
        if error.kind is not FetchErrorKind.INVALID_FORMAT:
            return

        with self._lock:
            if index in self.availability.malformed:
                return
            logger.warning(f"Reclassifying time index {index} as invalid")
            moved = self._set_availability(self.availability.with_invalid(index))

        if moved:
            self.refresh()

    def _apply(
        self, index: int, records: list[PositionRecord], error: str | None
    ) -> None:
        with self._lock:
            if index != self.time_index:
                logger.debug(
                    f"Discarding stale result for time index {index} "
                    f"(selected: {self.time_index})"
                )
                return

            self.records = records
            self.markers = [
                MarkerAirQuality(r.latitude, r.longitude, resolver=self._resolver)
                for r in records
            ]
            self.error = error
            self.loading = False
