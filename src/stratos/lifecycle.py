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
Per-marker air quality request lifecycle.

Each balloon marker resolves its air quality lazily, the first time its
detail popup is opened, and keeps the reading for the rest of the session.
Closing the popup while the lookup is still running cancels it. A cancelled
lookup must never write its result: the marker goes back to the state it was
in before the request, and a later request is free to populate it.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable

from .types import AirQualityReading

logger = logging.getLogger(__name__)


class ResolutionCancelled(Exception):
    """Raised inside a resolution whose consumer has gone away."""


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ResolutionCancelled()


Resolver = Callable[[float, float, CancellationToken], AirQualityReading]

_shared_executor: ThreadPoolExecutor | None = None
_shared_executor_lock = threading.Lock()


def _default_executor() -> ThreadPoolExecutor:
    global _shared_executor
    with _shared_executor_lock:
        if _shared_executor is None:
            _shared_executor = ThreadPoolExecutor(
                max_workers=4, thread_name_prefix="stratos-aq"
            )
        return _shared_executor


class _Request:
    __slots__ = ("token", "future")

    def __init__(self):
        self.token = CancellationToken()
        self.future: Future | None = None


class MarkerAirQuality:
    """
    Air quality state owned by one balloon marker.

    At most one resolution is in flight per marker. The cached reading is
    set once and never refreshed.

    Args:
        latitude: Marker latitude
        longitude: Marker longitude
        resolver: Function resolving a reading (default:
            ``stratos.openaq.resolve_air_quality``)
        executor: Executor to run resolutions on (default: a shared pool)

    Example:
        >>> marker = MarkerAirQuality(51.5, -0.12)
        >>> marker.open_popup().result()
        >>> print(marker.reading)
    """

    def __init__(
        self,
        latitude: float,
        longitude: float,
        resolver: Resolver | None = None,
        executor: Executor | None = None,
    ):
        if resolver is None:
            from .openaq import resolve_air_quality

            resolver = resolve_air_quality

        self.latitude = latitude
        self.longitude = longitude
        self._resolver = resolver
        self._executor = executor
        # Re-entrant so inline executors can commit from within open_popup
        self._lock = threading.RLock()
        self._reading: AirQualityReading | None = None
        self._request: _Request | None = None

    @property
    def reading(self) -> AirQualityReading | None:
        with self._lock:
            return self._reading

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return self._request is not None

    def open_popup(self) -> Future | None:
        """
        Start a resolution if none is cached or in flight.

        Returns:
            Future | None: The in-flight request's future (new or existing),
            or None if a reading is already cached. The future resolves to
            None once the request has finished, whether or not its result
            was kept.
        """
        with self._lock:
            if self._reading is not None:
                return None
            if self._request is not None:
                return self._request.future

            request = _Request()
            self._request = request
            executor = self._executor or _default_executor()
            request.future = executor.submit(self._run, request)
            return request.future

    def close_popup(self) -> None:
        """Cancel the in-flight resolution, if any."""
        with self._lock:
            request = self._request
            if request is None:
                return
            request.token.cancel()
            self._request = None

        logger.debug(
            f"Cancelled air quality lookup for ({self.latitude}, {self.longitude})"
        )

    def _run(self, request: _Request) -> None:
        try:
            reading = self._resolver(self.latitude, self.longitude, request.token)
        except ResolutionCancelled:
            # The user closed the popup; nothing to report
            return
        except Exception:
            logger.exception(
                f"Air quality lookup crashed for ({self.latitude}, {self.longitude})"
            )
            self._finish(request, None)
            raise

        self._finish(request, reading)

    def _finish(self, request: _Request, reading: AirQualityReading | None) -> None:
        with self._lock:
            if request.token.cancelled or self._request is not request:
                logger.debug("Discarding result of a cancelled air quality lookup")
                return
            self._request = None
            if reading is not None:
                self._reading = reading
