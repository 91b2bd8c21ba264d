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

"""Balloon positions and nearby air quality"""

from .balloons import (
    FetchErrorKind,
    SnapshotFetchError,
    fetch_balloons,
    filter_positions,
    positions_to_frame,
)
from .lifecycle import CancellationToken, MarkerAirQuality, ResolutionCancelled
from .openaq import resolve_air_quality
from .snapshots import nearest_available, probe_all, probe_snapshot
from .tracker import BalloonTracker
from .types import (
    AQICategory,
    Availability,
    Failed,
    NoData,
    PositionRecord,
    Resolved,
    SnapshotStatus,
)

__version__ = "0.1.0"
