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
Runtime configuration for Stratos.

Endpoints and the OpenAQ API key are read from the environment at call time
rather than import time, so tests (and long-running sessions) can change them
without reloading the package.

Environment variables:
    OPENAQ_API_KEY: OpenAQ v3 API key (free from https://openaq.org/)
    STRATOS_SNAPSHOT_BASE_URL: Base URL of the hourly balloon snapshots
    STRATOS_OPENAQ_BASE_URL: Base URL of the OpenAQ v3 API
"""

import os

# Endpoints
DEFAULT_SNAPSHOT_BASE_URL = "https://a.windbornesystems.com/treasure"
DEFAULT_OPENAQ_BASE_URL = "https://api.openaq.org/v3"

# Snapshot probing
PROBE_TIMEOUT = 5  # seconds, per connect and per socket read
PROBE_DEADLINE = 10  # seconds, for the whole body download
PROBE_MAX_BYTES = 2 * 1024 * 1024
PROBE_CONCURRENCY = 4

# Balloon snapshot download
SNAPSHOT_TIMEOUT = 30  # seconds

# OpenAQ station search
OPENAQ_TIMEOUT = 15  # seconds
STATION_SEARCH_RADIUS_M = 25000  # OpenAQ v3 maximum
STATION_SEARCH_LIMIT = 10
STATION_MAX_DISTANCE_KM = 100.0


def get_snapshot_base_url() -> str:
    """Return the snapshot base URL without a trailing slash."""
    return os.getenv("STRATOS_SNAPSHOT_BASE_URL", DEFAULT_SNAPSHOT_BASE_URL).rstrip("/")


def get_openaq_base_url() -> str:
    """Return the OpenAQ API base URL without a trailing slash."""
    return os.getenv("STRATOS_OPENAQ_BASE_URL", DEFAULT_OPENAQ_BASE_URL).rstrip("/")


def get_openaq_api_key() -> str | None:
    """Return the OpenAQ API key, or None if it is unset or blank."""
    api_key = os.getenv("OPENAQ_API_KEY", "").strip()
    return api_key or None
