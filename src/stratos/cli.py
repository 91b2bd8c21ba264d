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
Command line interface.

Examples:
    stratos availability
    stratos balloons --index 3 --limit 20
    stratos air-quality 51.5074 -0.1278
"""

import argparse
import logging
import sys

from .balloons import SnapshotFetchError, fetch_balloons, positions_to_frame
from .openaq import resolve_air_quality
from .snapshots import (
    describe_index,
    nearest_available,
    probe_all,
    summarize_indices,
)
from .types import MAX_TIME_INDEX, Availability, NoData, Resolved

logger = logging.getLogger(__name__)


def _time_index(value: str) -> int:
    index = int(value)
    if not 0 <= index <= MAX_TIME_INDEX:
        raise argparse.ArgumentTypeError(f"time index must be 0-{MAX_TIME_INDEX}")
    return index


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stratos",
        description="Balloon positions and nearby air quality",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("availability", help="probe which hourly snapshots exist")

    balloons = commands.add_parser("balloons", help="list balloon positions")
    balloons.add_argument(
        "--index", type=_time_index, default=0, help="hours ago, 0-24 (default: 0)"
    )
    balloons.add_argument(
        "--limit", type=int, default=None, help="show at most this many rows"
    )
    balloons.add_argument(
        "--force",
        action="store_true",
        help="download without probing availability first",
    )

    air_quality = commands.add_parser(
        "air-quality", help="nearest-station PM2.5 and AQI for a coordinate"
    )
    air_quality.add_argument("latitude", type=float)
    air_quality.add_argument("longitude", type=float)

    return parser


def _cmd_availability(args) -> int:
    availability = probe_all()
    print(f"Available: {summarize_indices(availability.valid)}")
    print(f"Invalid:   {summarize_indices(availability.malformed)}")
    print(f"Missing:   {summarize_indices(availability.missing)}")
    return 0


def _cmd_balloons(args) -> int:
    index = args.index
    if args.force:
        availability = Availability.unprobed()
    else:
        availability = probe_all()
        index = nearest_available(index, availability.valid)
        if index != args.index:
            print(
                f"Time index {args.index} unavailable; "
                f"showing {describe_index(index).lower()} instead",
                file=sys.stderr,
            )

    try:
        records = fetch_balloons(index, availability, force=args.force)
    except SnapshotFetchError as e:
        print(e.user_message, file=sys.stderr)
        return 1

    df = positions_to_frame(records, time_index=index)
    if args.limit is not None:
        df = df.head(args.limit)

    print(f"{len(records)} balloons ({describe_index(index)})")
    if not df.empty:
        print(df.to_string(index=False))
    return 0


def _cmd_air_quality(args) -> int:
    reading = resolve_air_quality(args.latitude, args.longitude)

    if isinstance(reading, Resolved):
        print(reading.station_label)
        print(f"PM2.5:  {reading.pm25:.2f} µg/m³")
        print(f"AQI:    {reading.aqi} ({reading.status.label})")
        print(f"Sensor: {reading.sensor_id} ({reading.sensor_label})")
        print(f"Source: {reading.source}")
        return 0

    if isinstance(reading, NoData):
        print(f"No air quality data available ({reading.reason.value})")
        return 0

    print(f"Error retrieving air quality data ({reading.reason.value})", file=sys.stderr)
    return 1


COMMANDS = {
    "availability": _cmd_availability,
    "balloons": _cmd_balloons,
    "air-quality": _cmd_air_quality,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    return COMMANDS[args.command](args)
