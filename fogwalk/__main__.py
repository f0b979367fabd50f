#!/usr/bin/env python3
"""
Fogwalk - Reveal the streets you walk

Usage:
    python -m fogwalk [options]

Options:
    --playback FILE   Replay a recorded GPS trace through the reveal engine
    --speed FACTOR    Playback speed multiplier (default: 1.0)
    --lat LAT         Latitude to load street geometry around before playback
    --lon LON         Longitude to load street geometry around before playback
    --db PATH         Exploration database (default: fogwalk_history.db)
    --log FILE        Append log output to FILE
    --team ID         Team to share discoveries with
    --sync-url URL    Team sync service base URL
    --html FILE       Export revealed segments to an HTML map
    --stats           Print exploration stats and exit
    --reset           Erase all exploration history and exit
"""

import argparse
import json
import sys

from .app import Explorer
from .config import CONFIG
from .gps import GPSPlayback
from .logger import Logger
from .map_export import save_map
from .store import ExplorationDB
from .sync import HttpSyncTransport


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fogwalk",
        description="Reveal street segments from GPS traces",
    )
    parser.add_argument("--playback", metavar="FILE", help="GPS trace JSON to replay")
    parser.add_argument("--speed", type=float, default=1.0, help="Playback speed multiplier")
    parser.add_argument("--lat", type=float, help="Starting latitude")
    parser.add_argument("--lon", type=float, help="Starting longitude")
    parser.add_argument("--db", default=CONFIG["db_path"], help="Exploration database path")
    parser.add_argument("--log", metavar="FILE", help="Log file")
    parser.add_argument("--team", help="Team ID for shared discoveries")
    parser.add_argument("--sync-url", help="Team sync service base URL")
    parser.add_argument("--html", metavar="FILE", help="Export revealed segments to HTML map")
    parser.add_argument("--stats", action="store_true", help="Print stats and exit")
    parser.add_argument("--reset", action="store_true", help="Erase exploration history and exit")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if (args.lat is None) != (args.lon is None):
        print("Error: --lat and --lon must be given together")
        return 1
    if args.sync_url and not args.team:
        print("Error: --sync-url requires --team")
        return 1

    db = ExplorationDB(args.db)
    logger = Logger(args.log)
    try:
        if args.reset:
            count = len(db)
            db.reset()
            print(f"Erased {count} revealed segments from {args.db}")
            return 0

        if args.stats:
            print(json.dumps(db.get_stats(), indent=2))
            return 0

        if args.playback:
            transport = HttpSyncTransport(args.sync_url) if args.sync_url else None
            explorer = Explorer(store=db, transport=transport, team_id=args.team, logger=logger)
            if args.lat is not None:
                explorer.initialize(args.lat, args.lon)
            source = GPSPlayback(args.playback, speed=args.speed)
            logger.log(f"Loaded GPS trace from {args.playback} ({len(source.trace)} entries)")
            try:
                explorer.run(source)
            except KeyboardInterrupt:
                explorer.stop()
                print("\nStopped")
            if explorer.team_sync:
                explorer.team_sync.flush()
            logger.log("Final state", explorer.get_state())

        if args.html:
            center = (args.lat, args.lon) if args.lat is not None else None
            save_map(db.list_all(), args.html, center=center)
            print(f"Map saved to {args.html}")

        if not (args.playback or args.html):
            build_parser().print_help()
        return 0
    finally:
        logger.close()
        db.close()


if __name__ == "__main__":
    sys.exit(main())
