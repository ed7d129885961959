#!/usr/bin/env python3
"""Cube Map terminal tracker.

Runs the adaptive poller against a gateway and prints every location update
and status change.

Usage:
    # Follow a local gateway
    python -m tools.tracker.track --server http://localhost:9292

    # Static mode from a captured location file (falls back to demo data)
    python -m tools.tracker.track --static location.json
"""

from __future__ import annotations

import argparse
import asyncio
import time

import httpx

from cubemap.client.gateway_client import GatewayClient
from cubemap.client.poller import AdaptivePoller
from cubemap.client.static import load_static_location
from cubemap.config import load_config
from cubemap.core.formatting import format_location_display
from cubemap.core.geo import brc_address
from cubemap.main import setup_logging
from cubemap.storage.file_store import FileSnapshotStore


def print_location(record: dict) -> None:
    print()
    print(format_location_display(record, time.time()))
    print(f"  ~ {brc_address(float(record['lat']), float(record['lng']))}")


def print_status(new, old) -> None:
    print(f"[status] {old.value} -> {new.value}")


def print_error(error: Exception) -> None:
    print(f"[error] {error}")


async def run_tracker(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    if args.interval is not None:
        config.poller.update_interval_seconds = args.interval
    setup_logging(config)

    store = FileSnapshotStore(args.snapshot_dir or config.poller.snapshot_dir)

    async with httpx.AsyncClient() as client:
        if args.static:
            poller = AdaptivePoller(None, store, config.poller,
                                    static_location=load_static_location(args.static))
        else:
            gateway = GatewayClient(client, args.server)
            poller = AdaptivePoller(gateway, store, config.poller)

        poller.on_location_update(print_location)
        poller.on_status_change(print_status)
        poller.on_error(print_error)
        poller.initialize()

        if poller.state.is_static_mode:
            return

        print(f"Tracking {args.server} (interval {poller.state.current_interval:.0f}s, Ctrl-C to stop)")
        try:
            await asyncio.Event().wait()
        finally:
            poller.stop()
            print(f"\nDiagnostics: {poller.diagnostics()}")


def main():
    parser = argparse.ArgumentParser(description="Cube Map terminal tracker")
    parser.add_argument("--server", default="http://localhost:9292", help="Gateway URL")
    parser.add_argument("--static", default=None, help="Location JSON file for static mode")
    parser.add_argument("--interval", type=float, default=None,
                        help="Base polling interval in seconds")
    parser.add_argument("--snapshot-dir", default=None, help="Where to persist the snapshot")
    parser.add_argument("--config", default=None, help="Path to config.yaml")

    args = parser.parse_args()
    try:
        asyncio.run(run_tracker(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
