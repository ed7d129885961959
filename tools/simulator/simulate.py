#!/usr/bin/env python3
"""Cube Map upstream simulator.

Serves a fake GPS location API that drives the cube around Black Rock City,
with configurable failure injection for exercising the gateway's cache.

Usage:
    # Wandering cube on port 4567 (the gateway's default upstream)
    python -m tools.simulator.simulate --port 4567

    # Flaky upstream: 30% errors, a mix of 500s, bad JSON and missing lng
    python -m tools.simulator.simulate --fail-rate 0.3

    # Start somewhere else
    python -m tools.simulator.simulate --center 40.7912,-119.1966
"""

from __future__ import annotations

import argparse
import math
import random
import time
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from cubemap.core.geo import GOLDEN_SPIKE, brc_address, haversine_m
from cubemap.core.formatting import format_distance
from cubemap.core.staleness import iso_utc

# The Man, for the distance_from_man field.
THE_MAN = (40.78696344894566, -119.20300709606865)

_FAILURE_KINDS = ("status_500", "malformed", "missing_lng")


@dataclass
class SimCube:
    lat: float
    lng: float
    bearing: float
    speed_mps: float
    last_move: float


def move_cube(cube: SimCube, now: float) -> None:
    """Move the cube along its current bearing, with random turns."""
    dt_seconds = now - cube.last_move
    cube.last_move = now

    # Art cars wander slowly: 1-5 m/s with frequent turns
    cube.bearing = (cube.bearing + random.uniform(-30, 30)) % 360
    cube.speed_mps = max(1.0, min(5.0, cube.speed_mps + random.uniform(-0.5, 0.5)))

    distance_m = cube.speed_mps * dt_seconds
    bearing_rad = math.radians(cube.bearing)

    # Approximate: 1 degree latitude = 111,000 m
    cube.lat += (distance_m * math.cos(bearing_rad)) / 111_000
    cube.lng += (distance_m * math.sin(bearing_rad)) / (111_000 * math.cos(math.radians(cube.lat)))

    # Stay inside the city: turn back toward the center past 2.5 km
    if haversine_m(cube.lat, cube.lng, *GOLDEN_SPIKE) > 2500:
        cube.bearing = (cube.bearing + 180) % 360


def make_location_payload(cube: SimCube, now: float) -> dict:
    """Create a location payload in the upstream GPS API's shape."""
    to_man = haversine_m(cube.lat, cube.lng, *THE_MAN)
    return {
        "lat": round(cube.lat, 6),
        "lng": round(cube.lng, 6),
        "timestamp": iso_utc(now),
        "address": brc_address(cube.lat, cube.lng),
        "context": "Wandering the playa",
        "distance_from_man": format_distance(to_man),
        "source": "simulator",
        "speed_mps": round(cube.speed_mps, 1),
    }


def create_app(cube: SimCube, fail_rate: float) -> FastAPI:
    app = FastAPI(title="Cube GPS simulator")
    counters = {"served": 0, "failed": 0}

    @app.get("/api/v1/gps/location.json")
    async def location() -> Response:
        now = time.time()
        move_cube(cube, now)
        payload = make_location_payload(cube, now)

        if random.random() < fail_rate:
            counters["failed"] += 1
            kind = random.choice(_FAILURE_KINDS)
            if kind == "status_500":
                return JSONResponse(content={"error": "simulated failure"}, status_code=500)
            if kind == "malformed":
                return Response(content="<html>not json</html>", media_type="text/html")
            payload.pop("lng")

        counters["served"] += 1
        return JSONResponse(content=payload)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", **counters}

    return app


def main():
    parser = argparse.ArgumentParser(description="Cube Map upstream simulator")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=4567, help="Bind port")
    parser.add_argument("--center", type=str, default=f"{GOLDEN_SPIKE[0]},{GOLDEN_SPIKE[1]}",
                        help="Starting lat,lng (default: Golden Spike)")
    parser.add_argument("--fail-rate", type=float, default=0.0,
                        help="Fraction of requests that fail (0.0-1.0)")

    args = parser.parse_args()

    # Parse center
    lat, lng = args.center.split(",")
    cube = SimCube(
        lat=float(lat),
        lng=float(lng),
        bearing=random.uniform(0, 360),
        speed_mps=random.uniform(1, 5),
        last_move=time.time(),
    )

    print(f"Simulating cube at {cube.lat:.4f}, {cube.lng:.4f} (fail rate {args.fail_rate:.0%})")
    uvicorn.run(create_app(cube, args.fail_rate), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
