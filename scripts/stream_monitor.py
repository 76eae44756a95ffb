#!/usr/bin/env python3
"""
Stream Monitor Script
=====================

Standalone script to watch a running PageCast service.

This script:
    1. Connects to the service's /ws/status WebSocket
    2. Runs for a configurable duration
    3. Logs delivery stats every N seconds
    4. Reports final summary

Prerequisites:
    - PageCast must be running at the configured URL
    - Install dependencies: pip install -e .

Usage:
    python scripts/stream_monitor.py --duration 120
    python scripts/stream_monitor.py --url ws://localhost:3200/ws/status
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_monitor(url: str, duration: int, report_interval: int) -> dict:
    """
    Watch the session snapshot stream.

    Args:
        url: WebSocket URL of /ws/status
        duration: Monitor duration in seconds
        report_interval: Seconds between progress reports

    Returns:
        Final metrics dict
    """
    logger.info("=" * 60)
    logger.info("PageCast Stream Monitor")
    logger.info("=" * 60)
    logger.info(f"Status URL: {url}")
    logger.info(f"Duration: {duration} seconds")
    logger.info("=" * 60)

    start_time = time.time()
    last_report_time = start_time
    first: Optional[dict] = None
    last: Optional[dict] = None
    last_delivered = 0
    states_seen = set()

    try:
        async with websockets.connect(url, close_timeout=5) as ws:
            while time.time() - start_time < duration:
                try:
                    raw = await asyncio.wait_for(ws.recv(), timeout=5.0)
                except asyncio.TimeoutError:
                    logger.warning("No status update for 5s")
                    continue

                snapshot = json.loads(raw)
                first = first or snapshot
                last = snapshot
                states_seen.add(snapshot["state"])

                since_report = time.time() - last_report_time
                if since_report >= report_interval:
                    pacer = snapshot["pacer"]
                    encoder = snapshot["encoder"]
                    delivered = pacer.get("delivered", 0)
                    fps = (delivered - last_delivered) / since_report

                    logger.info("-" * 40)
                    logger.info(f"Progress Report (elapsed: {time.time() - start_time:.0f}s)")
                    logger.info(f"  Session state: {snapshot['state']}")
                    logger.info(f"  Frames delivered: {delivered}")
                    logger.info(f"  Delivered FPS: {fps:.1f}")
                    logger.info(f"  Backpressure drops: {pacer.get('dropped_backpressure', 0)}")
                    logger.info(f"  Capture errors: {pacer.get('capture_errors', 0)}")
                    logger.info(f"  Skipped ticks: {pacer.get('skipped_ticks', 0)}")
                    logger.info(f"  Encoder state: {encoder.get('state')}")
                    logger.info(f"  Encoder restarts: {snapshot['restarts']}")

                    last_report_time = time.time()
                    last_delivered = delivered

                if snapshot["state"] == "TERMINATED":
                    logger.warning(f"Session terminated: {snapshot.get('termination_reason')}")
                    break
    except (OSError, ConnectionClosed) as e:
        logger.error(f"Status connection failed: {e}")
    except KeyboardInterrupt:
        logger.info("Monitor interrupted by user")

    total_time = time.time() - start_time
    delivered = 0
    if first is not None and last is not None:
        delivered = last["pacer"].get("delivered", 0) - first["pacer"].get("delivered", 0)
    avg_fps = delivered / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames delivered: {delivered}")
    logger.info(f"Average FPS: {avg_fps:.1f}")
    logger.info(f"States seen: {sorted(states_seen)}")
    if last is not None:
        logger.info(f"Encoder restarts: {last['restarts']}")
        logger.info(f"Final state: {last['state']}")
    logger.info("=" * 60)

    if delivered > 0:
        logger.info("✅ STREAM OK - Frames delivered to encoder")
    else:
        logger.error("❌ STREAM FAILED - No frames delivered")

    return {
        "duration": total_time,
        "frames_delivered": delivered,
        "avg_fps": avg_fps,
        "states_seen": sorted(states_seen),
        "final_state": last["state"] if last else None,
    }


def main():
    parser = argparse.ArgumentParser(description="Watch a running PageCast stream session")
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("PAGECAST_STATUS_URL", "ws://localhost:3200/ws/status"),
        help="WebSocket URL of /ws/status",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=120,
        help="Monitor duration in seconds (default: 120)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between progress reports (default: 10)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_monitor(
        url=args.url,
        duration=args.duration,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result["frames_delivered"] > 0 else 1)


if __name__ == "__main__":
    main()
