"""
Live monitor for the vending fleet.

Subscribes to one or more topic patterns and logs every message as JSON:

    MQTT_URL=ws://broker:9001/mqtt python -m vendlive "machines/+/status" "alerts/#"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional, Sequence

from vendlive.contracts.payloads import decode_payload
from vendlive.errors import ConnectError, ReconnectExhaustedError
from vendlive.runtime.events import ConnectionEvent
from vendlive.runtime.logging import configure_logging
from vendlive.session import Session

logger = logging.getLogger("vendlive.monitor")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vendlive", description="Log live fleet messages.")
    parser.add_argument("patterns", nargs="+", metavar="PATTERN", help="topic pattern to subscribe to")
    parser.add_argument("--qos", type=int, choices=(0, 1, 2), default=0, help="subscription QoS (default: 0)")
    return parser.parse_args(argv)


def log_message(topic: str, payload: bytes) -> None:
    try:
        body = decode_payload(payload)
    except ValueError:
        body = payload.decode("utf-8", errors="replace")
    logger.info("monitor.message", extra={"topic": topic, "payload": body})


def log_connection(event: ConnectionEvent) -> None:
    logger.info(
        "monitor.connection",
        extra={"connected": event.connected, "error": str(event.error) if event.error else None},
    )


async def monitor(session: Session, patterns: Sequence[str], qos: int, stop: asyncio.Event) -> None:
    """Subscribe ``patterns`` on ``session`` and run until ``stop`` is set."""
    session.on_connection(log_connection)
    try:
        for pattern in patterns:
            await session.subscribe(pattern, log_message, qos=qos)
        try:
            await session.connect()
        except ConnectError as exc:
            # automatic retries keep going in the background
            logger.warning("monitor.connect.failed", extra={"error": str(exc)})
        await stop.wait()
    finally:
        await session.disconnect()


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        session = Session.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    @session.on_error
    def _stop_when_exhausted(error: BaseException) -> None:
        if isinstance(error, ReconnectExhaustedError):
            stop.set()

    logger.info("monitor.start", extra={"client_id": session.client_id, "patterns": list(args.patterns)})
    await monitor(session, args.patterns, args.qos, stop)
    logger.info("monitor.stop")
    return 0


def run() -> None:
    """Entry point for the monitor."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
