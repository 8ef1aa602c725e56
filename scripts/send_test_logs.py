#!/usr/bin/env python3
"""
Send randomly generated test logs to a running logrelay server.

Uses the TransportClient, so logs sent while the server is down are buffered
and delivered once it comes back.
"""

import argparse
import logging
import random
import sys
import time
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from logrelay.client import TransportClient
from logrelay.config import load_config
from logrelay.models import create_event

MESSAGES = [
    "User signed in",
    "API request completed successfully",
    "Database connection failed",
    "Requested file not found",
    "Operation completed",
    "Invalid request",
    "Internal server error",
    "Service unavailable",
]
LEVELS = ["error", "warn", "info", "debug"]
SOURCES = ["auth-service", "api-gateway", "user-service", "file-service"]


def random_event():
    return create_event(
        random.choice(LEVELS),
        random.choice(MESSAGES),
        source=random.choice(SOURCES),
        metadata={
            'requestId': uuid.uuid4().hex[:8],
            'userId': random.randint(1, 1000),
            'ip': f"192.168.1.{random.randint(0, 254)}",
        },
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Send random test logs to logrelay")
    parser.add_argument("--count", "-n", type=int, default=20, help="Number of logs to send")
    parser.add_argument("--interval", "-i", type=float, default=1.0, help="Seconds between logs")
    parser.add_argument("--url", help="Server URL (overrides LOGGING_SERVER_URL)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    config = load_config()
    if args.url:
        config.client.server_url = args.url

    print(f"Sending {args.count} test logs to {config.client.server_url}...")
    with TransportClient(config.client) as client:
        for _ in range(args.count):
            event = random_event()
            client.send(event)
            print(f"  queued [{event.level.value}] {event.source}: {event.message}")
            time.sleep(args.interval)

        delivered = client.flush(timeout=10.0)

    print("All test logs delivered" if delivered else "Some logs are still buffered")
    return 0 if delivered else 1


if __name__ == "__main__":
    sys.exit(main())
