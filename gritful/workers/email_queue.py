"""E-mail queue worker.

Usage:
    python -m gritful.workers.email_queue --once
    python -m gritful.workers.email_queue --loop

Environment flags:
- EMAIL_QUEUE_ENABLED (true/false) default false
- EMAIL_QUEUE_BATCH_SIZE (default 10)
- EMAIL_MAX_RETRIES (default 3)
- EMAIL_WORKER_LOOP_SECONDS (default 300, the cron cadence)
"""
from __future__ import annotations

import argparse
import asyncio
import time

from gritful.core.config import settings, validate_config
from gritful.core.logging import configure_logging
from gritful.features.email.queue import process_email_queue


def _process_once(limit: int) -> int:
    result = asyncio.run(process_email_queue(batch_size=limit))
    return result.succeeded


def main() -> None:
    parser = argparse.ArgumentParser(description="E-mail queue worker")
    parser.add_argument("--once", action="store_true", help="Process one batch and exit")
    parser.add_argument("--loop", action="store_true", help="Run in continuous loop")
    parser.add_argument("--limit", type=int, default=settings.EMAIL_QUEUE_BATCH_SIZE, help="Batch size per iteration")
    parser.add_argument(
        "--sleep",
        type=int,
        default=settings.EMAIL_WORKER_LOOP_SECONDS,
        help="Seconds to sleep between loops (when --loop)",
    )
    args = parser.parse_args()

    configure_logging(settings.ENV)
    validate_config()

    if not settings.EMAIL_QUEUE_ENABLED:
        print("[email-worker] Queue processing disabled (EMAIL_QUEUE_ENABLED=false). Exiting.")
        return

    if args.once:
        sent = _process_once(args.limit)
        print(f"[email-worker] Sent: {sent}")
        return

    # Default to loop mode when not explicitly once
    print(f"[email-worker] Starting loop (sleep={args.sleep}s, batch={args.limit}). CTRL+C to stop.")
    try:
        while True:
            sent = _process_once(args.limit)
            if sent:
                print(f"[email-worker] Sent {sent} emails")
            time.sleep(args.sleep)
    except KeyboardInterrupt:
        print("[email-worker] Stopped")


if __name__ == "__main__":
    main()
