"""Runner for the messaging domain's background work.

Starts:
- WorkerPool: dispatch threads draining the message queue and the
  enrollment poller (scheduled triggers + due journey steps)
- Protean Engine (``--with-engine``): outbox processing and stream
  subscriptions when the domain runs with async event processing

Usage:
    python src/server.py                 # Worker pool only
    python src/server.py --with-engine   # Worker pool + Protean Engine
"""

import argparse
import asyncio
import signal
import threading

import structlog
from protean.server.engine import Engine

logger = structlog.get_logger(__name__)


def _get_domain():
    from messaging.domain import messaging

    messaging.init()
    return messaging


def _start_pool(domain):
    from messaging.workers import WorkerPool

    with domain.domain_context():
        pool = WorkerPool()
        pool.start()
    return pool


def run(with_engine: bool):
    domain = _get_domain()
    pool = _start_pool(domain)

    try:
        if with_engine:
            asyncio.run(Engine(domain).run())
        else:
            stopped = threading.Event()
            signal.signal(signal.SIGTERM, lambda *_: stopped.set())
            signal.signal(signal.SIGINT, lambda *_: stopped.set())
            stopped.wait()
    finally:
        pool.stop()


def main():
    parser = argparse.ArgumentParser(description="Messaging worker runner")
    parser.add_argument(
        "--with-engine",
        action="store_true",
        help="Also run the Protean Engine (async event processing)",
    )
    args = parser.parse_args()

    logger.info("Starting messaging workers", with_engine=args.with_engine)
    run(args.with_engine)


if __name__ == "__main__":
    main()
