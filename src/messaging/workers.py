"""Background worker pool — dispatch threads and the enrollment poller.

Dispatch threads drain the due-time dispatch queue; an idle thread waits on
the queue until something is enqueued, released or becomes due. The
enrollment poller evaluates scheduled triggers and runs due enrollments every
``enrollment_tick_seconds``. Delays and retries are entries in the due-time
indexes, so no thread ever sleeps on behalf of a single message.

Every thread runs inside its own messaging domain context.
"""

import threading
from datetime import UTC, datetime

import structlog
from messaging.domain import messaging
from messaging.message.message import Message, MessageStatus
from messaging.services import get_services
from messaging.settings import get_settings
from messaging.utils.logging import add_context, clear_context
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)


def rebuild_dispatch_queue(queue) -> int:
    """Re-index every pending message after a restart."""
    repo = current_domain.repository_for(Message)
    pending = repo._dao.query.filter(status=MessageStatus.PENDING.value).all().items
    queue.rebuild(pending)
    return len(pending)


class WorkerPool:
    def __init__(self, services=None, settings=None):
        self.services = services or get_services()
        self.settings = settings or get_settings()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self):
        if self.running:
            return

        self._stop.clear()
        with messaging.domain_context():
            rebuild_dispatch_queue(self.services.queue)

        for index in range(self.settings.dispatch_workers):
            self._spawn(self._dispatch_loop, f"messaging-dispatch-{index}")
        self._spawn(self._enrollment_loop, "messaging-enrollments")
        logger.info(
            "Worker pool started",
            dispatch_workers=self.settings.dispatch_workers,
            enrollment_tick_seconds=self.settings.enrollment_tick_seconds,
        )

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        self.services.queue.wake()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("Worker pool stopped")

    def _spawn(self, target, name):
        thread = threading.Thread(target=target, name=name, daemon=True)
        self._threads.append(thread)
        thread.start()

    # -------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------
    def _dispatch_loop(self):
        queue = self.services.queue
        worker = self.services.worker
        with messaging.domain_context():
            add_context(worker=threading.current_thread().name)
            while not self._stop.is_set():
                try:
                    outcomes = worker.drain(datetime.now(UTC), limit=1)
                except Exception:
                    logger.exception("Dispatch loop iteration failed")
                    outcomes = []
                if outcomes:
                    continue

                timeout = self.settings.dispatch_poll_seconds
                next_due = queue.next_due()
                if next_due is not None:
                    timeout = min(timeout, max((next_due - datetime.now(UTC)).total_seconds(), 0.0))
                queue.wait(timeout)
            clear_context()

    def _enrollment_loop(self):
        engine = self.services.engine
        with messaging.domain_context():
            add_context(worker=threading.current_thread().name)
            while not self._stop.is_set():
                try:
                    summary = engine.tick(datetime.now(UTC))
                    if summary["enrolled"] or summary["processed"]:
                        logger.info("Enrollment tick", **summary)
                except Exception:
                    logger.exception("Enrollment tick failed")
                self._stop.wait(self.settings.enrollment_tick_seconds)
            clear_context()
